"""
Network configuration.

A named deployment resolves to a ``NetworkConfig``: RPC URL, object API URL,
chain / subnet identifiers and the registry contract addresses.  Only local
development presets are built in; every other network is supplied by the
caller through environment variables (optionally from ``~/.reliquary/.env``).
"""

from __future__ import annotations

import dataclasses
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .utils import is_hex_address, to_checksum_address

# Default config directory
RELIQUARY_DIR = Path.home() / ".reliquary"
RELIQUARY_ENV = RELIQUARY_DIR / ".env"

DEFAULT_NETWORK = "localnet"

_PRESETS: dict[str, dict[str, object]] = {
    "localnet": {
        "rpc_url": "http://localhost:8645",
        "objects_url": "http://localhost:8001",
        "chain_id": 248163216,
        "subnet_id": "localnet-subnet",
        "bucket_manager": "0x" + "ff" * 19 + "64",
        "credit_manager": "0x" + "ff" * 19 + "65",
    },
    "devnet": {
        "rpc_url": "http://127.0.0.1:8545",
        "objects_url": "http://127.0.0.1:8001",
        "chain_id": 1942764459484029,
        "subnet_id": "devnet-subnet",
        "bucket_manager": "0x" + "ff" * 19 + "64",
        "credit_manager": "0x" + "ff" * 19 + "65",
    },
}

_ENV_FIELDS = {
    "rpc_url": "RELIQUARY_RPC_URL",
    "objects_url": "RELIQUARY_OBJECTS_URL",
    "chain_id": "RELIQUARY_CHAIN_ID",
    "subnet_id": "RELIQUARY_SUBNET_ID",
    "bucket_manager": "RELIQUARY_BUCKET_MANAGER",
    "credit_manager": "RELIQUARY_CREDIT_MANAGER",
}


class ConfigError(ValueError):
    pass


def _is_local(url: str) -> bool:
    host = urllib.parse.urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1")


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    rpc_url: str
    objects_url: str
    chain_id: int
    subnet_id: str
    bucket_manager: str
    credit_manager: str

    def __post_init__(self) -> None:
        for url_name in ("rpc_url", "objects_url"):
            url = getattr(self, url_name)
            parsed = urllib.parse.urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ConfigError(f"{url_name} is not a valid URL: {url!r}")
            if parsed.scheme != "https" and not _is_local(url):
                raise ConfigError(
                    f"{url_name} must use https:// for non-local hosts (got: {url})"
                )
        for addr_name in ("bucket_manager", "credit_manager"):
            if not is_hex_address(getattr(self, addr_name)):
                raise ConfigError(f"{addr_name} is not a 20-byte hex address")
        if self.chain_id <= 0:
            raise ConfigError(f"chain_id must be positive, got {self.chain_id}")

        # Normalize
        object.__setattr__(self, "objects_url", self.objects_url.rstrip("/"))
        object.__setattr__(self, "bucket_manager", to_checksum_address(self.bucket_manager))
        object.__setattr__(self, "credit_manager", to_checksum_address(self.credit_manager))

    @classmethod
    def preset(cls, name: str) -> "NetworkConfig":
        if name not in _PRESETS:
            raise ConfigError(
                f"Unknown network {name!r}. Built-in presets: {', '.join(sorted(_PRESETS))}"
            )
        return cls(name=name, **_PRESETS[name])  # type: ignore[arg-type]

    @classmethod
    def from_env(
        cls,
        network: Optional[str] = None,
        env_path: Optional[Path] = None,
    ) -> "NetworkConfig":
        """
        Resolve a network configuration from the environment.

        Args:
            network: Network name. Defaults to RELIQUARY_NETWORK or "localnet".
            env_path: Path to .env file (default: ~/.reliquary/.env)

        Returns:
            Validated NetworkConfig

        Raises:
            ConfigError: If a required field is missing or invalid
        """
        env_path = env_path or RELIQUARY_ENV
        if env_path.exists():
            load_dotenv(env_path, override=False)

        name = network or os.environ.get("RELIQUARY_NETWORK", DEFAULT_NETWORK)
        values: dict[str, object] = dict(_PRESETS.get(name, {}))

        for field_name, env_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field_name] = raw

        missing = [env for f, env in _ENV_FIELDS.items() if f not in values]
        if missing:
            raise ConfigError(
                f"Network {name!r} is not a built-in preset; set {', '.join(missing)}"
            )

        try:
            values["chain_id"] = int(str(values["chain_id"]), 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid chain id: {values['chain_id']!r}") from exc

        return cls(name=name, **values)  # type: ignore[arg-type]

    def replace(self, **changes: object) -> "NetworkConfig":
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ProviderSettings:
    """Tuning for the network provider.

    Attributes:
        timeout: HTTP timeout in seconds
        retries: Attempts for idempotent reads (submissions are never retried)
        backoff_factor: Base delay for exponential backoff between read retries
        poll_interval: Delay between receipt polls
        await_timeout: Default wait for a transaction to reach a terminal state
        gas_buffer: Multiplier applied to gas estimates
    """
    timeout: float = 30.0
    retries: int = 3
    backoff_factor: float = 0.5
    poll_interval: float = 1.0
    await_timeout: float = 120.0
    gas_buffer: float = 1.1
