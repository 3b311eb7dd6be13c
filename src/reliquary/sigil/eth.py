"""
ECDSA / secp256k1 Key Authority for Reliquary.

The key authority holds parsed key bytes and is used for:
- Transaction signing (bucket and credit operations, transfers)
- Arbitrary payload signing (EIP-191 personal_sign)

Reading the raw key from the user (``PRIVATE_KEY`` in ~/.reliquary/.env)
belongs to the CLI layer; ``KeyAuthority`` only ever sees bytes.
"""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys import keys

from ..config import RELIQUARY_ENV
from ..errors import InvalidKeyError
from ..utils import bytes_to_hex

# Order of the secp256k1 group
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def parse_private_key(text: str) -> bytes:
    """
    Parse a hex private key (with or without 0x prefix) into 32 bytes.

    Raises:
        InvalidKeyError: If the text is not 32 bytes of hex
    """
    value = text.strip()
    if value.startswith(("0x", "0X")):
        value = value[2:]
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise InvalidKeyError("Private key is not valid hex") from exc
    if len(raw) != 32:
        raise InvalidKeyError(f"Private key must be 32 bytes, got {len(raw)}")
    return raw


class KeyAuthority:
    """
    Holds a secp256k1 private key, derives the address and signs.

    Signing is deterministic (RFC 6979): same key and payload give the
    same signature.
    """

    def __init__(self, key: bytes) -> None:
        if not isinstance(key, (bytes, bytearray)) or len(key) != 32:
            raise InvalidKeyError("Private key must be exactly 32 bytes")
        scalar = int.from_bytes(key, "big")
        if not 0 < scalar < SECP256K1_N:
            raise InvalidKeyError("Private key is outside the secp256k1 curve order")
        self._key = bytes(key)
        self._account: LocalAccount = Account.from_key(self._key)

    @classmethod
    def from_hex(cls, text: str) -> "KeyAuthority":
        return cls(parse_private_key(text))

    @classmethod
    def generate(cls) -> "KeyAuthority":
        return cls(secrets.token_bytes(32))

    def __repr__(self) -> str:
        return f"KeyAuthority(address={self.address})"

    @property
    def address(self) -> str:
        """0x-prefixed checksummed address."""
        return self._account.address

    @property
    def public_key(self) -> str:
        """0x-prefixed uncompressed public key (64 bytes, no prefix byte)."""
        return keys.PrivateKey(self._key).public_key.to_hex()

    def sign(self, payload: bytes) -> bytes:
        """
        Sign a payload using EIP-191 personal_sign.

        Returns:
            Signature as bytes (65 bytes: r + s + v)
        """
        signable = encode_defunct(primitive=payload)
        signed = self._account.sign_message(signable)
        return bytes(signed.signature)

    def sign_transaction(self, tx: dict[str, Any]) -> Any:
        """Sign a transaction dict. Returns eth-account's SignedTransaction."""
        return self._account.sign_transaction(tx)


def verify_signature(payload: bytes, signature: bytes, address: str) -> bool:
    """Check that ``signature`` over ``payload`` recovers to ``address``."""
    signable = encode_defunct(primitive=payload)
    try:
        recovered = Account.recover_message(signable, signature=signature)
    except Exception:  # noqa: BLE001
        return False
    return recovered.lower() == address.lower()


# ============ Key material input (CLI layer) ============


def generate_eoa() -> tuple[str, str]:
    """
    Generate a new ECDSA/secp256k1 keypair (EOA).

    Returns:
        Tuple of (private_key_hex, address)
    """
    authority = KeyAuthority.generate()
    return bytes_to_hex(authority._key), authority.address


def save_private_key(private_key: str, env_path: Optional[Path] = None) -> Path:
    """
    Save private key to .env file.

    Args:
        private_key: 0x-prefixed hex private key
        env_path: Path to .env file (default: ~/.reliquary/.env)

    Returns:
        Path to the saved .env file
    """
    parse_private_key(private_key)
    env_path = env_path or RELIQUARY_ENV
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing = {}
    if env_path.exists():
        for line in env_path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                k, v = line.split("=", 1)
                existing[k.strip()] = v.strip()

    existing["PRIVATE_KEY"] = private_key

    lines = [f"{k}={v}" for k, v in existing.items()]
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    # Set secure permissions on Unix
    if os.name != "nt":
        env_path.chmod(0o600)

    return env_path


def load_private_key(env_path: Optional[Path] = None) -> str:
    """
    Load private key from .env file or environment.

    Returns:
        0x-prefixed hex private key

    Raises:
        ValueError: If PRIVATE_KEY is not set
    """
    env_path = env_path or RELIQUARY_ENV

    if env_path.exists():
        load_dotenv(env_path, override=False)

    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError(
            f"PRIVATE_KEY not found. Set PRIVATE_KEY in the environment or in {env_path}"
        )

    if not private_key.startswith("0x"):
        private_key = "0x" + private_key

    return private_key


def load_authority(env_path: Optional[Path] = None) -> KeyAuthority:
    """Load the key from the environment and wrap it in a KeyAuthority."""
    return KeyAuthority(parse_private_key(load_private_key(env_path)))
