from __future__ import annotations

import hashlib
import re
from typing import Optional, Union

from eth_hash.auto import keccak

ZERO_ADDRESS = "0x" + "0" * 40
MAX_UINT256 = 2**256 - 1

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_RANGE = re.compile(r"^(\d+)-(\d*)$")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def keccak256(data: bytes) -> bytes:
    # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
    return keccak(data)


def is_hex_address(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX_ADDRESS.match(value))


def to_checksum_address(address: Union[str, bytes]) -> str:
    """Convert an address to EIP-55 checksummed format.

    eth-account requires checksummed addresses in transaction fields.
    """
    if isinstance(address, bytes):
        if len(address) != 20:
            raise ValueError(f"Address must be 20 bytes, got {len(address)}")
        address = "0x" + address.hex()
    if not is_hex_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    addr = address.lower().replace("0x", "")
    addr_hash = keccak256(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


def hex_to_bytes(value: str) -> bytes:
    value = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(value)


def bytes_to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def hex_to_int(value: Union[str, int, None]) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


def parse_range(spec: str) -> tuple[int, Optional[int]]:
    """Parse an inclusive byte range such as ``"0-3"`` or ``"10-"``.

    Returns ``(start, end)`` where ``end`` is None for an open range.
    """
    match = _RANGE.match(spec.strip())
    if not match:
        raise ValueError(f"Invalid byte range: {spec!r} (expected 'start-end')")
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else None
    if end is not None and end < start:
        raise ValueError(f"Invalid byte range: {spec!r} (end before start)")
    return start, end


def format_metadata(metadata: Optional[dict[str, str]]) -> list[tuple[str, str]]:
    """Flatten a metadata mapping into sorted ``(key, value)`` pairs."""
    if not metadata:
        return []
    pairs = []
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValueError("Metadata keys and values must be strings")
        pairs.append((key, value))
    return sorted(pairs)


def parse_metadata_pairs(pairs: Optional[list[str]]) -> dict[str, str]:
    """Parse ``key=value`` strings into a mapping."""
    result: dict[str, str] = {}
    for item in pairs or []:
        if "=" not in item:
            raise ValueError(f"Metadata must be key=value, got: {item!r}")
        key, value = item.split("=", 1)
        result[key.strip()] = value.strip()
    return result
