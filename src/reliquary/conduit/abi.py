"""
ABI definitions and encoding helpers for the registry contracts.

The bucket manager and credit manager facades are described here as
Python literals so that no build artifacts are needed at runtime.
Encoding uses eth-abi; selectors and topics use Keccak-256.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional

from eth_abi import decode, encode

from ..utils import keccak256, to_checksum_address

_KV = {
    "type": "tuple[]",
    "components": [
        {"name": "key", "type": "string"},
        {"name": "value", "type": "string"},
    ],
}

_APPROVAL_ENTRY = {
    "type": "tuple[]",
    "components": [
        {"name": "addr", "type": "address"},
        {"name": "creditLimit", "type": "uint256"},
        {"name": "gasFeeLimit", "type": "uint256"},
        {"name": "expiry", "type": "uint64"},
        {"name": "creditUsed", "type": "uint256"},
        {"name": "gasFeeUsed", "type": "uint256"},
    ],
}


def _named(name: str, spec: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, **spec}


BUCKET_MANAGER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "createBucket",
        "inputs": [
            {"name": "owner", "type": "address"},
            _named("metadata", _KV),
        ],
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "listBuckets",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "addr", "type": "address"},
                    _named("metadata", _KV),
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "addObject",
        "inputs": [
            {"name": "bucket", "type": "address"},
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "source", "type": "bytes32"},
                    {"name": "key", "type": "string"},
                    {"name": "blobHash", "type": "bytes32"},
                    {"name": "size", "type": "uint64"},
                    {"name": "ttl", "type": "uint64"},
                    _named("metadata", _KV),
                    {"name": "overwrite", "type": "bool"},
                    {"name": "from", "type": "address"},
                ],
            },
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "deleteObject",
        "inputs": [
            {"name": "bucket", "type": "address"},
            {"name": "key", "type": "string"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getObject",
        "inputs": [
            {"name": "bucket", "type": "address"},
            {"name": "key", "type": "string"},
        ],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "blobHash", "type": "bytes32"},
                    {"name": "size", "type": "uint64"},
                    {"name": "expiry", "type": "uint64"},
                    _named("metadata", _KV),
                    {"name": "status", "type": "uint8"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "queryObjects",
        "inputs": [
            {"name": "bucket", "type": "address"},
            {"name": "prefix", "type": "string"},
            {"name": "delimiter", "type": "string"},
            {"name": "startKey", "type": "string"},
            {"name": "limit", "type": "uint64"},
        ],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {
                        "name": "objects",
                        "type": "tuple[]",
                        "components": [
                            {"name": "key", "type": "string"},
                            {"name": "blobHash", "type": "bytes32"},
                            {"name": "size", "type": "uint64"},
                            {"name": "expiry", "type": "uint64"},
                            _named("metadata", _KV),
                        ],
                    },
                    {"name": "commonPrefixes", "type": "string[]"},
                    {"name": "nextKey", "type": "string"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "BucketCreated",
        "inputs": [
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "bucket", "type": "address", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ObjectAdded",
        "inputs": [
            {"name": "bucket", "type": "address", "indexed": True},
            {"name": "key", "type": "string", "indexed": False},
            {"name": "blobHash", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ObjectDeleted",
        "inputs": [
            {"name": "bucket", "type": "address", "indexed": True},
            {"name": "key", "type": "string", "indexed": False},
        ],
    },
]


CREDIT_MANAGER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "buyCredit",
        "inputs": [{"name": "recipient", "type": "address"}],
        "outputs": [],
        "stateMutability": "payable",
    },
    {
        "type": "function",
        "name": "approveCredit",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "creditLimit", "type": "uint256"},
            {"name": "gasFeeLimit", "type": "uint256"},
            {"name": "ttl", "type": "uint64"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "revokeCredit",
        "inputs": [{"name": "to", "type": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "setAccountSponsor",
        "inputs": [{"name": "sponsor", "type": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getAccount",
        "inputs": [{"name": "addr", "type": "address"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "creditFree", "type": "uint256"},
                    {"name": "creditCommitted", "type": "uint256"},
                    {"name": "creditSponsor", "type": "address"},
                    {"name": "lastDebitEpoch", "type": "uint64"},
                    _named("approvalsTo", _APPROVAL_ENTRY),
                    _named("approvalsFrom", _APPROVAL_ENTRY),
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getCreditStats",
        "inputs": [],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "balance", "type": "uint256"},
                    {"name": "creditSold", "type": "uint256"},
                    {"name": "creditCommitted", "type": "uint256"},
                    {"name": "creditDebited", "type": "uint256"},
                    {"name": "tokenCreditRate", "type": "uint256"},
                    {"name": "numAccounts", "type": "uint64"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "CreditPurchased",
        "inputs": [
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "CreditApproved",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "creditLimit", "type": "uint256", "indexed": False},
            {"name": "gasFeeLimit", "type": "uint256", "indexed": False},
            {"name": "expiry", "type": "uint64", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "CreditRevoked",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
        ],
    },
]

# Error(string)
ERROR_SELECTOR = bytes.fromhex("08c379a0")


def abi_type(param: dict[str, Any]) -> str:
    """Canonical type string, expanding tuples: ``(string,string)[]``."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(abi_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _find(abi: list[dict[str, Any]], kind: str, name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    raise ValueError(f"{kind.capitalize()} {name} not found in ABI")


def signature(entry: dict[str, Any]) -> str:
    types = ",".join(abi_type(inp) for inp in entry.get("inputs", []))
    return f"{entry['name']}({types})"


@lru_cache(maxsize=64)
def _selector_for(sig: str) -> bytes:
    return keccak256(sig.encode("utf-8"))[:4]


def selector(abi: list[dict[str, Any]], function_name: str) -> bytes:
    return _selector_for(signature(_find(abi, "function", function_name)))


def encode_call(abi: list[dict[str, Any]], function_name: str, args: list[Any]) -> bytes:
    """ABI-encode a function call: 4-byte selector followed by arguments."""
    func = _find(abi, "function", function_name)
    input_types = [abi_type(inp) for inp in func.get("inputs", [])]
    if len(args) != len(input_types):
        raise ValueError(
            f"{function_name} expects {len(input_types)} arguments, got {len(args)}"
        )
    encoded_args = encode(input_types, list(args)) if args else b""
    return _selector_for(signature(func)) + encoded_args


def decode_result(abi: list[dict[str, Any]], function_name: str, data: bytes) -> Any:
    """
    ABI-decode a function call result.

    Returns:
        Decoded result (single value or tuple), None if there are no outputs
    """
    func = _find(abi, "function", function_name)
    output_types = [abi_type(out) for out in func.get("outputs", [])]
    if not output_types:
        return None
    decoded = decode(output_types, data)
    if len(decoded) == 1:
        return decoded[0]
    return decoded


def event_topic(abi: list[dict[str, Any]], event_name: str) -> str:
    return "0x" + keccak256(signature(_find(abi, "event", event_name)).encode("utf-8")).hex()


def decode_event(
    abi: list[dict[str, Any]],
    event_name: str,
    logs: list[dict[str, Any]],
    address: Optional[str] = None,
) -> list[dict[str, Any]]:
    """
    Decode all logs matching an event.

    Indexed static parameters are decoded from topics, the rest from data.
    Addresses come back checksummed.
    """
    event = _find(abi, "event", event_name)
    topic0 = event_topic(abi, event_name)
    indexed = [p for p in event["inputs"] if p.get("indexed")]
    plain = [p for p in event["inputs"] if not p.get("indexed")]

    results = []
    for log in logs:
        topics = log.get("topics") or []
        if not topics or topics[0].lower() != topic0:
            continue
        if address and (log.get("address") or "").lower() != address.lower():
            continue
        values: dict[str, Any] = {}
        for param, topic in zip(indexed, topics[1:]):
            (value,) = decode([abi_type(param)], bytes.fromhex(topic[2:]))
            values[param["name"]] = value
        data = log.get("data") or "0x"
        raw = bytes.fromhex(data[2:]) if data.startswith("0x") else bytes.fromhex(data)
        if plain:
            decoded = decode([abi_type(p) for p in plain], raw)
            for param, value in zip(plain, decoded):
                values[param["name"]] = value
        for param in event["inputs"]:
            if param["type"] == "address" and param["name"] in values:
                values[param["name"]] = to_checksum_address(values[param["name"]])
        results.append(values)
    return results


def decode_revert(data: Any) -> Optional[str]:
    """Extract the reason string from ``Error(string)`` revert data."""
    if not data:
        return None
    if isinstance(data, dict):
        data = data.get("data")
        if not data:
            return None
    if isinstance(data, str):
        try:
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError:
            return None
    if len(data) < 4 or data[:4] != ERROR_SELECTOR:
        return None
    try:
        (reason,) = decode(["string"], data[4:])
    except Exception:  # noqa: BLE001
        return None
    return reason
