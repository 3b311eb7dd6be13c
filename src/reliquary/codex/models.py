from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TxKind(str, Enum):
    CREATE_BUCKET = "CreateBucket"
    ADD_OBJECT = "AddObject"
    DELETE_OBJECT = "DeleteObject"
    BUY_CREDIT = "BuyCredit"
    APPROVE_CREDIT = "ApproveCredit"
    REVOKE_CREDIT = "RevokeCredit"
    SET_SPONSOR = "SetSponsor"
    TRANSFER = "Transfer"


class TxStatus(str, Enum):
    PENDING = "Pending"
    COMMITTED = "Committed"
    FAILED = "Failed"


@dataclass(frozen=True)
class GasParams:
    """Gas settings for a transaction.

    Attributes:
        gas_limit: Gas limit. 0 means auto-estimate.
        gas_price: Gas price in wei. 0 means use the current network price.
    """
    gas_limit: int = 0
    gas_price: int = 0

    @property
    def needs_estimate(self) -> bool:
        return self.gas_limit <= 0 or self.gas_price <= 0


@dataclass(frozen=True)
class Account:
    address: str
    public_key: Optional[str]
    sequence: int
    balance: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "public_key": self.public_key,
            "sequence": self.sequence,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class TransactionIntent:
    """A typed, not-yet-submitted state mutation.

    Frozen: ``with_sequence`` and ``with_gas`` return new intents.
    """
    kind: TxKind
    to: str
    data: bytes
    signer: str
    chain_id: int
    value: int = 0
    gas: GasParams = field(default_factory=GasParams)
    sequence: Optional[int] = None

    def with_sequence(self, sequence: int) -> "TransactionIntent":
        return dataclasses.replace(self, sequence=sequence)

    def with_gas(self, gas: GasParams) -> "TransactionIntent":
        return dataclasses.replace(self, gas=gas)

    def call_params(self) -> dict[str, Any]:
        """Parameters for ``eth_call`` / ``eth_estimateGas``."""
        params: dict[str, Any] = {
            "from": self.signer,
            "to": self.to,
            "data": "0x" + self.data.hex(),
        }
        if self.value:
            params["value"] = hex(self.value)
        return params

    def to_tx_dict(self) -> dict[str, Any]:
        """Legacy (EIP-155) transaction dict ready for signing."""
        if self.sequence is None:
            raise ValueError("Intent has no sequence number")
        if self.gas.needs_estimate:
            raise ValueError("Intent gas parameters are not resolved")
        return {
            "to": self.to,
            "data": "0x" + self.data.hex(),
            "value": self.value,
            "nonce": self.sequence,
            "gas": self.gas.gas_limit,
            "gasPrice": self.gas.gas_price,
            "chainId": self.chain_id,
        }


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    intent: Optional[TransactionIntent] = None


@dataclass(frozen=True)
class TransactionResult:
    tx_hash: str
    status: TxStatus
    gas_used: int = 0
    block_number: Optional[int] = None
    logs: list[dict[str, Any]] = field(default_factory=list)
    sender: Optional[str] = None
    to: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status is TxStatus.COMMITTED

    @property
    def failed(self) -> bool:
        return self.status is TxStatus.FAILED

    @classmethod
    def pending(cls, tx_hash: str) -> "TransactionResult":
        return cls(tx_hash=tx_hash, status=TxStatus.PENDING)

    @classmethod
    def from_receipt(cls, receipt: dict[str, Any]) -> "TransactionResult":
        status = int(receipt.get("status", "0x0"), 16)
        block = receipt.get("blockNumber")
        return cls(
            tx_hash=receipt["transactionHash"],
            status=TxStatus.COMMITTED if status == 1 else TxStatus.FAILED,
            gas_used=int(receipt.get("gasUsed", "0x0"), 16),
            block_number=int(block, 16) if block else None,
            logs=list(receipt.get("logs") or []),
            sender=receipt.get("from"),
            to=receipt.get("to"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "gas_used": self.gas_used,
            "block_number": self.block_number,
        }
