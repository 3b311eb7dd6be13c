"""
Credit Ledger - spendable usage balance per account.

Direction of approvals, seen from one account:
- ``approvals_from``: delegates permitted to spend this account's credit
- ``approvals_to``: payers whose credit this account may spend

Every mutating call goes through the shared transaction pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..codex.models import GasParams, TransactionResult, TxKind
from ..conduit.abi import CREDIT_MANAGER_ABI, encode_call
from ..conduit.rpc import Height
from ..conduit.tx import TransactionPipeline
from ..errors import ApprovalLimitExceededError
from ..utils import MAX_UINT256, ZERO_ADDRESS, same_address, to_checksum_address

logger = logging.getLogger(__name__)


def _optional_limit(value: int) -> Optional[int]:
    return None if value == MAX_UINT256 else value


@dataclass(frozen=True)
class Approval:
    """
    One approval entry.

    Attributes:
        counterparty: The delegate (in approvals_from) or payer (in approvals_to)
        limit: Cap on cumulative credit spend, None for unlimited
        gas_fee_limit: Cap on cumulative gas fees, None for unlimited
        expiry: Block height at which the approval lapses, None for never
        used: Credit spent so far under this approval
        gas_fee_used: Gas fees spent so far under this approval
    """
    counterparty: str
    limit: Optional[int] = None
    gas_fee_limit: Optional[int] = None
    expiry: Optional[int] = None
    used: int = 0
    gas_fee_used: int = 0

    @classmethod
    def from_row(cls, row: tuple) -> "Approval":
        addr, limit, gas_fee_limit, expiry, used, gas_fee_used = row
        return cls(
            counterparty=to_checksum_address(addr),
            limit=_optional_limit(limit),
            gas_fee_limit=_optional_limit(gas_fee_limit),
            expiry=expiry or None,
            used=used,
            gas_fee_used=gas_fee_used,
        )

    @property
    def remaining(self) -> Optional[int]:
        """Credit still spendable, None when unlimited."""
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    def is_expired(self, height: int) -> bool:
        return self.expiry is not None and height >= self.expiry

    def to_dict(self) -> dict[str, Any]:
        return {
            "counterparty": self.counterparty,
            "limit": self.limit,
            "gas_fee_limit": self.gas_fee_limit,
            "expiry": self.expiry,
            "used": self.used,
            "gas_fee_used": self.gas_fee_used,
        }


@dataclass(frozen=True)
class CreditBalance:
    owner: str
    free: int
    committed: int
    sponsor: Optional[str] = None
    last_debit_epoch: int = 0
    approvals_from: dict[str, Approval] = field(default_factory=dict)
    approvals_to: dict[str, Approval] = field(default_factory=dict)

    def approval_for(self, delegate: str) -> Optional[Approval]:
        """The approval letting ``delegate`` spend this owner's credit."""
        for addr, approval in self.approvals_from.items():
            if same_address(addr, delegate):
                return approval
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "free": self.free,
            "committed": self.committed,
            "sponsor": self.sponsor,
            "last_debit_epoch": self.last_debit_epoch,
            "approvals_from": {k: v.to_dict() for k, v in self.approvals_from.items()},
            "approvals_to": {k: v.to_dict() for k, v in self.approvals_to.items()},
        }


@dataclass(frozen=True)
class ApproveOptions:
    """
    Options for approving a delegate.

    Attributes:
        limit: Cap on total credit the delegate may spend (None = unlimited, 0 = nothing)
        gas_fee_limit: Cap on total gas fees (None = unlimited)
        ttl: Lifetime in blocks (None = no expiry)
        gas: Gas parameters (defaults to auto-estimate)
    """
    limit: Optional[int] = None
    gas_fee_limit: Optional[int] = None
    ttl: Optional[int] = None
    gas: GasParams = field(default_factory=GasParams)


@dataclass(frozen=True)
class CreditStats:
    balance: int
    credit_sold: int
    credit_committed: int
    credit_debited: int
    token_credit_rate: int
    num_accounts: int

    def to_dict(self) -> dict[str, int]:
        return {
            "balance": self.balance,
            "credit_sold": self.credit_sold,
            "credit_committed": self.credit_committed,
            "credit_debited": self.credit_debited,
            "token_credit_rate": self.token_credit_rate,
            "num_accounts": self.num_accounts,
        }


class CreditLedger:
    """
    Credit operations for the pipeline's signer.

    Args:
        pipeline: Transaction pipeline of the signing account
        manager_address: Credit manager contract address
    """

    def __init__(self, pipeline: TransactionPipeline, manager_address: str) -> None:
        self.pipeline = pipeline
        self.provider = pipeline.provider
        self.manager = to_checksum_address(manager_address)

    def _read(self, function_name: str, args: list, height: Height = "latest"):
        return self.provider.read_contract(self.manager, CREDIT_MANAGER_ABI, function_name, args, height=height)

    def _send(
        self,
        kind: TxKind,
        function_name: str,
        args: list,
        gas: Optional[GasParams],
        value: int = 0,
    ) -> TransactionResult:
        data = encode_call(CREDIT_MANAGER_ABI, function_name, args)
        intent = self.pipeline.intent(kind, self.manager, data, value=value, gas=gas)
        return self.pipeline.send(intent)

    def balance(self, account: Optional[str] = None, height: Height = "latest") -> CreditBalance:
        """Read an account's credit record (default: the signer)."""
        owner = to_checksum_address(account or self.pipeline.address)
        free, committed, sponsor, last_debit, approvals_to, approvals_from = self._read("getAccount", [owner], height)
        sponsor = to_checksum_address(sponsor)
        return CreditBalance(
            owner=owner,
            free=free,
            committed=committed,
            sponsor=None if same_address(sponsor, ZERO_ADDRESS) else sponsor,
            last_debit_epoch=last_debit,
            approvals_from={a.counterparty: a for a in map(Approval.from_row, approvals_from)},
            approvals_to={a.counterparty: a for a in map(Approval.from_row, approvals_to)},
        )

    def stats(self, height: Height = "latest") -> CreditStats:
        return CreditStats(*self._read("getCreditStats", [], height))

    def buy(self, amount: int, recipient: Optional[str] = None, gas: Optional[GasParams] = None) -> TransactionResult:
        """
        Buy credit for ``recipient`` (default: the signer) by sending ``amount`` wei.

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError(f"Credit purchase amount must be positive, got {amount}")
        recipient = to_checksum_address(recipient or self.pipeline.address)
        result = self._send(TxKind.BUY_CREDIT, "buyCredit", [recipient], gas, value=amount)
        logger.info("Bought credit for %s with %d wei", recipient, amount)
        return result

    def approve(self, delegate: str, options: Optional[ApproveOptions] = None) -> TransactionResult:
        """
        Let ``delegate`` spend the signer's credit. Replaces any prior approval.
        """
        options = options or ApproveOptions()
        for name in ("limit", "gas_fee_limit", "ttl"):
            value = getattr(options, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        delegate = to_checksum_address(delegate)
        if same_address(delegate, self.pipeline.address):
            raise ValueError("Cannot approve credit to the signing account itself")

        args = [
            delegate,
            MAX_UINT256 if options.limit is None else options.limit,
            MAX_UINT256 if options.gas_fee_limit is None else options.gas_fee_limit,
            options.ttl or 0,
        ]
        result = self._send(TxKind.APPROVE_CREDIT, "approveCredit", args, options.gas)
        logger.info("Approved %s to spend credit of %s (limit=%s)", delegate, self.pipeline.address, options.limit)
        return result

    def revoke(self, delegate: str, gas: Optional[GasParams] = None) -> TransactionResult:
        """Revoke ``delegate``'s approval. Revoking an absent approval succeeds."""
        delegate = to_checksum_address(delegate)
        result = self._send(TxKind.REVOKE_CREDIT, "revokeCredit", [delegate], gas)
        logger.info("Revoked credit approval of %s for %s", self.pipeline.address, delegate)
        return result

    def set_sponsor(self, sponsor: str, gas: Optional[GasParams] = None) -> TransactionResult:
        """Make ``sponsor`` the default payer for the signer's usage."""
        return self._send(TxKind.SET_SPONSOR, "setAccountSponsor", [to_checksum_address(sponsor)], gas)

    def clear_sponsor(self, gas: Optional[GasParams] = None) -> TransactionResult:
        return self._send(TxKind.SET_SPONSOR, "setAccountSponsor", [ZERO_ADDRESS], gas)

    def check_allowance(self, payer: str, delegate: Optional[str] = None, height: Height = "latest") -> Approval:
        """
        Verify ``delegate`` (default: the signer) may still spend ``payer``'s credit.

        A zero limit blocks every spend, including zero-cost operations.

        Raises:
            ApprovalLimitExceededError: No approval, an expired one, or nothing left
        """
        delegate = to_checksum_address(delegate or self.pipeline.address)
        approval = self.balance(payer, height).approval_for(delegate)
        if approval is None:
            raise ApprovalLimitExceededError(f"credit approval not found: {payer} has not approved {delegate}")

        if approval.expiry is not None:
            current = height if isinstance(height, int) else self.provider.block_number()
            if approval.is_expired(current):
                raise ApprovalLimitExceededError(f"credit approval expired at block {approval.expiry}")

        remaining = approval.remaining
        if remaining is not None and remaining <= 0:
            raise ApprovalLimitExceededError(
                f"approval limit exceeded: {delegate} has used {approval.used} of {approval.limit}"
            )
        return approval
