"""
Error taxonomy for Reliquary.

Every error carries an ``exit_code`` used by the CLI, and optionally the
hash of the transaction it relates to.

Read-path errors may be retried by the caller.  Write-path errors are
never retried by the library: the caller owns the resubmission decision.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .codex.models import TransactionResult


class ReliquaryError(RuntimeError):
    exit_code: int = 1

    def __init__(self, message: str = "", *, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class InvalidKeyError(ReliquaryError, ValueError):
    exit_code = 2


class SequenceStaleError(ReliquaryError):
    """The network rejected the sequence number. Reset the tracker and retry."""

    exit_code = 3


class GasEstimationError(ReliquaryError):
    exit_code = 4


class SubmissionError(ReliquaryError):
    """Transport failure while submitting. The transaction may or may not be on chain."""

    exit_code = 5


class TransactionFailedError(ReliquaryError):
    """Executed on chain but reverted."""

    exit_code = 6

    def __init__(
        self,
        message: str = "",
        *,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
        result: Optional["TransactionResult"] = None,
    ) -> None:
        super().__init__(message, tx_hash=tx_hash)
        self.reason = reason
        self.result = result


class TransactionTimeoutError(ReliquaryError, TimeoutError):
    """Local wait exceeded. Chain state is unknown, reconcile by hash."""

    exit_code = 7


class TransactionNotFoundError(ReliquaryError):
    exit_code = 8


class RpcError(ReliquaryError):
    exit_code = 9

    def __init__(self, message: str, *, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class ObjectStoreError(ReliquaryError):
    exit_code = 10

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KeyExistsError(ReliquaryError):
    exit_code = 11


class KeyNotFoundError(ReliquaryError):
    exit_code = 12


class NotYetAvailableError(ReliquaryError):
    """Committed on chain but the content is not materialized yet. Retry later."""

    exit_code = 13


class ApprovalLimitExceededError(ReliquaryError):
    exit_code = 14


class InsufficientCreditError(ReliquaryError):
    exit_code = 15


# Substrings of revert reasons, checked in order.
_REVERT_PATTERNS: list[tuple[str, type[ReliquaryError]]] = [
    ("approval limit exceeded", ApprovalLimitExceededError),
    ("credit approval not found", ApprovalLimitExceededError),
    ("credit approval expired", ApprovalLimitExceededError),
    ("gas fee limit exceeded", ApprovalLimitExceededError),
    ("insufficient credit", InsufficientCreditError),
    ("key exists", KeyExistsError),
    ("key not found", KeyNotFoundError),
]


def classify_revert(
    reason: Optional[str],
    *,
    tx_hash: Optional[str] = None,
    result: Optional["TransactionResult"] = None,
    default: type[ReliquaryError] = TransactionFailedError,
) -> ReliquaryError:
    """Map a revert reason onto the most specific error type."""
    text = (reason or "").lower()
    for needle, cls in _REVERT_PATTERNS:
        if needle in text:
            return cls(reason or needle, tx_hash=tx_hash)
    message = f"Transaction reverted: {reason}" if reason else "Transaction reverted"
    if default is TransactionFailedError:
        return TransactionFailedError(message, tx_hash=tx_hash, reason=reason, result=result)
    error = default(message)
    error.tx_hash = tx_hash
    return error
