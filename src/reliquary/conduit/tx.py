"""
Transaction Pipeline - Build, sign, submit and await transactions.

Uses eth-account for signing and the httpx-based provider for sending.
All gas is paid by the signer.

Flow for every mutating operation:
1. Resolve gas (estimate when the intent leaves it unset)
2. Reserve the next sequence number (tracker lock held until step 4 ends)
3. Sign and submit
4. Await a terminal result and map reverts to typed errors
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..codex.models import GasParams, TransactionIntent, TransactionResult, TxHandle, TxKind
from ..errors import ReliquaryError, SequenceStaleError, classify_revert
from ..sigil.eth import KeyAuthority
from ..utils import to_checksum_address
from .rpc import NetworkProvider
from .sequence import SequenceTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedIntent:
    intent: TransactionIntent
    raw: bytes
    tx_hash: str


class TransactionPipeline:
    """
    Routes every mutating operation through one ordered signing path.

    Args:
        provider: Network provider
        authority: Key authority used for signing
        tracker: Sequence tracker for the authority's address (created if omitted)
    """

    def __init__(
        self,
        provider: NetworkProvider,
        authority: KeyAuthority,
        tracker: Optional[SequenceTracker] = None,
    ) -> None:
        self.provider = provider
        self.authority = authority
        self.tracker = tracker or SequenceTracker(authority.address)
        if self.tracker.address.lower() != authority.address.lower():
            raise ValueError("Sequence tracker belongs to a different address")

    @property
    def address(self) -> str:
        return self.authority.address

    def intent(
        self,
        kind: TxKind,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: Optional[GasParams] = None,
    ) -> TransactionIntent:
        """Build an unsigned intent from the pipeline's signer."""
        if value < 0:
            raise ValueError(f"Value must be non-negative, got {value}")
        return TransactionIntent(
            kind=kind,
            to=to_checksum_address(to),
            data=data,
            value=value,
            gas=gas or GasParams(),
            signer=self.authority.address,
            chain_id=self.provider.config.chain_id,
        )

    def sign(self, intent: TransactionIntent, sequence: int) -> SignedIntent:
        """Assign a sequence number and sign. Gas must already be resolved."""
        stamped = intent.with_sequence(sequence)
        signed = self.authority.sign_transaction(stamped.to_tx_dict())
        tx_hash = "0x" + bytes(signed.hash).hex()
        return SignedIntent(intent=stamped, raw=bytes(signed.raw_transaction), tx_hash=tx_hash)

    def reconcile(self, timeout: Optional[float] = None) -> Optional[TransactionResult]:
        """
        Wait for the outstanding transaction, if any, to reach a terminal state.

        A reverted outstanding transaction is logged and returned, not raised:
        its caller already received the hash.

        Raises:
            TransactionTimeoutError: Still unconfirmed; it stays outstanding
        """
        with self.tracker.hold():
            tx_hash = self.tracker.outstanding
            if tx_hash is None:
                return None
            result = self.provider.await_result(tx_hash, timeout=timeout)
            self.tracker.settle()
            if result.failed:
                logger.warning("Outstanding transaction %s reverted", tx_hash)
            return result

    def submit(self, intent: TransactionIntent, timeout: Optional[float] = None) -> TxHandle:
        """
        Estimate, sign with the next sequence number and submit.

        An earlier transaction still in flight is reconciled first (waiting
        up to ``timeout``). The new transaction stays outstanding until
        ``send`` or ``reconcile`` sees it reach a terminal state.

        Raises:
            SequenceStaleError: The tracker is reset before re-raising
            SubmissionError: Never retried here
            TransactionTimeoutError: The earlier transaction is still unconfirmed
        """
        with self.tracker.hold():
            self.reconcile(timeout)
            if intent.gas.needs_estimate:
                intent = intent.with_gas(self.provider.estimate_gas(intent))

            try:
                with self.tracker.reserve(self.provider) as sequence:
                    signed = self.sign(intent, sequence)
                    handle = self.provider.submit(signed.raw, intent=signed.intent)
            except SequenceStaleError:
                logger.warning("Stale sequence for %s, resynchronizing", self.address)
                try:
                    self.tracker.reset(self.provider)
                except ReliquaryError as exc:
                    # Tracker is already invalidated; the next reservation resyncs
                    logger.warning("Sequence resync for %s failed: %s", self.address, exc)
                raise
            self.tracker.track(handle.tx_hash)

        logger.info("%s submitted with sequence %d: %s", intent.kind.value, sequence, handle.tx_hash)
        return handle

    def send(
        self,
        intent: TransactionIntent,
        wait: bool = True,
        timeout: Optional[float] = None,
    ) -> TransactionResult:
        """
        Submit an intent and (optionally) wait for its terminal result.

        With ``wait`` the tracker stays held until the receipt arrives, so
        no other sender on this account submits in between.  Without it the
        transaction stays outstanding and the next submission waits for it.

        Returns:
            Committed result, or Pending result if ``wait`` is False

        Raises:
            TransactionFailedError or a more specific error when the
            transaction reverted on chain
            TransactionTimeoutError: If the wait timed out. The hash stays
            outstanding and is reconciled before the next submission.
        """
        with self.tracker.hold():
            handle = self.submit(intent, timeout=timeout)
            if not wait:
                return TransactionResult.pending(handle.tx_hash)

            result = self.provider.await_result(handle, timeout=timeout)
            self.tracker.settle()

        if result.failed:
            # Replay against the state the transaction actually ran on
            height = result.block_number - 1 if result.block_number else "latest"
            reason = self.provider.revert_reason(handle.intent or intent, height=height)
            logger.error("%s reverted (%s): %s", intent.kind.value, result.tx_hash, reason)
            raise classify_revert(reason, tx_hash=result.tx_hash, result=result)
        return result
