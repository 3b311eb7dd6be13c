"""
Per-account sequence (nonce) tracking.

One tracker per account, passed explicitly into the transaction pipeline.
At most one ``next()`` and its submission may be in flight (unconfirmed)
per account at a time: the pipeline holds the tracker lock until the
submitted transaction reaches a terminal state, and a transaction left
unconfirmed is recorded as outstanding until it is reconciled.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional

from ..errors import SequenceStaleError

if TYPE_CHECKING:
    from .rpc import NetworkProvider

logger = logging.getLogger(__name__)


class SequenceTracker:
    """
    Cached, locally-incremented transaction counter for one address.

    Args:
        address: Account address
        block_tag: Block tag used when reading the count from the network.
            "pending" includes transactions accepted but not yet mined.
    """

    def __init__(self, address: str, block_tag: str = "pending") -> None:
        self.address = address
        self.block_tag = block_tag
        self._lock = threading.RLock()
        self._next: Optional[int] = None
        self._outstanding: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self._next is not None

    @property
    def outstanding(self) -> Optional[str]:
        """Hash of a submitted transaction not yet seen in a terminal state."""
        return self._outstanding

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the tracker lock across submission and confirmation."""
        with self._lock:
            yield

    def track(self, tx_hash: str) -> None:
        with self._lock:
            self._outstanding = tx_hash

    def settle(self) -> None:
        with self._lock:
            self._outstanding = None

    @property
    def current(self) -> Optional[int]:
        """Next sequence number to be handed out, None if not synchronized."""
        return self._next

    def sync(self, provider: "NetworkProvider") -> int:
        """
        Read the account's sequence from the network and cache it.

        A cached value is never lowered by ``sync``; use ``reset`` for that.
        """
        with self._lock:
            remote = provider.get_nonce(self.address, self.block_tag)
            if self._next is None or remote > self._next:
                self._next = remote
            logger.debug("Sequence for %s synced: %d", self.address, self._next)
            return self._next

    def reset(self, provider: "NetworkProvider") -> int:
        """Force a resync from the network, discarding the cached value."""
        with self._lock:
            self._next = None
            value = self.sync(provider)
            logger.info("Sequence for %s reset to %d", self.address, value)
            return value

    def invalidate(self) -> None:
        """Drop the cached value so the next reservation resyncs."""
        with self._lock:
            self._next = None

    def next(self) -> int:
        """
        Return the cached sequence and increment it locally.

        Raises:
            SequenceStaleError: If the tracker has not been synchronized
        """
        with self._lock:
            if self._next is None:
                raise SequenceStaleError(f"Sequence for {self.address} is not synchronized")
            value = self._next
            self._next += 1
            return value

    @contextmanager
    def reserve(self, provider: "NetworkProvider") -> Iterator[int]:
        """
        Reserve the next sequence number for one submission.

        The lock is held for the whole block. If the block raises, the
        cached value is invalidated: whether the network consumed the
        number is unknown, so the next reservation reads it again.

        Raises:
            RuntimeError: If a previous transaction is still outstanding
        """
        with self._lock:
            if self._outstanding is not None:
                raise RuntimeError(
                    f"Transaction {self._outstanding} from {self.address} is still in flight; reconcile it first"
                )
            if self._next is None:
                self.sync(provider)
            value = self.next()
            try:
                yield value
            except BaseException:
                self._next = None
                raise
