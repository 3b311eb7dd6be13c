"""
Retry with bounded exponential backoff.

Used for idempotent reads and for polling eventually-available state.
Never wrap a transaction submission with this helper.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    """
    Backoff policy.

    Attributes:
        initial: First delay in seconds
        factor: Multiplier applied after each attempt
        max_delay: Upper bound for a single delay
        max_attempts: Total attempts (0 means unbounded, limited by timeout)
        timeout: Total time budget in seconds (None means unbounded, limited by attempts)
    """
    initial: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0
    max_attempts: int = 0
    timeout: Optional[float] = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts <= 0 and self.timeout is None:
            raise ValueError("Backoff needs max_attempts or timeout to be bounded")

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.initial * (self.factor ** (attempt - 1)), self.max_delay)


def retry_call(
    fn: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...],
    backoff: Backoff,
    sleep: Callable[[float], None] = time.sleep,
    describe: str = "operation",
) -> T:
    """
    Call ``fn`` until it succeeds, retrying on the given exception types.

    Raises:
        The last retryable exception once the policy is exhausted.
    """
    start = time.monotonic()
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except retry_on as exc:
            if backoff.max_attempts and attempt >= backoff.max_attempts:
                raise
            wait = backoff.delay(attempt)
            if backoff.timeout is not None:
                remaining = backoff.timeout - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                wait = min(wait, remaining)
            logger.warning("Retrying %s after %.2fs (attempt %d): %s", describe, wait, attempt, exc)
            sleep(wait)
