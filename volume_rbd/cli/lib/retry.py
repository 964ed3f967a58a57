"""
Bounded retry policy.

Deciding which errors are transient is the caller's job (see
`rbd.is_busy_error`); the policy only counts attempts and waits between them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _never(exc: Exception) -> bool:
    return False


@dataclass
class RetryPolicy:
    """Run an operation up to `max_attempts` times with a fixed delay."""

    max_attempts: int = 5
    delay: float = 1.0
    retryable: Callable[[Exception], bool] = _never
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    def call(self, fn: Callable[[], T], description: str = "operation") -> T:
        """
        Call `fn` until it succeeds, raises a non-retryable error, or the
        attempt bound is reached.

        Raises:
            Exception: The non-retryable error, or the last retryable error
                once all attempts are used
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if not self.retryable(exc):
                    raise
                if attempt == self.max_attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempt, exc)
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description,
                    attempt,
                    self.max_attempts,
                    self.delay,
                    exc,
                )
                self.sleep(self.delay)

        raise AssertionError("unreachable")
