"""Bounded retry with exponential backoff."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Raised by an attempt that may succeed if repeated."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_s: float = 0.5
    multiplier: float = 2.0
    max_backoff_s: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_s < 0 or self.max_backoff_s < 0:
            raise ValueError("backoff must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay(self, attempt: int) -> float:
        """Sleep before attempt number `attempt + 1` (attempts count from 1)."""
        return min(self.backoff_s * (self.multiplier ** (attempt - 1)), self.max_backoff_s)

    def run(
        self,
        operation: Callable[[], T],
        *,
        describe: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """
        Call `operation` until it succeeds or attempts run out.

        Only RetryableError is retried; the last one is re-raised. Any other
        exception propagates immediately.
        """
        attempt = 1
        while True:
            try:
                return operation()
            except RetryableError as exc:
                if attempt >= self.max_attempts:
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    describe,
                    attempt,
                    self.max_attempts,
                    exc,
                    wait,
                )
                sleep(wait)
                attempt += 1


__all__ = ["RetryPolicy", "RetryableError"]
