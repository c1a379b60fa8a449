"""Bounded retry for transient analysis failures."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from nebenkosten_review.domain.errors import AnalysisServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: Exception) -> bool:
    """Return true when a failure is likely to succeed on retry.

    Typed service errors decide by kind; anything else carries no status code
    and counts as transient.
    """
    if isinstance(exc, AnalysisServiceError):
        return exc.is_transient
    return True


@dataclass
class RetryPolicy:
    """Retry with linear, attempt-indexed backoff."""

    max_retries: int = 2
    delay_seconds: float = 3.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run the operation, retrying transient failures."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if attempt > self.max_retries or not is_transient(exc):
                    raise
                delay = attempt * self.delay_seconds
                logger.warning(
                    "Transient analysis failure, retrying",
                    extra={
                        "attempt": attempt,
                        "max_retries": self.max_retries,
                        "delay_seconds": delay,
                        "error": str(exc),
                    },
                )
                await self.sleep(delay)
