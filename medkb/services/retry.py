from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[Any]]

logger = logging.getLogger(__name__)

# Attempts per batch, including the first one
SYNC_MAX_ATTEMPTS = int(os.getenv("MEDKB_SYNC_MAX_ATTEMPTS", "3"))
# Backoff delay is base ** attempt seconds
SYNC_BACKOFF_BASE = float(os.getenv("MEDKB_SYNC_BACKOFF_BASE", "2.0"))


def exponential_backoff(base: float = SYNC_BACKOFF_BASE) -> Callable[[int], float]:
    """Delay, in seconds, to wait after the given failed attempt (1-based)."""

    def _delay(attempt: int) -> float:
        return base ** attempt

    return _delay


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T] = None
    attempts: int = 0
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with backoff.

    ``sleep`` is injectable so tests can record the delays instead of
    waiting on them.  No delay follows the final failed attempt.
    """

    max_attempts: int = SYNC_MAX_ATTEMPTS
    backoff: Callable[[int], float] = field(default_factory=exponential_backoff)
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        return self.backoff(attempt)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> RetryOutcome[T]:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
                return RetryOutcome(value=value, attempts=attempt)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt < self.max_attempts:
                    wait = self.delay_for(attempt)
                    logger.warning(
                        "%s failed (attempt %s/%s): %s. Retrying in %.1fs...",
                        description, attempt, self.max_attempts, describe_error(exc), wait,
                    )
                    await self.sleep(wait)
        return RetryOutcome(attempts=self.max_attempts, error=last_error)


def describe_error(exc: BaseException) -> str:
    message = str(exc)
    return message if message else type(exc).__name__
