"""
Retry with exponential backoff, and the per-URL deadline.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import DeadlineExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """Wall-clock budget shared by every stage of one analysis run."""

    def __init__(self, budget: Optional[float], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.budget = budget
        self._expires_at = None if budget is None else clock() + budget

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout(self, per_call: Optional[float] = None) -> Optional[float]:
        """The smaller of a per-call timeout and the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return per_call
        if per_call is None:
            return remaining
        return min(per_call, remaining)

    def check(self, what: str) -> None:
        if self.expired:
            raise DeadlineExceeded(f"Time budget of {self.budget}s exhausted before {what}")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay(n) = min(base * 2**(n-1), cap) + jitter."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        description: str,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        deadline: Optional[Deadline] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """
        Run operation(attempt) until it succeeds or attempts are exhausted.

        Args:
            operation: Coroutine factory receiving the 1-based attempt number
            description: Used in log messages
            retry_on: Exception types that trigger another attempt
            deadline: Optional budget; no retry is started once it has expired
            sleep: Injected for tests

        Raises:
            The last exception raised by operation, or DeadlineExceeded
        """
        for attempt in range(1, self.max_attempts + 1):
            if deadline is not None:
                deadline.check(description)
            try:
                return await operation(attempt)
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                if deadline is not None:
                    remaining = deadline.remaining()
                    if remaining is not None and remaining <= delay:
                        raise
                logger.warning(
                    f"⚠️  {description} failed (attempt {attempt}/{self.max_attempts}): "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                )
                await sleep(delay)
        raise RuntimeError(f"{description}: retry policy allows no attempts")
