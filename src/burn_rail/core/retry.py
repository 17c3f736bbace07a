"""
Shared retry policy.

Used by the price feed, chain RPC and settlement submission so backoff and
retryable-error classification live in one place.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar
import structlog

from .errors import BurnRailError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Exponential backoff: delay = base_delay * multiplier ** (attempt - 1),
    capped at max_delay.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, BurnRailError) and not error.retryable:
            return False
        return isinstance(error, self.retry_on)

    def call(self, fn: Callable[[], T], operation: Optional[str] = None) -> T:
        """
        Run fn, retrying retryable errors up to max_attempts.

        The last error is re-raised once attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying_operation",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                self.sleep(delay)
