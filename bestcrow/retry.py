"""
Retry with exponential backoff and jitter.

Used around RPC calls so transient transport failures are retried with a
bounded, growing delay instead of hammering the node.
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional

from .errors import TransportError

logger = logging.getLogger(__name__)


class BackoffStrategy(str, Enum):
    """Backoff strategy for retries."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 8
    """Maximum number of attempts (including the initial one)"""

    initial_delay: float = 1.0
    """Delay before the first retry in seconds"""

    max_delay: float = 60.0
    """Upper bound on any single delay in seconds"""

    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    backoff_multiplier: float = 2.0

    jitter: bool = True

    jitter_factor: float = 0.1
    """0.1 means +/-10% randomness"""

    retry_on: tuple = (TransportError,)
    """Exception types to retry on"""

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryConfig":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
        )


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


class Retry:
    """
    Retry handler with configurable backoff.

    Example:
        retry = Retry(RetryConfig(max_attempts=5))
        head = retry.execute(source.latest_block)

    ``sleep`` can be swapped for an interruptible wait (e.g. ``Event.wait``)
    so a stopping pipeline does not sit out a long backoff.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds after the given (0-indexed) failed attempt."""
        if self.config.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.config.initial_delay * (self.config.backoff_multiplier**attempt)
        elif self.config.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.config.initial_delay + (self.config.backoff_multiplier * attempt)
        else:  # CONSTANT
            delay = self.config.initial_delay

        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            jitter_range = delay * self.config.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))
            delay = min(delay, self.config.max_delay)

        return delay

    def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with retry logic.

        Raises:
            RetryError: When all attempts are exhausted
            Exception: Any non-retryable exception, unchanged
        """
        for attempt in range(self.config.max_attempts):
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        f"Operation succeeded on attempt "
                        f"{attempt + 1}/{self.config.max_attempts}"
                    )
                return result

            except Exception as e:
                if not isinstance(e, self.config.retry_on):
                    raise

                if attempt >= self.config.max_attempts - 1:
                    raise RetryError(
                        f"All {self.config.max_attempts} attempts exhausted. "
                        f"Last error: {type(e).__name__}: {e}",
                        attempts=self.config.max_attempts,
                        last_exception=e,
                    ) from e

                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"{type(e).__name__}: {e}. "
                    f"Attempt {attempt + 1}/{self.config.max_attempts}. "
                    f"Retrying in {delay:.2f}s..."
                )
                self._sleep(delay)

        raise RetryError("No attempts configured", attempts=0)

    def decorator(self, func: Callable) -> Callable:
        """Wrap ``func`` so every call goes through ``execute``."""

        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.execute(func, *args, **kwargs)

        return wrapper


def with_retry(config: Optional[RetryConfig] = None):
    """
    Decorator factory for retry logic.

    Example:
        @with_retry(RetryConfig(max_attempts=5, initial_delay=0.5))
        def fetch_head():
            return w3.eth.block_number
    """
    return Retry(config or RetryConfig()).decorator


__all__ = [
    "Retry",
    "RetryConfig",
    "RetryError",
    "BackoffStrategy",
    "with_retry",
]
