"""Polling with exponential backoff.

Provider calls are never retried by the core. The one place that waits is
clone-completion polling: after Gitea accepts a migrate request, the
executor can poll the destination repository until the server-side clone
finishes. That loop retries only errors flagged ``retryable``
(``ClonePendingError``, ``RateLimitError``) and gives up after a deadline.
"""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from .exceptions import MirrorError
from .logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 10)
        initial_delay: Initial delay in seconds before first retry (default: 2.0)
        max_delay: Maximum delay in seconds between retries (default: 30.0)
        backoff_factor: Multiplier for exponential backoff (default: 1.5)
        jitter: Whether to add random jitter to delays (default: True)
        deadline: Total seconds to keep retrying, or None for no deadline
    """

    max_retries: int = 10
    initial_delay: float = 2.0
    max_delay: float = 30.0
    backoff_factor: float = 1.5
    jitter: bool = True
    deadline: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if self.max_delay <= 0:
            raise ValueError("max_delay must be > 0")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be > 0")

    @classmethod
    def for_timeout(cls, timeout: float) -> "RetryConfig":
        """Build a config that keeps polling until ``timeout`` seconds pass."""
        return cls(max_retries=10_000, deadline=timeout)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given retry attempt (0-indexed) with exponential backoff."""
        delay = self.initial_delay * (self.backoff_factor**attempt)
        delay = min(delay, self.max_delay)

        # Random factor between 0.5 and 1.0
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5

        return delay


def should_retry_exception(exception: Exception) -> bool:
    """Only MirrorError instances flagged ``retryable`` are retried."""
    if isinstance(exception, MirrorError):
        return bool(getattr(exception, "retryable", False))
    return False


def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Execute a function, retrying retryable failures with exponential backoff.

    Args:
        func: Function to execute
        *args: Positional arguments to pass to func
        config: Retry configuration (uses defaults if not provided)
        sleep: Sleep function, replaceable in tests
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from successful function execution

    Raises:
        Exception: The last exception once retries or the deadline are
            exhausted, or immediately if it is not retryable
    """
    if config is None:
        config = RetryConfig()

    started = time.monotonic()
    attempt = 0
    func_name = getattr(func, "__name__", repr(func))

    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not should_retry_exception(e):
                logger.debug(f"Exception {type(e).__name__} is not retryable, failing immediately")
                raise

            if attempt >= config.max_retries:
                logger.warning(
                    f"Max retries ({config.max_retries}) exhausted for {func_name}, "
                    f"last error: {e}"
                )
                raise

            delay = config.calculate_delay(attempt)
            if config.deadline is not None:
                remaining = config.deadline - (time.monotonic() - started)
                if remaining <= 0:
                    logger.warning(f"Deadline of {config.deadline}s passed for {func_name}: {e}")
                    raise
                delay = min(delay, remaining)

            logger.info(
                f"Attempt {attempt + 1} failed for {func_name}: {e}. Retrying in {delay:.2f}s..."
            )
            sleep(delay)
            attempt += 1
