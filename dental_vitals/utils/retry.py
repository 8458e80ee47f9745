"""
Retry utilities with exponential backoff for AI provider calls.

The provider call is allowed a single retry on transient failure before the
insight generator falls back to rule-based narratives.
"""
import functools
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type
from dental_vitals.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {error}"
            self.last_error = error_str
            self.errors.append(error_str)

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]
        }


# Network-level failures are always worth one more try
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (408, 429, 500, 502, 503, 504, 529)


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.8,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Delay before the next attempt.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base_delay: Delay after the first failure
        max_delay: Upper bound before jitter
        exponential_base: Growth factor per attempt
        jitter: Add up to 25% random delay
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS
) -> bool:
    """Decide whether a provider error is transient."""
    if isinstance(error, retryable_exceptions):
        return True

    # SDK errors (anthropic / openai) expose the HTTP status
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code in RETRYABLE_STATUS_CODES

    error_str = str(error).lower()
    if "rate limit" in error_str or "too many requests" in error_str:
        return True
    if "timeout" in error_str or "timed out" in error_str:
        return True
    if "connection" in error_str and any(w in error_str for w in ("refused", "reset", "error", "failed")):
        return True
    return any(f"http {code}" in error_str for code in RETRYABLE_STATUS_CODES)


def retry_sync(
    max_attempts: int = 2,
    base_delay: float = 0.8,
    max_delay: float = 10.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying a synchronous call with exponential backoff.

    Usage:
        @retry_sync(max_attempts=2)
        def call_provider():
            ...
    """
    def decorator(func: Callable):
        last_stats = [None]

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            stats = RetryStats()
            last_stats[0] = stats

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    stats.record_attempt()
                    stats.success = True
                    if attempt > 1:
                        log.info(f"{func.__name__} succeeded on attempt {attempt}")
                    return result
                except Exception as e:
                    if attempt >= max_attempts or not is_retryable_error(e, retryable_exceptions):
                        stats.record_attempt(error=e)
                        log.error(f"{func.__name__} failed after {attempt} attempt(s): {e}")
                        raise

                    delay = calculate_backoff(attempt, base_delay=base_delay, max_delay=max_delay)
                    stats.record_attempt(error=e, delay=delay)
                    log.warning(
                        f"{func.__name__} attempt {attempt} failed: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    sleep(delay)

            raise RuntimeError("Retry exhausted")

        wrapper.get_retry_stats = lambda: last_stats[0]
        return wrapper

    return decorator
