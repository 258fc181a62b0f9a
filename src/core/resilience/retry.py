"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make retry decisions:
- Transient errors: retry with exponential backoff
- Permanent errors: fail immediately (no retry)
- Unknown errors: retry conservatively
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from core.errors.exceptions import CascadeError, classify_exception
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0

    # If True, don't retry permanent errors even if max_attempts > 1
    respect_permanent: bool = True

    # Optional set of exception types to never retry (overrides classification)
    never_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryConfig":
        data = data or {}
        known = {"max_attempts", "base_delay", "max_delay", "exponential_base", "respect_permanent"}
        return cls(**{k: v for k, v in data.items() if k in known})

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay with equal jitter to prevent thundering herd.

        Args:
            attempt: 0-indexed attempt number

        Returns:
            Delay in seconds
        """
        base_delay = self.base_delay * (self.exponential_base**attempt)

        # Equal jitter: half fixed, half random
        jitter = random.uniform(0, base_delay / 2)
        delay = (base_delay / 2) + jitter

        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if should retry
        """
        if attempt >= self.max_attempts - 1:
            return False

        if self.never_retry and isinstance(error, tuple(self.never_retry)):
            return False

        if isinstance(error, CascadeError):
            if self.respect_permanent and not error.is_retryable:
                return False
            return error.is_retryable

        category = classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False

        return True


# Default configurations
DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=0.5)


def _log_retry_attempt(
    operation: str,
    attempt: int,
    config: RetryConfig,
    delay: float,
    error: Exception,
) -> None:
    logger.warning(
        "Retryable error for %s, will retry",
        operation,
        extra={
            "operation": operation,
            "attempt": attempt + 1,
            "max_attempts": config.max_attempts,
            "error_category": classify_exception(error).value,
            "delay_seconds": round(delay, 2),
            "error_message": str(error)[:200],
        },
    )


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation: str | None = None,
) -> T:
    """
    Await ``func()`` until it succeeds or the retry budget is exhausted.

    The last error is re-raised unchanged so callers can wrap it in their own
    taxonomy class.
    """
    if config is None:
        config = DEFAULT_RETRY
    operation = operation or getattr(func, "__name__", "operation")

    for attempt in range(config.max_attempts):
        try:
            result = await func()
        except Exception as e:
            if not config.should_retry(e, attempt):
                if config.max_attempts > 1:
                    logger.error(
                        "Giving up on %s after %d attempts: %s",
                        operation,
                        attempt + 1,
                        str(e)[:200],
                        extra={
                            "operation": operation,
                            "total_attempts": attempt + 1,
                            "error_category": classify_exception(e).value,
                        },
                    )
                raise

            delay = config.get_delay(attempt)
            _log_retry_attempt(operation, attempt, config, delay, e)
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                "Retry succeeded for %s after %d attempts",
                operation,
                attempt + 1,
                extra={"operation": operation, "attempt": attempt + 1},
            )
        return result

    # max_attempts >= 1 so the loop always returns or raises
    raise RuntimeError(f"retry loop for {operation} exited without a result")


__all__ = [
    "RetryConfig",
    "retry_async",
    "DEFAULT_RETRY",
]
