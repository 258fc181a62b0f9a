"""
Resilience patterns module.

Components:
    - RetryConfig: Exponential backoff configuration
    - retry_async: Retry with jitter for coroutines
"""

from .retry import (
    DEFAULT_RETRY,
    RetryConfig,
    retry_async,
)

__all__ = [
    "RetryConfig",
    "retry_async",
    "DEFAULT_RETRY",
]
