"""
Core library: reusable, broker-agnostic components.

Modules:
    resilience  - Retry with exponential backoff and jitter
    logging     - Structured JSON/console logging with message context
    errors      - Error classification and exception hierarchy
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
