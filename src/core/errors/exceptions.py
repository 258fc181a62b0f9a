"""
Unified exception hierarchy for the cascade engine.

Provides typed exceptions with retry classification so lifecycle operations,
the publish path and the service wrapper all report failures the same way.
"""

from core.types import ErrorCategory


class CascadeError(Exception):
    """
    Base exception for all cascade errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Broker Errors (Transient)
# =============================================================================


class BrokerConnectionError(CascadeError):
    """Broker unreachable or rejected the client during connect/disconnect."""

    category = ErrorCategory.TRANSIENT


class DisconnectError(BrokerConnectionError):
    """Disconnect attempted while a message is still being processed."""


class PublishError(CascadeError):
    """Publishing a message to a retry level or the dead-letter sink failed."""

    category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        topic: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if topic is not None:
            context.setdefault("target_topic", topic)
        super().__init__(message, cause, context)
        self.topic = topic


class ProvisioningError(CascadeError):
    """Admin topic creation or listing failed."""

    category = ErrorCategory.TRANSIENT


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class ServiceError(CascadeError):
    """The user service callback raised, timed out, or returned garbage."""

    category = ErrorCategory.PERMANENT


class UnknownEventError(CascadeError, ValueError):
    """Subscription to an event name outside the recognised set."""

    category = ErrorCategory.PERMANENT

    def __init__(self, event: object):
        super().__init__(f"Unknown event: {event}", context={"event": str(event)})
        self.event = event


class LifecycleError(CascadeError):
    """Operation called in a service state that does not allow it."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Error Classification Utilities
# =============================================================================

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "timeout",
        "connection",
        "unavailable",
        "not leader",
        "leader not available",
        "request timed out",
        "broker",
    }
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, CascadeError):
        return exc.category

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.TRANSIENT

    # aiokafka marks its retriable errors explicitly
    if getattr(exc, "retriable", False):
        return ErrorCategory.TRANSIENT

    exc_str = f"{type(exc).__name__} {exc}".lower()
    if any(marker in exc_str for marker in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception should be retried.

    Transient and unknown errors are retried; permanent errors are not.
    """
    if isinstance(exc, CascadeError):
        return exc.is_retryable
    return classify_exception(exc) != ErrorCategory.PERMANENT


__all__ = [
    "CascadeError",
    "BrokerConnectionError",
    "DisconnectError",
    "PublishError",
    "ProvisioningError",
    "ServiceError",
    "UnknownEventError",
    "LifecycleError",
    "ErrorCategory",
    "classify_exception",
    "is_retryable_error",
]
