"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- CascadeError hierarchy for typed exceptions
- Classification utilities for retry decisions
"""

from core.errors.exceptions import (
    BrokerConnectionError,
    # Base classes
    CascadeError,
    DisconnectError,
    # Enums
    ErrorCategory,
    LifecycleError,
    ProvisioningError,
    PublishError,
    ServiceError,
    UnknownEventError,
    # Classification utilities
    classify_exception,
    is_retryable_error,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "CascadeError",
    # Broker errors
    "BrokerConnectionError",
    "DisconnectError",
    "PublishError",
    "ProvisioningError",
    # Permanent errors
    "ServiceError",
    "UnknownEventError",
    "LifecycleError",
    # Utilities
    "classify_exception",
    "is_retryable_error",
]
