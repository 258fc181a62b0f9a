"""
Core types shared across modules.

This module provides base enums used by the error hierarchy and the retry
helpers so that every module classifies failures the same way.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on retry
                   (e.g., broker unreachable, request timeouts)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., a service callback rejecting its input, bad config)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
