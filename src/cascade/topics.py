"""Retry-level topic naming.

Retry level ``N`` of source topic ``t`` is always ``t-cascade-retry-N``
(1-indexed). Out-of-band tooling inspects the broker by these names, so the
format must not change.
"""

import re
from collections.abc import Sequence

RETRY_TOPIC_INFIX = "-cascade-retry-"


def retry_topic_name(source_topic: str, level: int) -> str:
    """Name of 1-indexed retry ``level`` for ``source_topic``."""
    if level < 1:
        raise ValueError(f"retry level must be >= 1, got {level}")
    return f"{source_topic}{RETRY_TOPIC_INFIX}{level}"


def resize_retry_topics(source_topic: str, current: Sequence[str], count: int) -> list[str]:
    """Return the retry-level list resized to ``count`` entries.

    Shrinking truncates from the tail. Growing keeps every existing entry and
    appends the deterministic names for the new levels, so a name never
    changes identity once created.
    """
    if count < 0:
        raise ValueError(f"retry level count must be >= 0, got {count}")

    topics = list(current[:count])
    for level in range(len(topics) + 1, count + 1):
        topics.append(retry_topic_name(source_topic, level))
    return topics


def retry_topic_pattern(source_topic: str) -> str:
    """Regex matching the source topic and all of its retry levels."""
    return f"^{re.escape(source_topic)}({re.escape(RETRY_TOPIC_INFIX)}[0-9]+)?$"


def registered_cascade_topics(source_topic: str, topics: Sequence[str]) -> list[str]:
    """Filter broker topic names down to the source topic and its retry levels."""
    pattern = re.compile(retry_topic_pattern(source_topic))
    return sorted(t for t in topics if pattern.match(t))


__all__ = [
    "RETRY_TOPIC_INFIX",
    "retry_topic_name",
    "resize_retry_topics",
    "retry_topic_pattern",
    "registered_cascade_topics",
]
