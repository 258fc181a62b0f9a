"""Message transport context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

# Message transport context variables
_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)
_message_key: ContextVar[str] = ContextVar("message_key", default="")
_message_retries: ContextVar[int] = ContextVar("message_retries", default=-1)


def set_message_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
    key: Optional[str] = None,
    retries: Optional[int] = None,
) -> None:
    """
    Set message transport context variables for structured logging.

    Args:
        topic: Topic the message was consumed from
        partition: Partition number
        offset: Message offset within partition
        key: Message key (if any)
        retries: Number of cascade hops the message has already taken
    """
    if topic is not None:
        _message_topic.set(topic)
    if partition is not None:
        _message_partition.set(partition)
    if offset is not None:
        _message_offset.set(offset)
    if key is not None:
        _message_key.set(key)
    if retries is not None:
        _message_retries.set(retries)


def get_message_context() -> Dict[str, Any]:
    """
    Get current message transport logging context.

    Returns:
        Dictionary with topic, partition, offset and, when set, key and retries
    """
    context: Dict[str, Any] = {
        "message_topic": _message_topic.get(),
        "message_partition": _message_partition.get(),
        "message_offset": _message_offset.get(),
    }

    key = _message_key.get()
    if key:
        context["message_key"] = key

    retries = _message_retries.get()
    if retries >= 0:
        context["retries"] = retries

    return context


def clear_message_context() -> None:
    """Clear all message transport logging context variables."""
    _message_topic.set("")
    _message_partition.set(-1)
    _message_offset.set(-1)
    _message_key.set("")
    _message_retries.set(-1)


class MessageLogContext:
    """
    Context manager for message processing with automatic context setting.

    Usage:
        with MessageLogContext(topic="orders", partition=0, offset=12345, retries=1):
            # All logs in this block will include message context
            await handle(message)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        retries: Optional[int] = None,
    ):
        self.new_context = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "retries": retries,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "MessageLogContext":
        self.old_context = {
            "topic": _message_topic.get(),
            "partition": _message_partition.get(),
            "offset": _message_offset.get(),
            "key": _message_key.get(),
            "retries": _message_retries.get(),
        }

        set_message_context(**{k: v for k, v in self.new_context.items() if v is not None})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_message_context(**self.old_context)
        return False
