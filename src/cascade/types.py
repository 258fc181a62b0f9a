"""Message and state types for the cascade engine."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, TypeVar, Union

__all__ = [
    "RETRIES_HEADER",
    "CascadeMessage",
    "CascadeMetadata",
    "ServiceOutcome",
    "PauseState",
    "ServiceState",
    "LevelOptions",
    "RetryProvisioningOptions",
    "ServiceCallback",
    "RouteCallback",
    "from_consumer_record",
    "get_metadata",
    "maybe_await",
]

logger = logging.getLogger(__name__)

# Header carrying the number of cascade hops a message has already taken
RETRIES_HEADER = "retries"

T = TypeVar("T")


@dataclass(frozen=True)
class CascadeMessage:
    """Broker message as seen by the cascade: opaque payload plus metadata.

    Immutable in transit. The engine only ever reads and rewrites the
    ``retries`` header; key, value and every other header pass through.
    """

    topic: str
    partition: int = 0
    offset: int = -1
    timestamp: int = 0
    key: bytes | None = None
    value: bytes | None = None
    headers: tuple[tuple[str, bytes], ...] = field(default_factory=tuple)

    def header(self, name: str) -> bytes | None:
        """Return the last value for header ``name``, or None."""
        found = None
        for key, value in self.headers:
            if key == name:
                found = value
        return found

    @property
    def retries(self) -> int:
        """Number of retry hops already taken (0 when the header is absent)."""
        raw = self.header(RETRIES_HEADER)
        if raw is None:
            return 0
        try:
            retries = int(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning(
                "Ignoring malformed retries header",
                extra={"message_topic": self.topic, "message_offset": self.offset},
            )
            return 0
        return max(retries, 0)

    def with_retries(self, retries: int) -> "CascadeMessage":
        """Copy of this message with the ``retries`` header set to ``retries``."""
        headers = tuple((k, v) for k, v in self.headers if k != RETRIES_HEADER)
        return replace(self, headers=headers + ((RETRIES_HEADER, str(retries).encode("utf-8")),))


@dataclass(frozen=True)
class CascadeMetadata:
    """Cascade bookkeeping for one message."""

    retries: int
    topic: str


def get_metadata(message: CascadeMessage) -> CascadeMetadata:
    """Cascade metadata of ``message``; ``retries`` is the level it was consumed at."""
    return CascadeMetadata(retries=message.retries, topic=message.topic)


@dataclass(frozen=True)
class ServiceOutcome:
    """Tagged result of one service invocation: success or failure."""

    message: CascadeMessage
    succeeded: bool

    @classmethod
    def success(cls, message: CascadeMessage) -> "ServiceOutcome":
        return cls(message=message, succeeded=True)

    @classmethod
    def failure(cls, message: CascadeMessage) -> "ServiceOutcome":
        return cls(message=message, succeeded=False)


class PauseState(Enum):
    RUNNING = "running"
    PAUSED = "paused"


class ServiceState(Enum):
    """Lifecycle states of a CascadeService."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LevelOptions:
    """Provisioning options for a single retry level (None = broker default)."""

    timeout_limit: int | None = None
    batch_limit: int | None = None


@dataclass(frozen=True)
class RetryProvisioningOptions:
    """Per-level provisioning options, one list entry per retry level.

    Lists shorter than the retry count leave the trailing levels at broker
    defaults. Values are forwarded to topic provisioning and not otherwise
    interpreted by routing.
    """

    timeout_limit: tuple[int, ...] = ()
    batch_limit: tuple[int, ...] = ()

    def __post_init__(self):
        for name in ("timeout_limit", "batch_limit"):
            values = tuple(int(v) for v in (getattr(self, name) or ()))
            if any(v < 0 for v in values):
                raise ValueError(f"{name} entries must be >= 0, got {list(values)}")
            object.__setattr__(self, name, values)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryProvisioningOptions | None":
        if not data:
            return None
        return cls(
            timeout_limit=tuple(data.get("timeout_limit") or ()),
            batch_limit=tuple(data.get("batch_limit") or ()),
        )

    def for_level(self, level: int) -> LevelOptions:
        """Options for 1-indexed retry ``level``."""
        index = level - 1
        return LevelOptions(
            timeout_limit=self.timeout_limit[index] if 0 <= index < len(self.timeout_limit) else None,
            batch_limit=self.batch_limit[index] if 0 <= index < len(self.batch_limit) else None,
        )

    def longest(self) -> int:
        return max(len(self.timeout_limit), len(self.batch_limit))


ServiceCallback = Callable[[CascadeMessage], Union[Awaitable[ServiceOutcome], ServiceOutcome]]
RouteCallback = Callable[[CascadeMessage], Union[Awaitable[None], None]]


async def maybe_await(result: Union[Awaitable[T], T]) -> T:
    """Await ``result`` if it is awaitable; callbacks may be sync or async."""
    if inspect.isawaitable(result):
        return await result
    return result


def from_consumer_record(record) -> CascadeMessage:
    """Convert aiokafka ConsumerRecord to CascadeMessage."""
    headers: tuple[tuple[str, bytes], ...] = ()
    if getattr(record, "headers", None):
        headers = tuple((k, v) for k, v in record.headers)

    return CascadeMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
