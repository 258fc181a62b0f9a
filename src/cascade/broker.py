"""Broker client protocols the cascade engine depends on.

The engine never imports a concrete client. ``cascade.kafka`` implements these
protocols on top of aiokafka and ``cascade.testing`` implements them in memory.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from cascade.types import CascadeMessage

MessageHandler = Callable[[CascadeMessage], Awaitable[None]]


@dataclass(frozen=True)
class TopicSpec:
    """A topic to provision, with per-topic broker config overrides."""

    name: str
    num_partitions: int = 1
    replication_factor: int = 1
    config: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class ProducerClient(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def publish(self, topic: str, message: CascadeMessage) -> None:
        """Publish ``message`` (key, value, headers) to ``topic`` and wait for the ack."""
        ...


@runtime_checkable
class ConsumerClient(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None:
        """Release the connection. Repeated calls are no-ops."""
        ...

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        """Subscribe to every topic matching ``pattern`` and start delivering.

        Returns once the subscription is active; delivery continues in the
        background, one handler invocation at a time.
        """
        ...

    async def stop(self) -> None:
        """Stop delivery, waiting for the handler currently running to return."""
        ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...


@runtime_checkable
class AdminClient(Protocol):
    async def connect(self) -> None: ...

    async def create_topics(self, topics: Sequence[TopicSpec]) -> None:
        """Create ``topics``; topics that already exist are not an error."""
        ...

    async def list_topics(self) -> list[str]: ...

    async def disconnect(self) -> None: ...


@runtime_checkable
class Broker(Protocol):
    """Factory for the three client kinds, sharing one connection config."""

    def producer(self) -> ProducerClient: ...

    def consumer(self, group_id: str) -> ConsumerClient: ...

    def admin(self) -> AdminClient: ...


__all__ = [
    "MessageHandler",
    "TopicSpec",
    "ProducerClient",
    "ConsumerClient",
    "AdminClient",
    "Broker",
]
