"""
In-memory broker implementing the cascade broker protocols.

Used by the test suite and for running a cascade without Kafka. Records every
client call in ``calls`` (e.g. ``"producer.connect"``) so tests can assert
ordering, and supports failure injection via ``fail_next``.

Usage:
    broker = InMemoryBroker()
    service = create_service(broker, "t", "g", handle, None, dlq)
    await service.connect()
    await service.run()
    await broker.produce("t", b"payload")
    await broker.wait_idle()
"""

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace

from cascade.broker import MessageHandler, TopicSpec
from cascade.types import CascadeMessage

logger = logging.getLogger(__name__)


class InMemoryBroker:
    """Single-partition topics held as lists; offsets are list indexes."""

    def __init__(self, auto_create_topics: bool = True):
        self.auto_create_topics = auto_create_topics
        self.calls: list[str] = []
        self.topics: dict[str, list[CascadeMessage]] = {}
        self.topic_specs: dict[str, TopicSpec] = {}
        self.committed: dict[tuple[str, str], int] = defaultdict(int)
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self._consumers: list["InMemoryConsumer"] = []

    # Protocol factories

    def producer(self) -> "InMemoryProducer":
        return InMemoryProducer(self)

    def consumer(self, group_id: str) -> "InMemoryConsumer":
        consumer = InMemoryConsumer(self, group_id)
        self._consumers.append(consumer)
        return consumer

    def admin(self) -> "InMemoryAdmin":
        return InMemoryAdmin(self)

    # Failure injection

    def fail_next(self, operation: str, error: BaseException | None = None, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``.

        Operations are call names as recorded in ``calls``, e.g.
        ``"consumer.connect"`` or ``"producer.publish:orders-cascade-retry-1"``.
        """
        for _ in range(times):
            self._failures[operation].append(error or ConnectionError(f"injected failure in {operation}"))

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # Topic log

    def create_topic(self, name: str) -> None:
        self.topics.setdefault(name, [])

    def messages(self, topic: str) -> list[CascadeMessage]:
        return list(self.topics.get(topic, []))

    def append(self, topic: str, message: CascadeMessage) -> CascadeMessage:
        if topic not in self.topics:
            if not self.auto_create_topics:
                raise LookupError(f"Unknown topic: {topic}")
            self.create_topic(topic)

        log = self.topics[topic]
        stored = replace(message, topic=topic, partition=0, offset=len(log))
        log.append(stored)

        for consumer in self._consumers:
            consumer.offer(stored)
        return stored

    async def produce(
        self,
        topic: str,
        value: bytes | None = None,
        key: bytes | None = None,
        headers: Sequence[tuple[str, bytes]] = (),
    ) -> CascadeMessage:
        """Publish from outside the cascade, as an upstream producer would."""
        return self.append(topic, CascadeMessage(topic=topic, key=key, value=value, headers=tuple(headers)))

    async def wait_idle(self, timeout: float = 5.0) -> None:
        """Wait until every running consumer has handled everything offered to it."""

        async def _drain():
            while True:
                for consumer in list(self._consumers):
                    await consumer.join()
                if all(consumer.idle for consumer in self._consumers):
                    return

        await asyncio.wait_for(_drain(), timeout=timeout)


class InMemoryProducer:
    def __init__(self, broker: InMemoryBroker):
        self.broker = broker
        self.connected = False
        self.published: list[CascadeMessage] = []

    async def connect(self) -> None:
        self.broker._record("producer.connect")
        self.connected = True

    async def disconnect(self) -> None:
        self.broker._record("producer.disconnect")
        self.connected = False

    async def publish(self, topic: str, message: CascadeMessage) -> None:
        self.broker._record(f"producer.publish:{topic}")
        if not self.connected:
            raise ConnectionError("producer not connected")
        self.published.append(self.broker.append(topic, message))


class InMemoryConsumer:
    def __init__(self, broker: InMemoryBroker, group_id: str):
        self.broker = broker
        self.group_id = group_id
        self.connected = False
        self._pattern: re.Pattern | None = None
        self._handler: MessageHandler | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._running = False
        self._handling = False
        self._not_handling = asyncio.Event()
        self._not_handling.set()
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def idle(self) -> bool:
        return not self._running or (self._queue.empty() and not self._handling)

    async def connect(self) -> None:
        self.broker._record("consumer.connect")
        self.connected = True

    async def disconnect(self) -> None:
        self.broker._record("consumer.disconnect")
        await self._halt()
        self.connected = False

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        self.broker._record("consumer.subscribe")
        if not self.connected:
            raise ConnectionError("consumer not connected")

        self._pattern = re.compile(pattern)
        self._handler = handler
        self._queue = asyncio.Queue()
        self._running = True

        # Backlog from the committed offsets, like auto_offset_reset=earliest
        for topic in sorted(self.broker.topics):
            if self._pattern.match(topic):
                start = self.broker.committed[(self.group_id, topic)]
                for message in self.broker.topics[topic][start:]:
                    self._queue.put_nowait(message)

        self._task = asyncio.create_task(self._loop())

    def offer(self, message: CascadeMessage) -> None:
        if self._running and self._pattern is not None and self._pattern.match(message.topic):
            self._queue.put_nowait(message)

    async def join(self) -> None:
        if self._running:
            await self._queue.join()

    async def _loop(self) -> None:
        while self._running:
            queue = self._queue
            message = await queue.get()
            # Held while paused; a halt here leaves it uncommitted for redelivery
            await self._resumed.wait()
            self._handling = True
            self._not_handling.clear()
            try:
                await self._handler(message)
                self.broker.committed[(self.group_id, message.topic)] = message.offset + 1
            except Exception:
                logger.error("Handler raised in in-memory consumer", exc_info=True)
            finally:
                self._handling = False
                self._not_handling.set()
                queue.task_done()

    async def pause(self) -> None:
        self.broker._record("consumer.pause")
        self._resumed.clear()

    async def resume(self) -> None:
        self.broker._record("consumer.resume")
        self._resumed.set()

    async def stop(self) -> None:
        self.broker._record("consumer.stop")
        await self._halt()

    async def _halt(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        if task is not asyncio.current_task():
            await self._not_handling.wait()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        # Unhandled messages are redelivered from the committed offset on resubscribe
        self._queue = asyncio.Queue()


class InMemoryAdmin:
    def __init__(self, broker: InMemoryBroker):
        self.broker = broker
        self.connected = False

    async def connect(self) -> None:
        self.broker._record("admin.connect")
        self.connected = True

    async def create_topics(self, topics: Sequence[TopicSpec]) -> None:
        self.broker._record("admin.create_topics")
        for spec in topics:
            self.broker.topic_specs.setdefault(spec.name, spec)
            self.broker.create_topic(spec.name)

    async def list_topics(self) -> list[str]:
        self.broker._record("admin.list_topics")
        return sorted(self.broker.topics)

    async def disconnect(self) -> None:
        self.broker._record("admin.disconnect")
        self.connected = False


__all__ = [
    "InMemoryBroker",
    "InMemoryProducer",
    "InMemoryConsumer",
    "InMemoryAdmin",
]
