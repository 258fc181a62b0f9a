"""Producer side of the cascade: route failed messages to the next retry level or the dead-letter sink."""

import asyncio
import logging
from collections.abc import Sequence

from cascade.broker import ProducerClient
from cascade.events import CascadeEvent, EventEmitter, EventHandler
from cascade.types import CascadeMessage, RetryProvisioningOptions, RouteCallback, maybe_await
from core.errors.exceptions import BrokerConnectionError, PublishError
from core.resilience.retry import DEFAULT_RETRY, RetryConfig, retry_async

logger = logging.getLogger(__name__)


class CascadeProducer:
    """Owns the retry-level list and routes failures down the cascade.

    A message consumed at level ``k`` (``retries == k``) goes to retry level
    ``k + 1`` while one exists, with its ``retries`` header bumped; otherwise it
    is handed to the dead-letter callback.

    The retry-level list is an immutable tuple swapped whole by
    ``set_retry_topics``; ``send`` reads it once before its first await, so a
    concurrent resize never yields a half-updated view.

    Events: retry, dlq, error. ``send`` never raises.
    """

    def __init__(
        self,
        client: ProducerClient,
        dlq_cb: RouteCallback,
        publish_retry: RetryConfig | None = None,
    ):
        self.client = client
        self.dlq_cb = dlq_cb
        self.publish_retry = publish_retry or DEFAULT_RETRY
        self.events = EventEmitter("cascade producer")

        self._topics: tuple[str, ...] = ()
        self._options: RetryProvisioningOptions | None = None
        self._paused = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def on(self, event: CascadeEvent | str, handler: EventHandler) -> EventHandler:
        return self.events.on(event, handler)

    async def connect(self) -> None:
        try:
            await self.client.connect()
        except BrokerConnectionError:
            raise
        except Exception as e:
            raise BrokerConnectionError("Failed to connect producer", cause=e) from e

    async def stop(self) -> None:
        """Wait for sends already in progress to finish."""
        if self._in_flight:
            logger.info("Waiting for in-flight sends", extra={"operation": "producer.stop"})
        await self._idle.wait()

    async def disconnect(self) -> None:
        await self.client.disconnect()

    def set_retry_topics(
        self,
        topics: Sequence[str],
        options: RetryProvisioningOptions | None = None,
    ) -> None:
        self._topics = tuple(topics)
        self._options = options
        logger.debug("Retry topics updated", extra={"retry_levels": len(self._topics), "topics": list(self._topics)})

    @property
    def retry_topics(self) -> tuple[str, ...]:
        return self._topics

    @property
    def retry_options(self) -> RetryProvisioningOptions | None:
        return self._options

    def pause(self) -> None:
        self._paused = True
        logger.debug("Cascade producer paused")

    def resume(self) -> None:
        self._paused = False
        logger.debug("Cascade producer resumed")

    @property
    def paused(self) -> bool:
        return self._paused

    async def send(self, message: CascadeMessage) -> None:
        topics = self._topics
        retries = message.retries

        self._in_flight += 1
        self._idle.clear()
        try:
            if retries < len(topics):
                await self._send_retry(message, topics[retries], retries + 1)
            else:
                await self._send_dlq(message)
        finally:
            self._in_flight -= 1
            if not self._in_flight:
                self._idle.set()

    async def _send_retry(self, message: CascadeMessage, target: str, level: int) -> None:
        outgoing = message.with_retries(level)

        try:
            await retry_async(
                lambda: self.client.publish(target, outgoing),
                config=self.publish_retry,
                operation=f"publish to {target}",
            )
        except Exception as e:
            error = e if isinstance(e, PublishError) else PublishError(
                f"Failed to publish to {target}", topic=target, cause=e
            )
            # Message leaves the cascade here; the error event is its only trace
            logger.error(
                "Retry publish failed, message dropped from cascade",
                extra={"target_topic": target, "retry_level": level, "error": str(error)},
            )
            self.events.emit(CascadeEvent.ERROR, error)
            return

        logger.info(
            "Routed message to retry level",
            extra={"target_topic": target, "retry_level": level},
        )
        self.events.emit(CascadeEvent.RETRY, outgoing)

    async def _send_dlq(self, message: CascadeMessage) -> None:
        try:
            await maybe_await(self.dlq_cb(message))
        except Exception as e:
            logger.error(
                "Dead-letter callback failed",
                extra={"retries": message.retries, "error": str(e)},
                exc_info=True,
            )
            self.events.emit(
                CascadeEvent.ERROR,
                PublishError("Dead-letter callback failed", cause=e),
            )
            return

        logger.info("Routed message to dead-letter sink", extra={"retries": message.retries})
        self.events.emit(CascadeEvent.DLQ, message)


__all__ = ["CascadeProducer"]
