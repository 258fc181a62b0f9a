"""Ready-made dead-letter callback that publishes exhausted messages to a topic."""

import asyncio
import logging
import time

from cascade.broker import ProducerClient
from cascade.types import CascadeMessage
from core.errors.exceptions import PublishError
from core.resilience.retry import DEFAULT_RETRY, RetryConfig, retry_async

logger = logging.getLogger(__name__)

DLQ_SOURCE_TOPIC_HEADER = "cascade_source_topic"
DLQ_RETRIES_HEADER = "cascade_retries"
DLQ_GROUP_HEADER = "cascade_group_id"
DLQ_TIMESTAMP_HEADER = "cascade_dlq_timestamp"


class DeadLetterPublisher:
    """Dead-letter callback publishing to ``{source_topic}.dlq`` unless a topic is given.

    Lazily connects its producer client on first use, so no connection is
    opened while nothing reaches the end of the cascade. Key, value and
    original headers pass through; ``cascade_*`` headers record where the
    message came from.
    """

    def __init__(
        self,
        client: ProducerClient,
        source_topic: str | None = None,
        dead_letter_topic: str | None = None,
        group_id: str | None = None,
        publish_retry: RetryConfig | None = None,
    ):
        if not dead_letter_topic and not source_topic:
            raise ValueError("Either dead_letter_topic or source_topic is required")

        self.client = client
        self.dead_letter_topic = dead_letter_topic or f"{source_topic}.dlq"
        self.group_id = group_id
        self.publish_retry = publish_retry or DEFAULT_RETRY
        self._connected = False
        self._lock = asyncio.Lock()

    async def _ensure_connected(self) -> None:
        if self._connected:
            return
        async with self._lock:
            if self._connected:
                return
            logger.info(
                "Initializing dead-letter producer",
                extra={"dlq_topic": self.dead_letter_topic},
            )
            await self.client.connect()
            self._connected = True

    def _build_message(self, message: CascadeMessage) -> CascadeMessage:
        # Source topic is the level the message was last consumed from
        headers = [
            (DLQ_SOURCE_TOPIC_HEADER, message.topic.encode("utf-8")),
            (DLQ_RETRIES_HEADER, str(message.retries).encode("utf-8")),
            (DLQ_TIMESTAMP_HEADER, str(int(time.time() * 1000)).encode("utf-8")),
        ]
        if self.group_id:
            headers.append((DLQ_GROUP_HEADER, self.group_id.encode("utf-8")))

        return CascadeMessage(
            topic=self.dead_letter_topic,
            key=message.key,
            value=message.value,
            headers=tuple(message.headers) + tuple(headers),
        )

    async def __call__(self, message: CascadeMessage) -> None:
        await self._ensure_connected()
        dlq_message = self._build_message(message)

        try:
            await retry_async(
                lambda: self.client.publish(self.dead_letter_topic, dlq_message),
                config=self.publish_retry,
                operation=f"publish to {self.dead_letter_topic}",
            )
        except Exception as e:
            logger.error(
                "Failed to send message to dead-letter topic",
                extra={
                    "dlq_topic": self.dead_letter_topic,
                    "message_topic": message.topic,
                    "message_partition": message.partition,
                    "message_offset": message.offset,
                },
                exc_info=True,
            )
            if isinstance(e, PublishError):
                raise
            raise PublishError(
                f"Failed to publish to {self.dead_letter_topic}", topic=self.dead_letter_topic, cause=e
            ) from e

        logger.info(
            "Message sent to dead-letter topic",
            extra={
                "dlq_topic": self.dead_letter_topic,
                "source_topic": message.topic,
                "retries": message.retries,
            },
        )

    async def close(self) -> None:
        if not self._connected:
            return
        try:
            await self.client.disconnect()
            logger.info("Dead-letter producer stopped")
        except Exception:
            logger.error("Error stopping dead-letter producer", exc_info=True)
        finally:
            self._connected = False


__all__ = [
    "DeadLetterPublisher",
    "DLQ_SOURCE_TOPIC_HEADER",
    "DLQ_RETRIES_HEADER",
    "DLQ_GROUP_HEADER",
    "DLQ_TIMESTAMP_HEADER",
]
