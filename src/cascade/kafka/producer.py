"""aiokafka-backed ProducerClient."""

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaProducer

from cascade.kafka.security import build_kafka_security_config
from cascade.metrics import record_message_published, update_connection_status
from cascade.types import CascadeMessage
from config.config import CascadeConfig
from core.errors.exceptions import BrokerConnectionError, DisconnectError, PublishError

logger = logging.getLogger(__name__)


class KafkaProducerClient:
    """Publishes cascade messages through a single AIOKafkaProducer."""

    def __init__(self, config: CascadeConfig, client_id: str | None = None):
        self.config = config
        self.client_id = client_id or f"{config.client_id}-producer"
        self.producer_config = dict(config.producer)
        self._producer: AIOKafkaProducer | None = None
        self._started = False

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Resolve acks value and idempotence setting, enforcing mutual constraints."""
        acks_value = self.producer_config.get("acks", "all")
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)

        enable_idempotence = self.producer_config.get("enable_idempotence", True)
        if enable_idempotence and acks_value != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"configured_acks": acks_value},
            )
            acks_value = "all"

        return acks_value, enable_idempotence

    def _build_kafka_config(self) -> dict[str, Any]:
        acks_value, enable_idempotence = self._resolve_acks_and_idempotence()

        kafka_config = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.client_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "acks": acks_value,
            "enable_idempotence": enable_idempotence,
            "retry_backoff_ms": self.producer_config.get("retry_backoff_ms", 100),
        }

        if "linger_ms" in self.producer_config:
            kafka_config["linger_ms"] = self.producer_config["linger_ms"]
        if "batch_size" in self.producer_config:
            kafka_config["max_batch_size"] = self.producer_config["batch_size"]
        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression
        if "max_request_size" in self.producer_config:
            kafka_config["max_request_size"] = self.producer_config["max_request_size"]

        kafka_config.update(build_kafka_security_config(self.config))
        return kafka_config

    async def connect(self) -> None:
        if self._started:
            logger.warning("Producer already connected, ignoring duplicate connect call")
            return

        logger.info(
            "Connecting cascade producer",
            extra={"bootstrap_servers": self.config.bootstrap_servers},
        )

        producer = AIOKafkaProducer(**self._build_kafka_config())
        try:
            await producer.start()
        except Exception as e:
            # start() may leave sockets open on failure
            await self._close_quietly(producer)
            raise BrokerConnectionError(
                "Failed to connect producer",
                cause=e,
                context={"bootstrap_servers": self.config.bootstrap_servers},
            ) from e

        self._producer = producer
        self._started = True
        update_connection_status("producer", connected=True)
        logger.info("Cascade producer connected")

    @staticmethod
    async def _close_quietly(producer: AIOKafkaProducer) -> None:
        try:
            await producer.stop()
        except Exception:
            logger.debug("Ignoring error while closing half-started producer", exc_info=True)

    async def disconnect(self) -> None:
        if self._producer is None:
            logger.debug("Producer already disconnected")
            return

        logger.info("Disconnecting cascade producer")
        producer = self._producer

        try:
            loop = asyncio.get_running_loop()
            if loop.is_closed():
                logger.warning("Event loop is closed, skipping graceful producer shutdown")
                return

            if self._started:
                await producer.flush()
            await producer.stop()
            logger.info("Cascade producer disconnected")
        except Exception as e:
            raise DisconnectError("Failed to disconnect producer", cause=e) from e
        finally:
            update_connection_status("producer", connected=False)
            self._producer = None
            self._started = False

    async def publish(self, topic: str, message: CascadeMessage) -> None:
        if not self._started or self._producer is None:
            raise PublishError("Producer not connected", topic=topic)

        value_size = len(message.value) if message.value else 0

        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=message.key,
                value=message.value,
                headers=list(message.headers) or None,
            )
        except Exception as e:
            record_message_published(topic, value_size, success=False)
            raise PublishError(f"Failed to publish to {topic}", topic=topic, cause=e) from e

        record_message_published(topic, value_size, success=True)
        logger.debug(
            "Message published",
            extra={
                "target_topic": metadata.topic,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )

    @property
    def is_connected(self) -> bool:
        return self._started and self._producer is not None


__all__ = ["KafkaProducerClient"]
