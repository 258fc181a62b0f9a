"""aiokafka-backed ConsumerClient with a background consume loop."""

import asyncio
import logging

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from cascade.broker import MessageHandler
from cascade.kafka.security import build_kafka_security_config
from cascade.metrics import update_assigned_partitions, update_connection_status
from cascade.types import from_consumer_record
from config.config import CascadeConfig
from core.errors.exceptions import BrokerConnectionError, DisconnectError

logger = logging.getLogger(__name__)


class KafkaConsumerClient:
    """Pattern subscription that feeds one message at a time to a handler.

    Offsets are committed per message after the handler returns, so a crash
    mid-message redelivers it (at-least-once).
    """

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
        "partition_assignment_strategy",
    )

    def __init__(
        self,
        config: CascadeConfig,
        group_id: str,
        client_id: str | None = None,
        poll_timeout_ms: int = 1000,
    ):
        self.config = config
        self.group_id = group_id
        self.client_id = client_id or f"{config.client_id}-consumer"
        self.consumer_config = dict(config.consumer)
        self.poll_timeout_ms = poll_timeout_ms

        self._consumer: AIOKafkaConsumer | None = None
        self._handler: MessageHandler | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._paused = False

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": self.client_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def connect(self) -> None:
        if self._consumer is not None:
            logger.warning("Consumer already connected, ignoring duplicate connect call")
            return

        logger.info(
            "Connecting cascade consumer",
            extra={"group_id": self.group_id, "bootstrap_servers": self.config.bootstrap_servers},
        )

        consumer = AIOKafkaConsumer(**self._build_kafka_config())
        try:
            await consumer.start()
        except Exception as e:
            try:
                await consumer.stop()
            except Exception:
                logger.debug("Ignoring error while closing half-started consumer", exc_info=True)
            raise BrokerConnectionError(
                "Failed to connect consumer",
                cause=e,
                context={"group_id": self.group_id, "bootstrap_servers": self.config.bootstrap_servers},
            ) from e

        self._consumer = consumer
        update_connection_status("consumer", connected=True)
        logger.info("Cascade consumer connected", extra={"group_id": self.group_id})

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        if self._consumer is None:
            raise BrokerConnectionError("Consumer not connected. Call connect() first.")
        if self._running:
            logger.warning("Consumer already subscribed, ignoring duplicate subscribe call")
            return

        self._consumer.subscribe(pattern=pattern)
        self._handler = handler
        self._running = True
        self._task = asyncio.create_task(self._consume_loop(), name=f"cascade-consume-{self.group_id}")

        logger.info(
            "Subscribed to cascade topics",
            extra={"group_id": self.group_id, "topics": pattern},
        )

    async def _consume_loop(self) -> None:
        logger.info("Starting message consumption loop", extra={"group_id": self.group_id})

        while self._running and self._consumer is not None:
            try:
                if self._paused:
                    self._pause_assignment()

                data = await self._consumer.getmany(timeout_ms=self.poll_timeout_ms)
                update_assigned_partitions(self.group_id, len(self._consumer.assignment()))

                for tp, records in data.items():
                    for record in records:
                        if not self._running:
                            return
                        if self._paused:
                            # Undelivered records are fetched again on resume
                            self._consumer.seek(tp, record.offset)
                            break
                        await self._deliver(record)
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _deliver(self, record: ConsumerRecord) -> None:
        await self._handler(from_consumer_record(record))

        tp = TopicPartition(record.topic, record.partition)
        try:
            await self._consumer.commit({tp: record.offset + 1})
        except Exception:
            # Uncommitted offsets are redelivered after the next rebalance
            logger.warning(
                "Failed to commit offset",
                extra={"message_topic": record.topic, "partition": record.partition, "offset": record.offset},
                exc_info=True,
            )

    def _pause_assignment(self) -> None:
        # Partitions gained in a rebalance arrive unpaused
        assignment = self._consumer.assignment()
        unpaused = assignment - self._consumer.paused()
        if unpaused:
            self._consumer.pause(*unpaused)

    async def pause(self) -> None:
        self._paused = True
        if self._consumer is not None:
            self._pause_assignment()
        logger.info("Cascade consumer paused", extra={"group_id": self.group_id})

    async def resume(self) -> None:
        self._paused = False
        if self._consumer is not None:
            paused = self._consumer.paused()
            if paused:
                self._consumer.resume(*paused)
        logger.info("Cascade consumer resumed", extra={"group_id": self.group_id})

    async def stop(self) -> None:
        if not self._running:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping cascade consumer", extra={"group_id": self.group_id})
        self._running = False

        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return

        # The loop exits after the handler in progress returns
        drain_timeout = self.config.drain_timeout_seconds
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Consume loop did not drain in time, cancelling",
                extra={"group_id": self.group_id, "duration_ms": drain_timeout * 1000},
            )
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def disconnect(self) -> None:
        await self.stop()

        if self._consumer is None:
            logger.debug("Consumer already disconnected")
            return

        logger.info("Disconnecting cascade consumer", extra={"group_id": self.group_id})
        consumer, self._consumer = self._consumer, None
        try:
            await consumer.stop()
            logger.info("Cascade consumer disconnected")
        except Exception as e:
            raise DisconnectError("Failed to disconnect consumer", cause=e) from e
        finally:
            self._paused = False
            update_connection_status("consumer", connected=False)
            update_assigned_partitions(self.group_id, 0)

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = ["KafkaConsumerClient"]
