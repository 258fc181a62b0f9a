"""
CascadeService: lifecycle coordinator and single public event source.

State machine:
    Disconnected -> Connected -> Running <-> Paused -> Stopped -> Disconnected

The service owns the only PauseState; consumer and producer just execute
pause/resume when told. Every lifecycle failure is emitted as ``error`` and
raised, so callers get both an observable and a programmatic signal.

Usage:
    service = create_service(KafkaBroker(config), "orders", "orders-cascade",
                             handle_order, on_success, DeadLetterPublisher(...))
    await service.connect()
    await service.set_retry_levels(3)
    await service.run()
"""

import logging
from collections.abc import Mapping
from typing import Any

from cascade.broker import Broker, TopicSpec
from cascade.consumer import CascadeConsumer
from cascade.events import CascadeEvent, EventEmitter, EventHandler
from cascade.metrics import update_retry_levels
from cascade.producer import CascadeProducer
from cascade.topics import registered_cascade_topics, resize_retry_topics
from cascade.types import (
    CascadeMessage,
    LevelOptions,
    PauseState,
    RetryProvisioningOptions,
    RouteCallback,
    ServiceCallback,
    ServiceState,
    maybe_await,
)
from core.errors.exceptions import (
    BrokerConnectionError,
    CascadeError,
    DisconnectError,
    LifecycleError,
    ProvisioningError,
)
from core.logging import set_log_context
from core.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)

# Kafka topic configs the per-level provisioning options map onto
TIMEOUT_LIMIT_CONFIG = "retention.ms"
BATCH_LIMIT_CONFIG = "max.message.bytes"


class CascadeService:
    """Wires a CascadeConsumer to a CascadeProducer and re-emits their events."""

    def __init__(
        self,
        broker: Broker,
        topic: str,
        group_id: str,
        service_cb: ServiceCallback,
        success_cb: RouteCallback | None,
        dlq_cb: RouteCallback,
        service_timeout: float | None = None,
        publish_retry: RetryConfig | None = None,
        num_partitions: int = 1,
        replication_factor: int = 1,
    ):
        if not topic:
            raise ValueError("topic is required")
        if not group_id:
            raise ValueError("group_id is required")

        self.broker = broker
        self.topic = topic
        self.group_id = group_id
        self.service_cb = service_cb
        self.success_cb = success_cb
        self.dlq_cb = dlq_cb
        self.num_partitions = num_partitions
        self.replication_factor = replication_factor

        self.events = EventEmitter("cascade")
        self._state = ServiceState.DISCONNECTED
        self._pause_state = PauseState.RUNNING
        self._retry_topics: tuple[str, ...] = ()

        self.producer = CascadeProducer(broker.producer(), dlq_cb, publish_retry)
        self.producer.on(CascadeEvent.RETRY, lambda msg: self.events.emit(CascadeEvent.RETRY, msg))
        self.producer.on(CascadeEvent.DLQ, lambda msg: self.events.emit(CascadeEvent.DLQ, msg))
        self.producer.on(CascadeEvent.ERROR, lambda error: self._emit_error("cascade producer", error))

        self.consumer = CascadeConsumer(broker.consumer(group_id), topic, group_id, service_timeout)
        self.consumer.on(CascadeEvent.RECEIVE, lambda msg: self.events.emit(CascadeEvent.RECEIVE, msg))
        self.consumer.on(
            CascadeEvent.SERVICE_ERROR,
            lambda error, msg: self.events.emit(CascadeEvent.SERVICE_ERROR, error, msg),
        )
        self.consumer.on(CascadeEvent.ERROR, lambda error: self._emit_error("cascade consumer", error))

        set_log_context(group_id=group_id, worker_id=self.consumer.worker_id)

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: CascadeEvent | str, handler: EventHandler) -> EventHandler:
        """Register ``handler`` for ``event``; raises UnknownEventError for names outside the set.

        ``error`` handlers receive ``(description, error)``; ``serviceError``
        handlers receive ``(error, message)``; all others receive the message
        or nothing.
        """
        return self.events.on(event, handler)

    def off(self, event: CascadeEvent | str, handler: EventHandler) -> None:
        self.events.off(event, handler)

    def _emit_error(self, where: str, error: Exception) -> None:
        self.events.emit(CascadeEvent.ERROR, f"Error in {where}: {error}", error)

    def _failure(self, operation: str, error: Exception, error_type: type[CascadeError]) -> CascadeError:
        """Emit ``error`` for a failed lifecycle operation and return the error to raise."""
        if not isinstance(error, CascadeError):
            wrapped = error_type(f"cascade.{operation}() failed", cause=error)
            wrapped.__cause__ = error
            error = wrapped

        logger.error(
            "cascade.%s() failed",
            operation,
            extra={"operation": operation, "error": str(error), "error_category": error.category.value},
        )
        self._emit_error(f"cascade.{operation}()", error)
        return error

    def _require_connected(self, operation: str) -> None:
        if self._state is ServiceState.DISCONNECTED:
            raise self._failure(
                operation,
                LifecycleError(
                    f"cascade.{operation}() requires a connected service",
                    context={"state": self._state.value},
                ),
                LifecycleError,
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Connect producer, then consumer. Failure leaves the service Disconnected."""
        if self._state is not ServiceState.DISCONNECTED:
            logger.warning("cascade.connect() called while already connected", extra={"state": self._state.value})
            return

        producer_connected = False
        try:
            await self.producer.connect()
            producer_connected = True
            await self.consumer.connect()
        except Exception as e:
            if producer_connected:
                await self._release_producer()
            raise self._failure("connect", e, BrokerConnectionError)

        self._state = ServiceState.CONNECTED
        self._pause_state = PauseState.RUNNING
        logger.info("Cascade service connected", extra={"source_topic": self.topic, "group_id": self.group_id})
        self.events.emit(CascadeEvent.CONNECT)

    async def _release_producer(self) -> None:
        try:
            await self.producer.disconnect()
        except Exception:
            logger.warning("Error releasing producer after failed connect", exc_info=True)

    async def set_retry_levels(
        self,
        count: int,
        options: RetryProvisioningOptions | Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Resize the retry-level list to ``count`` and provision it on the broker.

        Growing appends ``<topic>-cascade-retry-<N>`` names and shrinking
        truncates from the tail. ``options`` carries per-level ``timeout_limit``
        and ``batch_limit`` lists; shorter lists leave trailing levels at broker
        defaults.

        Returns:
            The new retry-level topic names
        """
        if count < 0:
            raise self._failure(
                "setRetryLevels",
                ValueError(f"retry level count must be >= 0, got {count}"),
                ProvisioningError,
            )
        self._require_connected("setRetryLevels")

        try:
            if not isinstance(options, RetryProvisioningOptions):
                options = RetryProvisioningOptions.from_dict(dict(options) if options else None)

            topics = resize_retry_topics(self.topic, self._retry_topics, count)
            self._retry_topics = tuple(topics)
            self.producer.set_retry_topics(topics, options)
            update_retry_levels(self.topic, count)

            await self._provision(topics, options)
        except Exception as e:
            raise self._failure("setRetryLevels", e, ProvisioningError)

        logger.info("Retry levels configured", extra={"retry_levels": count, "topics": topics})
        return topics

    @staticmethod
    def _topic_config(level: LevelOptions) -> dict[str, str]:
        config = {}
        if level.timeout_limit is not None:
            config[TIMEOUT_LIMIT_CONFIG] = str(level.timeout_limit)
        if level.batch_limit is not None:
            config[BATCH_LIMIT_CONFIG] = str(level.batch_limit)
        return config

    async def _provision(self, topics: list[str], options: RetryProvisioningOptions | None) -> None:
        specs = [
            TopicSpec(
                name=name,
                num_partitions=self.num_partitions,
                replication_factor=self.replication_factor,
                config=self._topic_config(options.for_level(level)) if options else {},
            )
            for level, name in enumerate(topics, start=1)
        ]

        admin = self.broker.admin()
        await admin.connect()
        try:
            await admin.create_topics(specs)
            registered = registered_cascade_topics(self.topic, await admin.list_topics())
        finally:
            await admin.disconnect()

        logger.info("Topics registered", extra={"topics": registered})
        missing = sorted(set(topics) - set(registered))
        if missing:
            # Metadata can lag creation; routing still works once the broker catches up
            logger.warning("Retry topics not yet listed by broker", extra={"topics": missing})

    async def run(self) -> None:
        """Start consuming; returns once the subscription is active."""
        if self._state not in (ServiceState.CONNECTED, ServiceState.STOPPED):
            raise self._failure(
                "run",
                LifecycleError(
                    f"cascade.run() not allowed in state {self._state.value}",
                    context={"state": self._state.value},
                ),
                LifecycleError,
            )

        try:
            await self.consumer.run(self.service_cb, self._route_success, self._route_failure)
        except Exception as e:
            raise self._failure("run", e, BrokerConnectionError)

        self._state = ServiceState.PAUSED if self.paused else ServiceState.RUNNING
        logger.info(
            "Cascade service running",
            extra={"source_topic": self.topic, "retry_levels": len(self._retry_topics)},
        )
        self.events.emit(CascadeEvent.RUN)

    async def _route_success(self, message: CascadeMessage) -> None:
        self.events.emit(CascadeEvent.SUCCESS, message)
        if self.success_cb is not None:
            await maybe_await(self.success_cb(message))

    async def _route_failure(self, message: CascadeMessage) -> None:
        try:
            await self.producer.send(message)
        except Exception as e:
            logger.error("Unexpected error routing failed message", exc_info=True)
            self._emit_error("cascade producer.send()", e)

    async def pause(self) -> None:
        """Stop delivering new messages. A no-op (logged) when already paused."""
        if self._pause_state is PauseState.PAUSED:
            logger.warning("cascade.pause() called while service is already paused")
            return
        self._require_connected("pause")

        try:
            await self.consumer.pause()
            self.producer.pause()
        except Exception as e:
            raise self._failure("pause", e, BrokerConnectionError)

        self._pause_state = PauseState.PAUSED
        if self._state is ServiceState.RUNNING:
            self._state = ServiceState.PAUSED
        logger.info("Cascade service paused")
        self.events.emit(CascadeEvent.PAUSE)

    async def resume(self) -> None:
        """Resume delivery. A no-op (logged) when already running."""
        if self._pause_state is PauseState.RUNNING:
            logger.warning("cascade.resume() called while service is already running")
            return
        self._require_connected("resume")

        try:
            await self.consumer.resume()
            self.producer.resume()
        except Exception as e:
            raise self._failure("resume", e, BrokerConnectionError)

        self._pause_state = PauseState.RUNNING
        if self._state is ServiceState.PAUSED:
            self._state = ServiceState.RUNNING
        logger.info("Cascade service resumed")
        self.events.emit(CascadeEvent.RESUME)

    async def stop(self) -> None:
        """Stop consumption, then let in-flight routing finish."""
        try:
            await self.consumer.stop()
            await self.producer.stop()
        except Exception as e:
            raise self._failure("stop", e, BrokerConnectionError)

        if self._state is not ServiceState.DISCONNECTED:
            self._state = ServiceState.STOPPED
        logger.info("Cascade service stopped")
        self.events.emit(CascadeEvent.STOP)

    async def disconnect(self) -> None:
        """Stop consumption if running, release the producer, then the consumer.

        Messages still being routed finish against a live producer, and async
        event handlers complete before this returns.
        """
        try:
            if self._state in (ServiceState.RUNNING, ServiceState.PAUSED):
                await self.consumer.stop()
            if self.consumer.in_flight:
                raise DisconnectError(
                    "Cannot disconnect while a message is being processed",
                    context={"in_flight": self.consumer.in_flight},
                )
            await self.producer.stop()
            await self.producer.disconnect()
            await self.consumer.disconnect()
        except Exception as e:
            raise self._failure("disconnect", e, BrokerConnectionError)

        self._state = ServiceState.DISCONNECTED
        self._pause_state = PauseState.RUNNING
        logger.info("Cascade service disconnected")
        self.events.emit(CascadeEvent.DISCONNECT)
        await self.events.drain()

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def paused(self) -> bool:
        return self._pause_state is PauseState.PAUSED

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def retry_topics(self) -> list[str]:
        return list(self._retry_topics)


def create_service(
    broker: Broker,
    topic: str,
    group_id: str,
    service_cb: ServiceCallback,
    success_cb: RouteCallback | None,
    dlq_cb: RouteCallback,
    **kwargs: Any,
) -> CascadeService:
    """Build a CascadeService; keyword arguments are passed through."""
    return CascadeService(broker, topic, group_id, service_cb, success_cb, dlq_cb, **kwargs)


__all__ = [
    "CascadeService",
    "create_service",
    "TIMEOUT_LIMIT_CONFIG",
    "BATCH_LIMIT_CONFIG",
]
