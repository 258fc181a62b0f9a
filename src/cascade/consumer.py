"""Consumer side of the cascade: invoke the service callback and classify the outcome."""

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from typing import Any

from cascade.broker import ConsumerClient
from cascade.events import CascadeEvent, EventEmitter, EventHandler
from cascade.metrics import record_message_received, record_service_error, service_duration_seconds
from cascade.topics import retry_topic_pattern
from cascade.types import CascadeMessage, RouteCallback, ServiceCallback, ServiceOutcome, maybe_await
from core.errors.exceptions import BrokerConnectionError, DisconnectError, ServiceError
from core.logging import MessageLogContext
from core.utils import generate_worker_id

logger = logging.getLogger(__name__)


class CascadeConsumer:
    """Consumes the source topic and its retry levels under one consumer group.

    Every message is handed to the service callback; a ``ServiceOutcome``
    success goes to ``on_success``, a failure to ``on_failure``. A callback
    that raises, times out, or returns something other than a ServiceOutcome
    emits ``serviceError`` and counts as a failure.

    Events: receive, serviceError, error.
    """

    def __init__(
        self,
        client: ConsumerClient,
        topic: str,
        group_id: str,
        service_timeout: float | None = None,
    ):
        self.client = client
        self.topic = topic
        self.group_id = group_id
        self.service_timeout = service_timeout
        self.worker_id = generate_worker_id(group_id)
        self.events = EventEmitter("cascade consumer")

        self._service_cb: ServiceCallback | None = None
        self._on_success: RouteCallback | None = None
        self._on_failure: RouteCallback | None = None
        self._running = False
        self._in_flight = 0

    def on(self, event: CascadeEvent | str, handler: EventHandler) -> EventHandler:
        return self.events.on(event, handler)

    async def connect(self) -> None:
        try:
            await self.client.connect()
        except BrokerConnectionError:
            raise
        except Exception as e:
            raise BrokerConnectionError("Failed to connect consumer", cause=e) from e

    async def run(
        self,
        service_cb: ServiceCallback,
        on_success: RouteCallback,
        on_failure: RouteCallback,
    ) -> None:
        """Start consuming; returns once the subscription is active."""
        self._service_cb = service_cb
        self._on_success = on_success
        self._on_failure = on_failure

        await self.client.subscribe(retry_topic_pattern(self.topic), self._handle)
        self._running = True

        logger.info(
            "Cascade consumer running",
            extra={"source_topic": self.topic, "group_id": self.group_id, "worker_id": self.worker_id},
        )

    async def _handle(self, message: CascadeMessage) -> None:
        self._in_flight += 1
        try:
            with MessageLogContext(
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                key=message.key.decode("utf-8", errors="replace") if message.key else None,
                retries=message.retries,
            ):
                self.events.emit(CascadeEvent.RECEIVE, message)
                record_message_received(message.topic, self.group_id)

                outcome = await self._invoke_service(message)
                if outcome.succeeded:
                    await maybe_await(self._on_success(outcome.message))
                else:
                    await maybe_await(self._on_failure(outcome.message))
        except Exception as e:
            logger.error("Error routing message", exc_info=True)
            self.events.emit(CascadeEvent.ERROR, e)
        finally:
            self._in_flight -= 1

    async def _invoke_service(self, message: CascadeMessage) -> ServiceOutcome:
        start_time = time.perf_counter()
        reason = "invalid_result"

        try:
            result = await asyncio.wait_for(
                maybe_await(self._service_cb(message)),
                timeout=self.service_timeout,
            )
        except asyncio.TimeoutError:
            reason = "timeout"
            error = ServiceError(
                f"Service callback did not complete within {self.service_timeout}s",
                context={"timeout_seconds": self.service_timeout},
            )
        except Exception as e:
            reason = "exception"
            error = ServiceError("Service callback raised", cause=e)
        else:
            if isinstance(result, ServiceOutcome):
                return result
            error = ServiceError(
                f"Service callback returned {type(result).__name__}, expected ServiceOutcome"
            )
        finally:
            service_duration_seconds.labels(topic=message.topic).observe(time.perf_counter() - start_time)

        logger.warning(
            "Service callback failed, treating message as failed",
            extra={"error": str(error), "error_type": reason},
        )
        record_service_error(message.topic, reason)
        self.events.emit(CascadeEvent.SERVICE_ERROR, error, message)
        return ServiceOutcome.failure(message)

    async def pause(self) -> None:
        await self.client.pause()

    async def resume(self) -> None:
        await self.client.resume()

    async def stop(self) -> None:
        """Stop consuming; waits for the message being processed to finish."""
        await self.client.stop()
        self._running = False

    async def disconnect(self) -> None:
        await self.stop()
        if self._in_flight:
            raise DisconnectError(
                "Cannot disconnect while a message is being processed",
                context={"in_flight": self._in_flight},
            )
        await self.client.disconnect()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._running


def continuation_service(
    callback: Callable[[CascadeMessage, Callable[..., None], Callable[..., None]], Any],
) -> ServiceCallback:
    """Adapt a ``callback(message, resolve, reject)`` service to a ServiceCallback.

    The returned coroutine function completes when ``resolve`` or ``reject``
    is first called, however long after ``callback`` itself returns. Both
    accept an optional message to route in place of the original.
    """

    @functools.wraps(callback)
    async def service(message: CascadeMessage) -> ServiceOutcome:
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def resolve(msg: CascadeMessage | None = None) -> None:
            if not future.done():
                future.set_result(ServiceOutcome.success(msg or message))

        def reject(msg: CascadeMessage | None = None) -> None:
            if not future.done():
                future.set_result(ServiceOutcome.failure(msg or message))

        await maybe_await(callback(message, resolve, reject))
        return await future

    return service


__all__ = ["CascadeConsumer", "continuation_service"]
