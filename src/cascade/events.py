"""Closed event set and the emitter every cascade component publishes on."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from core.errors.exceptions import UnknownEventError

logger = logging.getLogger(__name__)


class CascadeEvent(str, Enum):
    """Every event a CascadeService can emit. The set is closed."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RUN = "run"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"
    RECEIVE = "receive"
    SUCCESS = "success"
    RETRY = "retry"
    DLQ = "dlq"
    ERROR = "error"
    SERVICE_ERROR = "serviceError"

    @classmethod
    def parse(cls, event: "CascadeEvent | str") -> "CascadeEvent":
        """Resolve an event name, raising UnknownEventError outside the set."""
        if isinstance(event, cls):
            return event
        try:
            return cls(event)
        except ValueError:
            raise UnknownEventError(event) from None


EventHandler = Callable[..., Any]


class EventEmitter:
    """Maps each CascadeEvent to its handlers.

    Handlers may be plain functions or coroutine functions; coroutines are
    scheduled on the running loop and tracked until they finish. A failing
    handler is logged and never propagates into the emitting code path.
    """

    def __init__(self, name: str = "cascade"):
        self.name = name
        self._handlers: dict[CascadeEvent, list[EventHandler]] = {event: [] for event in CascadeEvent}
        self._pending: set[asyncio.Future] = set()

    def on(self, event: CascadeEvent | str, handler: EventHandler) -> EventHandler:
        """Register ``handler`` for ``event``. Unknown names raise immediately."""
        resolved = CascadeEvent.parse(event)
        self._handlers[resolved].append(handler)
        return handler

    def off(self, event: CascadeEvent | str, handler: EventHandler) -> None:
        resolved = CascadeEvent.parse(event)
        if handler in self._handlers[resolved]:
            self._handlers[resolved].remove(handler)

    def listener_count(self, event: CascadeEvent | str) -> int:
        return len(self._handlers[CascadeEvent.parse(event)])

    def emit(self, event: CascadeEvent, *args: Any) -> bool:
        """Invoke every handler for ``event``. Returns True if any were registered."""
        handlers = list(self._handlers[event])

        if event is CascadeEvent.ERROR and not handlers:
            logger.error(
                "Unhandled %s error event: %s",
                self.name,
                args[0] if args else "",
                extra={"event": event.value},
            )

        for handler in handlers:
            try:
                result = handler(*args)
            except Exception:
                logger.error(
                    "Error in %s event handler",
                    event.value,
                    extra={"event": event.value, "operation": self.name},
                    exc_info=True,
                )
                continue

            if inspect.isawaitable(result):
                self._track(event, result)

        return bool(handlers)

    def _track(self, event: CascadeEvent, awaitable) -> None:
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error(
                    "Error in async %s event handler",
                    event.value,
                    extra={"event": event.value, "operation": self.name},
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        future.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish.

        A handler that drains its own emitter does not wait on itself.
        """
        current = asyncio.current_task()
        while True:
            pending = [fut for fut in self._pending if fut is not current]
            if not pending:
                return
            await asyncio.wait(pending)


__all__ = [
    "CascadeEvent",
    "EventEmitter",
    "EventHandler",
]
