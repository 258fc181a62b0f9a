"""Tests for CascadeConsumer outcome classification."""

import asyncio
import re
from unittest.mock import AsyncMock, Mock

import pytest

from cascade.consumer import CascadeConsumer, continuation_service
from cascade.events import CascadeEvent
from cascade.types import ServiceOutcome
from core.errors.exceptions import BrokerConnectionError, DisconnectError, ServiceError


def _make_client():
    client = Mock()
    for name in ("connect", "disconnect", "subscribe", "stop", "pause", "resume"):
        setattr(client, name, AsyncMock())
    return client


async def _start(service_cb, client=None, service_timeout=None):
    """Run a consumer and return it with its routing mocks and delivery handler."""
    client = client or _make_client()
    consumer = CascadeConsumer(client, "orders", "orders-group", service_timeout=service_timeout)
    on_success = AsyncMock()
    on_failure = AsyncMock()
    await consumer.run(service_cb, on_success, on_failure)
    handler = client.subscribe.await_args.args[1]
    return consumer, on_success, on_failure, handler


class TestRun:
    @pytest.mark.asyncio
    async def test_subscribes_source_and_retry_levels(self):
        client = _make_client()
        consumer, *_ = await _start(Mock(), client)

        pattern = re.compile(client.subscribe.await_args.args[0])
        assert pattern.match("orders")
        assert pattern.match("orders-cascade-retry-3")
        assert not pattern.match("orders.dlq")
        assert consumer.is_running

    @pytest.mark.asyncio
    async def test_connect_wraps_errors(self):
        client = _make_client()
        client.connect.side_effect = OSError("no route")
        consumer = CascadeConsumer(client, "orders", "orders-group")

        with pytest.raises(BrokerConnectionError) as exc_info:
            await consumer.connect()
        assert isinstance(exc_info.value.cause, OSError)

    def test_worker_id_prefixed_with_group(self):
        consumer = CascadeConsumer(_make_client(), "orders", "orders-group")
        assert consumer.worker_id.startswith("orders-group-")


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_success_routes_to_on_success(self, make_message):
        _, on_success, on_failure, handler = await _start(lambda m: ServiceOutcome.success(m))
        message = make_message()

        await handler(message)

        on_success.assert_awaited_once_with(message)
        on_failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_routes_to_on_failure(self, make_message):
        async def service(message):
            return ServiceOutcome.failure(message)

        _, on_success, on_failure, handler = await _start(service)
        message = make_message(retries=1)

        await handler(message)

        on_failure.assert_awaited_once_with(message)
        on_success.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outcome_may_carry_replacement_message(self, make_message):
        replacement = make_message(value=b"enriched")
        _, on_success, _, handler = await _start(lambda m: ServiceOutcome.success(replacement))

        await handler(make_message())

        on_success.assert_awaited_once_with(replacement)

    @pytest.mark.asyncio
    async def test_receive_emitted_before_service(self, make_message):
        order = []

        def service(message):
            order.append("service")
            return ServiceOutcome.success(message)

        consumer, _, _, handler = await _start(service)
        consumer.on(CascadeEvent.RECEIVE, lambda m: order.append("receive"))

        await handler(make_message())

        assert order == ["receive", "service"]


class TestServiceErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "service",
        [
            Mock(side_effect=ValueError("bad payload")),
            AsyncMock(side_effect=RuntimeError("downstream")),
            Mock(return_value=None),
            Mock(return_value=True),
        ],
        ids=["sync-raise", "async-raise", "none-result", "bool-result"],
    )
    async def test_bad_service_becomes_failure(self, make_message, service):
        consumer, on_success, on_failure, handler = await _start(service)
        errors = []
        consumer.on(CascadeEvent.SERVICE_ERROR, lambda error, msg: errors.append((error, msg)))
        message = make_message()

        await handler(message)

        on_failure.assert_awaited_once_with(message)
        on_success.assert_not_awaited()
        assert len(errors) == 1
        error, failed = errors[0]
        assert isinstance(error, ServiceError)
        assert failed is message

    @pytest.mark.asyncio
    async def test_raised_error_kept_as_cause(self, make_message):
        consumer, _, _, handler = await _start(Mock(side_effect=KeyError("id")))
        errors = []
        consumer.on(CascadeEvent.SERVICE_ERROR, lambda error, msg: errors.append(error))

        await handler(make_message())

        assert isinstance(errors[0].cause, KeyError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self, make_message):
        async def hangs(message):
            await asyncio.sleep(10)

        consumer, _, on_failure, handler = await _start(hangs, service_timeout=0.01)
        errors = []
        consumer.on(CascadeEvent.SERVICE_ERROR, lambda error, msg: errors.append(error))

        await handler(make_message())

        on_failure.assert_awaited_once()
        assert "did not complete" in errors[0].message

    @pytest.mark.asyncio
    async def test_routing_failure_emits_error(self, make_message):
        consumer, on_success, _, handler = await _start(lambda m: ServiceOutcome.success(m))
        on_success.side_effect = RuntimeError("success callback broke")
        errors = []
        consumer.on(CascadeEvent.ERROR, errors.append)

        await handler(make_message())

        assert isinstance(errors[0], RuntimeError)
        assert consumer.in_flight == 0


class TestContinuationService:
    @pytest.mark.asyncio
    async def test_resolve_gives_success(self, make_message):
        service = continuation_service(lambda message, resolve, reject: resolve())
        message = make_message()

        outcome = await service(message)

        assert outcome.succeeded
        assert outcome.message is message

    @pytest.mark.asyncio
    async def test_reject_with_message(self, make_message):
        replacement = make_message(value=b"other")
        service = continuation_service(lambda message, resolve, reject: reject(replacement))

        outcome = await service(make_message())

        assert not outcome.succeeded
        assert outcome.message is replacement

    @pytest.mark.asyncio
    async def test_late_resolution(self, make_message):
        def handle(message, resolve, reject):
            asyncio.get_running_loop().call_later(0.01, reject)

        outcome = await continuation_service(handle)(make_message())

        assert not outcome.succeeded

    @pytest.mark.asyncio
    async def test_first_call_wins(self, make_message):
        def handle(message, resolve, reject):
            resolve()
            reject()

        outcome = await continuation_service(handle)(make_message())

        assert outcome.succeeded


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_pause_resume_delegate(self):
        client = _make_client()
        consumer = CascadeConsumer(client, "orders", "orders-group")

        await consumer.pause()
        await consumer.resume()

        client.pause.assert_awaited_once()
        client.resume.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_stops_then_disconnects(self):
        client = _make_client()
        calls = []
        client.stop.side_effect = lambda: calls.append("stop")
        client.disconnect.side_effect = lambda: calls.append("disconnect")
        consumer, *_ = await _start(Mock(), client)

        await consumer.disconnect()

        assert calls == ["stop", "disconnect"]
        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_disconnect_while_processing_raises(self, make_message):
        client = _make_client()
        holder = {}

        async def service(message):
            with pytest.raises(DisconnectError):
                await holder["consumer"].disconnect()
            return ServiceOutcome.success(message)

        consumer, on_success, _, handler = await _start(service, client)
        holder["consumer"] = consumer

        await handler(make_message())

        client.disconnect.assert_not_awaited()
        on_success.assert_awaited_once()
