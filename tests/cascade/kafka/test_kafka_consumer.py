"""Tests for the aiokafka-backed consumer client."""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest
from aiokafka.structs import TopicPartition

from cascade.kafka.consumer import KafkaConsumerClient
from core.errors.exceptions import BrokerConnectionError, DisconnectError


@pytest.fixture
def consumer(kafka_config, mock_aiokafka_consumer):
    with patch("cascade.kafka.consumer.AIOKafkaConsumer", return_value=mock_aiokafka_consumer):
        yield KafkaConsumerClient(kafka_config, "orders-cascade", poll_timeout_ms=10)


async def _wait_for(condition, timeout=1.0):
    async def _poll():
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class TestKafkaConsumerConfig:
    def test_manual_commit_and_earliest(self, kafka_config):
        cfg = KafkaConsumerClient(kafka_config, "orders-cascade")._build_kafka_config()

        assert cfg["group_id"] == "orders-cascade"
        assert cfg["enable_auto_commit"] is False
        assert cfg["auto_offset_reset"] == "earliest"
        assert cfg["client_id"] == "kafka-cascade-consumer"

    def test_optional_keys_forwarded(self, kafka_config):
        kafka_config.consumer = {"fetch_min_bytes": 1024, "max_poll_records": 10, "unknown": True}
        cfg = KafkaConsumerClient(kafka_config, "orders-cascade")._build_kafka_config()

        assert cfg["fetch_min_bytes"] == 1024
        assert cfg["max_poll_records"] == 10
        assert "unknown" not in cfg


class TestKafkaConsumerLifecycle:
    @pytest.mark.asyncio
    async def test_connect_failure_stops_and_raises(self, consumer, mock_aiokafka_consumer):
        mock_aiokafka_consumer.start.side_effect = OSError("no brokers")

        with pytest.raises(BrokerConnectionError):
            await consumer.connect()

        mock_aiokafka_consumer.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subscribe_before_connect_raises(self, consumer):
        with pytest.raises(BrokerConnectionError):
            await consumer.subscribe("^orders$", AsyncMock())

    @pytest.mark.asyncio
    async def test_disconnect_stops_consumer(self, consumer, mock_aiokafka_consumer, record_batches):
        await consumer.connect()
        await consumer.subscribe("^orders$", AsyncMock())

        await consumer.disconnect()

        mock_aiokafka_consumer.stop.assert_awaited_once()
        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_disconnect_failure_raises(self, consumer, mock_aiokafka_consumer):
        mock_aiokafka_consumer.stop.side_effect = RuntimeError("coordinator gone")
        await consumer.connect()

        with pytest.raises(DisconnectError):
            await consumer.disconnect()


class TestKafkaConsumerDelivery:
    @pytest.mark.asyncio
    async def test_delivers_and_commits_each_record(self, consumer, mock_aiokafka_consumer, record_batches, make_record):
        tp = TopicPartition("orders", 0)
        record_batches.append({tp: [make_record(offset=4), make_record(offset=5, headers=[("retries", b"1")])]})
        handled = []

        async def handler(message):
            handled.append((message.offset, message.retries))

        await consumer.connect()
        await consumer.subscribe("^orders$", handler)
        await _wait_for(lambda: mock_aiokafka_consumer.commit.await_count == 2)
        await consumer.stop()

        mock_aiokafka_consumer.subscribe.assert_called_once_with(pattern="^orders$")
        assert handled == [(4, 0), (5, 1)]
        assert [c.args[0] for c in mock_aiokafka_consumer.commit.await_args_list] == [{tp: 5}, {tp: 6}]

    @pytest.mark.asyncio
    async def test_commit_failure_is_logged(self, consumer, mock_aiokafka_consumer, record_batches, caplog, make_record):
        mock_aiokafka_consumer.commit.side_effect = RuntimeError("rebalancing")
        record_batches.append({TopicPartition("orders", 0): [make_record(offset=0), make_record(offset=1)]})
        handler = AsyncMock()

        await consumer.connect()
        with caplog.at_level(logging.WARNING, logger="cascade.kafka.consumer"):
            await consumer.subscribe("^orders$", handler)
            await _wait_for(lambda: handler.await_count == 2)
            await consumer.stop()

        assert "Failed to commit offset" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_waits_for_handler_in_progress(self, consumer, record_batches, make_record):
        record_batches.append({TopicPartition("orders", 0): [make_record()]})
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def handler(message):
            started.set()
            await release.wait()
            finished.append(message.offset)

        await consumer.connect()
        await consumer.subscribe("^orders$", handler)
        await asyncio.wait_for(started.wait(), 1.0)

        stop_task = asyncio.create_task(consumer.stop())
        await asyncio.sleep(0.01)
        assert not stop_task.done()

        release.set()
        await stop_task
        assert finished == [0]


class TestKafkaConsumerPause:
    @pytest.mark.asyncio
    async def test_pause_and_resume_assignment(self, consumer, mock_aiokafka_consumer):
        tp = TopicPartition("orders-cascade-retry-1", 0)
        mock_aiokafka_consumer.assignment.return_value = {tp}
        await consumer.connect()

        await consumer.pause()
        mock_aiokafka_consumer.pause.assert_called_once_with(tp)

        mock_aiokafka_consumer.paused.return_value = {tp}
        await consumer.resume()
        mock_aiokafka_consumer.resume.assert_called_once_with(tp)

    @pytest.mark.asyncio
    async def test_pause_before_connect_only_sets_flag(self, consumer, mock_aiokafka_consumer):
        await consumer.pause()
        mock_aiokafka_consumer.pause.assert_not_called()

    @pytest.mark.asyncio
    async def test_pause_mid_batch_stops_delivery_and_rewinds(
        self, consumer, mock_aiokafka_consumer, record_batches, make_record
    ):
        tp = TopicPartition("orders", 0)
        record_batches.append({tp: [make_record(offset=i) for i in range(5)]})
        handled = []

        async def handler(message):
            handled.append(message.offset)
            await consumer.pause()

        await consumer.connect()
        await consumer.subscribe("^orders$", handler)
        await _wait_for(lambda: mock_aiokafka_consumer.seek.called)
        await consumer.stop()

        assert handled == [0]
        mock_aiokafka_consumer.seek.assert_called_once_with(tp, 1)
        assert [c.args[0] for c in mock_aiokafka_consumer.commit.await_args_list] == [{tp: 1}]

    @pytest.mark.asyncio
    async def test_pause_rewinds_every_undelivered_partition(
        self, consumer, mock_aiokafka_consumer, record_batches, make_record
    ):
        first = TopicPartition("orders", 0)
        second = TopicPartition("orders-cascade-retry-1", 0)
        record_batches.append(
            {
                first: [make_record(offset=7), make_record(offset=8)],
                second: [make_record(topic="orders-cascade-retry-1", offset=3)],
            }
        )
        handled = []

        async def handler(message):
            handled.append((message.topic, message.offset))
            await consumer.pause()

        await consumer.connect()
        await consumer.subscribe("^orders.*$", handler)
        await _wait_for(lambda: mock_aiokafka_consumer.seek.call_count == 2)
        await consumer.stop()

        assert handled == [("orders", 7)]
        assert [c.args for c in mock_aiokafka_consumer.seek.call_args_list] == [(first, 8), (second, 3)]
