"""Tests for the aiokafka-backed producer client."""

from unittest.mock import MagicMock, patch

import pytest

from cascade.kafka.producer import KafkaProducerClient
from cascade.types import CascadeMessage
from core.errors.exceptions import BrokerConnectionError, DisconnectError, PublishError


@pytest.fixture
def producer(kafka_config, mock_aiokafka_producer):
    with patch("cascade.kafka.producer.AIOKafkaProducer", return_value=mock_aiokafka_producer):
        yield KafkaProducerClient(kafka_config)


class TestKafkaProducerConfig:
    def test_defaults(self, kafka_config):
        cfg = KafkaProducerClient(kafka_config)._build_kafka_config()

        assert cfg["bootstrap_servers"] == "localhost:9092"
        assert cfg["client_id"] == "kafka-cascade-producer"
        assert cfg["acks"] == "all"
        assert cfg["enable_idempotence"] is True
        assert "security_protocol" not in cfg

    def test_idempotence_forces_acks_all(self, kafka_config):
        kafka_config.producer = {"acks": "1"}
        cfg = KafkaProducerClient(kafka_config)._build_kafka_config()
        assert cfg["acks"] == "all"

    def test_acks_kept_without_idempotence(self, kafka_config):
        kafka_config.producer = {"acks": "1", "enable_idempotence": False, "compression_type": "none", "batch_size": 1024}
        cfg = KafkaProducerClient(kafka_config)._build_kafka_config()

        assert cfg["acks"] == 1
        assert cfg["compression_type"] is None
        assert cfg["max_batch_size"] == 1024


class TestKafkaProducerLifecycle:
    @pytest.mark.asyncio
    async def test_connect_starts_producer(self, producer, mock_aiokafka_producer):
        await producer.connect()

        mock_aiokafka_producer.start.assert_awaited_once()
        assert producer.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure_closes_and_raises(self, producer, mock_aiokafka_producer):
        mock_aiokafka_producer.start.side_effect = OSError("connection refused")

        with pytest.raises(BrokerConnectionError) as exc_info:
            await producer.connect()

        mock_aiokafka_producer.stop.assert_awaited_once()
        assert isinstance(exc_info.value.cause, OSError)
        assert not producer.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_flushes_then_stops(self, producer, mock_aiokafka_producer):
        order = []
        mock_aiokafka_producer.flush.side_effect = lambda: order.append("flush")
        mock_aiokafka_producer.stop.side_effect = lambda: order.append("stop")
        await producer.connect()

        await producer.disconnect()

        assert order == ["flush", "stop"]
        assert not producer.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_failure_raises(self, producer, mock_aiokafka_producer):
        mock_aiokafka_producer.stop.side_effect = RuntimeError("stuck")
        await producer.connect()

        with pytest.raises(DisconnectError):
            await producer.disconnect()
        assert not producer.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected_is_noop(self, producer, mock_aiokafka_producer):
        await producer.disconnect()
        mock_aiokafka_producer.stop.assert_not_awaited()


class TestKafkaProducerPublish:
    @pytest.mark.asyncio
    async def test_publish_passes_key_value_headers(self, producer, mock_aiokafka_producer):
        mock_aiokafka_producer.send_and_wait.return_value = MagicMock(
            topic="orders-cascade-retry-1", partition=0, offset=7
        )
        await producer.connect()
        message = CascadeMessage(topic="orders", key=b"k", value=b"v", headers=(("retries", b"1"),))

        await producer.publish("orders-cascade-retry-1", message)

        mock_aiokafka_producer.send_and_wait.assert_awaited_once_with(
            "orders-cascade-retry-1", key=b"k", value=b"v", headers=[("retries", b"1")]
        )

    @pytest.mark.asyncio
    async def test_publish_without_headers_sends_none(self, producer, mock_aiokafka_producer):
        mock_aiokafka_producer.send_and_wait.return_value = MagicMock()
        await producer.connect()

        await producer.publish("orders.dlq", CascadeMessage(topic="orders", value=b"v"))

        assert mock_aiokafka_producer.send_and_wait.await_args.kwargs["headers"] is None

    @pytest.mark.asyncio
    async def test_publish_before_connect_raises(self, producer):
        with pytest.raises(PublishError):
            await producer.publish("orders-cascade-retry-1", CascadeMessage(topic="orders"))

    @pytest.mark.asyncio
    async def test_publish_failure_wrapped(self, producer, mock_aiokafka_producer):
        mock_aiokafka_producer.send_and_wait.side_effect = RuntimeError("leader not available")
        await producer.connect()

        with pytest.raises(PublishError) as exc_info:
            await producer.publish("orders-cascade-retry-1", CascadeMessage(topic="orders", value=b"v"))

        assert exc_info.value.context["target_topic"] == "orders-cascade-retry-1"
