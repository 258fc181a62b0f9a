"""Fixtures for the aiokafka adapters. All Kafka clients are mocked."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import CascadeConfig


@pytest.fixture
def kafka_config():
    return CascadeConfig(
        bootstrap_servers="localhost:9092",
        topic="orders",
        group_id="orders-cascade",
        retry_levels=2,
        drain_timeout_seconds=0.5,
    )


@pytest.fixture
def mock_aiokafka_producer():
    producer = MagicMock()
    producer.start = AsyncMock()
    producer.stop = AsyncMock()
    producer.flush = AsyncMock()
    producer.send_and_wait = AsyncMock()
    return producer


@pytest.fixture
def mock_aiokafka_consumer():
    consumer = MagicMock()
    consumer.start = AsyncMock()
    consumer.stop = AsyncMock()
    consumer.commit = AsyncMock()
    consumer.getmany = AsyncMock(return_value={})
    consumer.assignment = MagicMock(return_value=set())
    consumer.paused = MagicMock(return_value=set())
    return consumer


@pytest.fixture
def record_batches(mock_aiokafka_consumer):
    """Queue of getmany() results; an empty queue polls like an idle broker."""
    batches = []

    async def getmany(timeout_ms=0):
        if batches:
            return batches.pop(0)
        await asyncio.sleep(0.01)
        return {}

    mock_aiokafka_consumer.getmany.side_effect = getmany
    return batches


@pytest.fixture
def make_record():
    """Factory for objects shaped like aiokafka ConsumerRecord."""

    def _make(topic="orders", partition=0, offset=0, key=b"k", value=b"v", headers=()):
        return SimpleNamespace(
            topic=topic,
            partition=partition,
            offset=offset,
            timestamp=0,
            key=key,
            value=value,
            headers=list(headers),
        )

    return _make
