"""
Retry-topic cascading for Kafka consumers.

A failed message is re-published to ``<topic>-cascade-retry-1``, then
``-2`` and so on, and after the last level is handed to a dead-letter
callback. ``CascadeService`` coordinates the consumer and producer sides
and is the single event source.

Usage:
    from cascade import ServiceOutcome, create_service
    from cascade.kafka import KafkaBroker

    async def handle(message):
        ok = await process(message.value)
        return ServiceOutcome.success(message) if ok else ServiceOutcome.failure(message)

    service = create_service(KafkaBroker(config), "orders", "orders-cascade",
                             handle, None, DeadLetterPublisher(...))
"""

from cascade.consumer import CascadeConsumer, continuation_service
from cascade.dlq import DeadLetterPublisher
from cascade.events import CascadeEvent, EventEmitter
from cascade.metrics import LevelCounter
from cascade.producer import CascadeProducer
from cascade.service import CascadeService, create_service
from cascade.topics import resize_retry_topics, retry_topic_name
from cascade.types import (
    CascadeMessage,
    CascadeMetadata,
    PauseState,
    RetryProvisioningOptions,
    ServiceOutcome,
    ServiceState,
    get_metadata,
)


__all__ = [
    # Service
    "CascadeService",
    "create_service",
    "CascadeConsumer",
    "CascadeProducer",
    "continuation_service",
    "DeadLetterPublisher",
    "LevelCounter",
    # Events
    "CascadeEvent",
    "EventEmitter",
    # Types
    "CascadeMessage",
    "CascadeMetadata",
    "ServiceOutcome",
    "PauseState",
    "ServiceState",
    "RetryProvisioningOptions",
    "get_metadata",
    # Topic naming
    "retry_topic_name",
    "resize_retry_topics",
]
