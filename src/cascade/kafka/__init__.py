"""
Kafka implementation of the broker protocols, built on aiokafka.

Usage:
    broker = KafkaBroker(config)
    service = create_service(broker, config.topic, config.group_id, ...)
"""

from cascade.kafka.admin import KafkaAdminClient
from cascade.kafka.consumer import KafkaConsumerClient
from cascade.kafka.producer import KafkaProducerClient
from cascade.kafka.security import build_kafka_security_config
from config.config import CascadeConfig


class KafkaBroker:
    """Builds aiokafka-backed clients that share one CascadeConfig."""

    def __init__(self, config: CascadeConfig):
        self.config = config

    def producer(self) -> KafkaProducerClient:
        return KafkaProducerClient(self.config)

    def consumer(self, group_id: str) -> KafkaConsumerClient:
        return KafkaConsumerClient(self.config, group_id)

    def admin(self) -> KafkaAdminClient:
        return KafkaAdminClient(self.config)


__all__ = [
    "KafkaBroker",
    "KafkaProducerClient",
    "KafkaConsumerClient",
    "KafkaAdminClient",
    "build_kafka_security_config",
]
