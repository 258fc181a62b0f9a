"""
Prometheus metrics for cascade monitoring.

Focused on essential metrics:
- Messages received, published and routed per outcome
- Per-level success counts and dead-letter counts
- Service callback duration and errors
- Connection health and partition assignment
"""

import logging

from prometheus_client import Counter, Gauge, Histogram

from cascade.events import CascadeEvent
from cascade.types import CascadeMessage

logger = logging.getLogger(__name__)

# =============================================================================
# Core Metrics
# =============================================================================

messages_received_counter = Counter(
    "cascade_messages_received_total",
    "Total number of messages received from the source topic and retry levels",
    labelnames=["topic", "consumer_group"],
)

messages_published_counter = Counter(
    "cascade_messages_published_total",
    "Total number of messages published to retry levels or dead-letter topics",
    labelnames=["topic", "success"],
)

published_bytes_counter = Counter(
    "cascade_published_bytes_total",
    "Total payload bytes published",
    labelnames=["topic"],
)

# Routing outcomes: success, dlq
routing_outcomes_counter = Counter(
    "cascade_routing_outcomes_total",
    "Messages routed per outcome and retry level",
    labelnames=["topic", "outcome", "level"],
)

service_errors_counter = Counter(
    "cascade_service_errors_total",
    "Service callback failures (raised, timed out or invalid result)",
    labelnames=["topic", "reason"],
)

service_duration_seconds = Histogram(
    "cascade_service_duration_seconds",
    "Time spent in the service callback per message",
    labelnames=["topic"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Connection health
connection_status_gauge = Gauge(
    "cascade_connection_status",
    "Broker connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)

assigned_partitions_gauge = Gauge(
    "cascade_assigned_partitions",
    "Number of partitions assigned to the cascade consumer",
    labelnames=["consumer_group"],
)

retry_levels_gauge = Gauge(
    "cascade_retry_levels",
    "Configured number of retry levels",
    labelnames=["topic"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_message_received(topic: str, consumer_group: str) -> None:
    messages_received_counter.labels(topic=topic, consumer_group=consumer_group).inc()


def record_message_published(topic: str, message_bytes: int, success: bool = True) -> None:
    messages_published_counter.labels(topic=topic, success=str(success).lower()).inc()
    if success:
        published_bytes_counter.labels(topic=topic).inc(message_bytes)


def record_routing_outcome(topic: str, outcome: str, level: int) -> None:
    routing_outcomes_counter.labels(topic=topic, outcome=outcome, level=str(level)).inc()


def record_service_error(topic: str, reason: str) -> None:
    service_errors_counter.labels(topic=topic, reason=reason).inc()


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    assigned_partitions_gauge.labels(consumer_group=consumer_group).set(count)


def update_retry_levels(topic: str, count: int) -> None:
    retry_levels_gauge.labels(topic=topic).set(count)


class LevelCounter:
    """Counts successes per retry level and messages that reached the dead-letter sink.

    ``counts`` has one slot per level (0 = source topic) plus a final slot for
    dead-lettered messages.
    """

    def __init__(self, topic: str, retry_levels: int = 0):
        self.topic = topic
        self._successes = [0] * (retry_levels + 1)
        self._dead_lettered = 0

    def resize(self, retry_levels: int) -> None:
        if retry_levels + 1 > len(self._successes):
            self._successes.extend([0] * (retry_levels + 1 - len(self._successes)))

    def record_success(self, message: CascadeMessage) -> None:
        level = message.retries
        self.resize(level)
        self._successes[level] += 1
        record_routing_outcome(self.topic, "success", level)

    def record_dlq(self, message: CascadeMessage) -> None:
        self._dead_lettered += 1
        record_routing_outcome(self.topic, "dlq", message.retries)

    def success_at(self, level: int) -> int:
        return self._successes[level] if 0 <= level < len(self._successes) else 0

    @property
    def dead_lettered(self) -> int:
        return self._dead_lettered

    @property
    def counts(self) -> list[int]:
        return [*self._successes, self._dead_lettered]

    def attach(self, service) -> "LevelCounter":
        """Subscribe to ``service``'s success and dlq events."""
        service.on(CascadeEvent.SUCCESS, self.record_success)
        service.on(CascadeEvent.DLQ, self.record_dlq)
        return self


__all__ = [
    "LevelCounter",
    "record_message_received",
    "record_message_published",
    "record_routing_outcome",
    "record_service_error",
    "update_connection_status",
    "update_assigned_partitions",
    "update_retry_levels",
    "service_duration_seconds",
]
