"""
Prometheus metrics for consumer sessions.

Tracks:
- Messages delivered to, suppressed before, and failed in the user callback
- Callback processing time
- Last delivered offset per partition
- Connection status and partition assignment
"""

from prometheus_client import Counter, Gauge, Histogram

messages_delivered_total = Counter(
    "simple_kafka_messages_delivered_total",
    "Messages handed to the user callback",
    ["topic", "consumer_group", "status"],  # status: success, error
)

messages_suppressed_total = Counter(
    "simple_kafka_messages_suppressed_total",
    "Redelivered messages dropped because their offset was already delivered",
    ["topic", "consumer_group"],
)

callback_duration_seconds = Histogram(
    "simple_kafka_callback_duration_seconds",
    "Time spent inside the user callback per message",
    ["topic", "consumer_group"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)

delivered_offset = Gauge(
    "simple_kafka_delivered_offset",
    "Highest offset delivered to the callback",
    ["topic", "partition", "consumer_group"],
)

connection_status = Gauge(
    "simple_kafka_connection_status",
    "Consumer connection status (1=connected, 0=disconnected)",
    ["consumer_group"],
)

assigned_partitions = Gauge(
    "simple_kafka_assigned_partitions",
    "Number of partitions assigned to this consumer",
    ["consumer_group"],
)

lifecycle_events_total = Counter(
    "simple_kafka_lifecycle_events_total",
    "Lifecycle events emitted by the broker client",
    ["consumer_group", "event"],
)


def record_delivery(
    topic: str, consumer_group: str, duration: float, success: bool = True
) -> None:
    """
    Record a callback invocation.

    Args:
        topic: Kafka topic name
        consumer_group: Consumer group ID
        duration: Seconds spent in the callback
        success: Whether the callback returned without raising
    """
    status = "success" if success else "error"
    messages_delivered_total.labels(
        topic=topic, consumer_group=consumer_group, status=status
    ).inc()
    callback_duration_seconds.labels(
        topic=topic, consumer_group=consumer_group
    ).observe(duration)


def record_suppressed(topic: str, consumer_group: str) -> None:
    messages_suppressed_total.labels(
        topic=topic, consumer_group=consumer_group
    ).inc()


def update_delivered_offset(
    topic: str, partition: int, consumer_group: str, offset: int
) -> None:
    delivered_offset.labels(
        topic=topic, partition=str(partition), consumer_group=consumer_group
    ).set(offset)


def update_connection_status(consumer_group: str, connected: bool) -> None:
    connection_status.labels(consumer_group=consumer_group).set(1 if connected else 0)


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    assigned_partitions.labels(consumer_group=consumer_group).set(count)


def record_lifecycle_event(consumer_group: str, event: str) -> None:
    lifecycle_events_total.labels(consumer_group=consumer_group, event=event).inc()


__all__ = [
    "messages_delivered_total",
    "messages_suppressed_total",
    "callback_duration_seconds",
    "delivered_offset",
    "connection_status",
    "assigned_partitions",
    "lifecycle_events_total",
    "record_delivery",
    "record_suppressed",
    "update_delivered_offset",
    "update_connection_status",
    "update_assigned_partitions",
    "record_lifecycle_event",
]
