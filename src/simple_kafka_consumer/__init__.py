"""
Minimal Kafka consumer facade with per-partition redelivery suppression.

    >>> from simple_kafka_consumer import ConsumerConfig, ConsumerSession
    >>> session = ConsumerSession(ConsumerConfig(
    ...     brokers="localhost:9092",
    ...     consumer_group="test-group",
    ...     topics=["learner-xapi"],
    ... ))
    >>> await session.start(lambda topic, offset, message: print(message))
"""

from simple_kafka_consumer.adapter import KafkaClientAdapter
from simple_kafka_consumer.common.exceptions import (
    AuthError,
    ConfigurationError,
    ConnectivityError,
    ConsumerError,
    DeliveryError,
    ErrorCategory,
    SessionStateError,
)
from simple_kafka_consumer.config import ConsumerConfig
from simple_kafka_consumer.consumer import (
    ConsumerSession,
    LifecycleEvent,
    SessionEvent,
    SessionState,
)
from simple_kafka_consumer.dedup import OffsetTracker

__version__ = "1.0.0"

__all__ = [
    "ConsumerConfig",
    "ConsumerSession",
    "KafkaClientAdapter",
    "LifecycleEvent",
    "OffsetTracker",
    "SessionEvent",
    "SessionState",
    # Exceptions
    "AuthError",
    "ConfigurationError",
    "ConnectivityError",
    "ConsumerError",
    "DeliveryError",
    "ErrorCategory",
    "SessionStateError",
]
