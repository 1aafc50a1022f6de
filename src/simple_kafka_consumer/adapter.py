"""
Thin adapter over aiokafka's AIOKafkaConsumer.

Exposes the small surface the session needs (connect, subscribe, run,
stop, disconnect) and turns the client's group membership callbacks into
named lifecycle events:

- connect: client bootstrapped against the cluster
- group_join: partitions assigned, the consumer can receive messages
- rebalancing: partitions revoked ahead of a group rebalance
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from aiokafka import AIOKafkaConsumer
from aiokafka.abc import ConsumerRebalanceListener
from aiokafka.structs import ConsumerRecord, TopicPartition

from simple_kafka_consumer.common.exceptions import SessionStateError
from simple_kafka_consumer.common.logging import get_logger, log_with_context
from simple_kafka_consumer.config import ConsumerConfig

logger = get_logger(__name__)

EventEmitter = Callable[[str, Dict[str, Any]], Awaitable[None]]
RecordHandler = Callable[[ConsumerRecord], Awaitable[None]]


async def _ignore_event(name: str, payload: Dict[str, Any]) -> None:
    return None


class _GroupListener(ConsumerRebalanceListener):
    """Forwards aiokafka rebalance callbacks to the adapter."""

    def __init__(self, adapter: "KafkaClientAdapter"):
        self._adapter = adapter

    async def on_partitions_revoked(self, revoked) -> None:
        await self._adapter._on_revoked(revoked)

    async def on_partitions_assigned(self, assigned) -> None:
        await self._adapter._on_assigned(assigned)


class KafkaClientAdapter:
    """
    Connects one AIOKafkaConsumer and streams its records to a handler.

    Usage:
        >>> adapter = KafkaClientAdapter(config, emit=on_event)
        >>> await adapter.connect()
        >>> adapter.subscribe(config.topics, from_latest=True)
        >>> await adapter.run(handle_record)   # returns after stop()
        >>> await adapter.disconnect()
    """

    def __init__(
        self,
        config: ConsumerConfig,
        emit: Optional[EventEmitter] = None,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
    ):
        self.config = config
        self._emit = emit or _ignore_event
        self._consumer_factory = consumer_factory
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._from_latest = True
        self._running = False
        self._stop_requested = False

    @property
    def is_connected(self) -> bool:
        return self._consumer is not None

    @property
    def is_running(self) -> bool:
        return self._running

    async def connect(self) -> None:
        """
        Create the aiokafka consumer and bootstrap it against the brokers.

        Raises:
            Exception: Whatever aiokafka raises when the cluster is unreachable
                or rejects the credentials
        """
        if self._consumer is not None:
            logger.warning("Adapter already connected, ignoring duplicate connect call")
            return

        client_config = self.config.to_client_kwargs()
        consumer = self._consumer_factory(**client_config)

        log_with_context(
            logger,
            logging.INFO,
            "Connecting to Kafka cluster",
            brokers=self.config.brokers,
            group_id=self.config.consumer_group,
            client_id=self.config.client_id,
            sasl_user=self.config.sasl_user if self.config.sasl_enabled else None,
        )

        self._stop_requested = False
        try:
            await consumer.start()
        except BaseException:
            # start() may have spawned the metadata sync task before failing
            await consumer.stop()
            raise
        self._consumer = consumer

        await self._emit(
            "connect",
            {"brokers": list(self.config.brokers), "sasl": self.config.sasl_enabled},
        )

    def subscribe(self, topics: List[str], from_latest: bool = True) -> None:
        """
        Subscribe to topics under the configured consumer group.

        With from_latest=True, partitions without a committed offset start at
        the end of the log (no backlog). With from_latest=False they are
        rewound to the beginning on assignment.

        Raises:
            SessionStateError: If called before connect()
        """
        if self._consumer is None:
            raise SessionStateError("Cannot subscribe before connect()")

        self._from_latest = from_latest
        logger.info("Subscribing to topics ...", extra={"topics": list(topics)})
        self._consumer.subscribe(topics=list(topics), listener=_GroupListener(self))

    async def run(self, on_each_message: RecordHandler) -> None:
        """
        Fetch records and hand them to on_each_message one at a time.

        Runs until stop() is called. Errors raised by the client propagate to
        the caller; errors raised by on_each_message propagate as well, so the
        handler is expected to deal with its own failures.
        """
        if self._consumer is None:
            raise SessionStateError("Cannot run before connect()")
        if self._stop_requested:
            logger.info("Stop requested before the fetch loop started")
            return

        self._running = True
        logger.info("Starting consumer process ...")

        try:
            while not self._stop_requested and self._consumer is not None:
                data = await self._consumer.getmany(
                    timeout_ms=self.config.poll_timeout_ms
                )
                for _tp, records in data.items():
                    for record in records:
                        if self._stop_requested:
                            return
                        await on_each_message(record)
        finally:
            self._running = False

    def stop(self) -> None:
        """Ask run() to return after the record currently being handled.

        Sticks until the next connect(), so a stop() issued before run() got
        scheduled still ends the loop.
        """
        self._stop_requested = True

    async def disconnect(self) -> None:
        """Leave the group and close connections. Safe to call repeatedly."""
        consumer = self._consumer
        if consumer is None:
            return

        self._stop_requested = True
        self._consumer = None
        await consumer.stop()
        logger.info("Disconnected from Kafka cluster")

    def assignment(self) -> Set[TopicPartition]:
        if self._consumer is None:
            return set()
        return set(self._consumer.assignment())

    async def _on_assigned(self, assigned) -> None:
        partitions = sorted(f"{tp.topic}:{tp.partition}" for tp in assigned)

        if not self._from_latest and self._consumer is not None:
            for tp in assigned:
                committed = await self._consumer.committed(tp)
                if committed is None:
                    await self._consumer.seek_to_beginning(tp)

        await self._emit("group_join", {"partitions": partitions})

    async def _on_revoked(self, revoked) -> None:
        if not revoked:
            # aiokafka revokes an empty set ahead of the first join
            return
        partitions = sorted(f"{tp.topic}:{tp.partition}" for tp in revoked)
        await self._emit("rebalancing", {"partitions": partitions})


__all__ = [
    "KafkaClientAdapter",
    "EventEmitter",
    "RecordHandler",
]
