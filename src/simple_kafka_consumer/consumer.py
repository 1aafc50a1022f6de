"""
Consumer session: configuration, lifecycle and deduplicated delivery.

Provides:
- Validated configuration before any network activity
- Subscription from the latest offset (new consumers skip backlog)
- Per topic-partition suppression of redelivered offsets
- At-least-once safety: an offset is only marked delivered after the
  callback returned, so a failed message is delivered again on redelivery
- Lifecycle events (connect, group_join, rebalancing, crash, stop) passed
  to registered handlers
- Awaitable, idempotent stop()
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from aiokafka.structs import ConsumerRecord

from simple_kafka_consumer.adapter import KafkaClientAdapter
from simple_kafka_consumer.common.exceptions import (
    ConfigurationError,
    ConsumerError,
    DeliveryError,
    SessionStateError,
    wrap_exception,
)
from simple_kafka_consumer.common.logging import (
    KafkaLogContext,
    get_logger,
    log_exception,
    log_with_context,
)
from simple_kafka_consumer.common.metrics import (
    record_delivery,
    record_lifecycle_event,
    record_suppressed,
    update_assigned_partitions,
    update_connection_status,
    update_delivered_offset,
)
from simple_kafka_consumer.config import ConsumerConfig
from simple_kafka_consumer.dedup import OffsetTracker

logger = get_logger(__name__)

MessageCallback = Callable[[str, int, str], Any]
ErrorCallback = Callable[[ConsumerError, Dict[str, Any]], Any]
EventHandler = Callable[["LifecycleEvent"], Any]

DEFAULT_STOP_TIMEOUT = 10.0


class SessionState(str, Enum):
    """Lifecycle states of a ConsumerSession."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    CONNECTING = "connecting"
    READY = "ready"
    STOPPED = "stopped"


_ALLOWED_TRANSITIONS = {
    SessionState.UNCONFIGURED: {SessionState.CONFIGURED},
    SessionState.CONFIGURED: {SessionState.CONNECTING, SessionState.STOPPED},
    SessionState.CONNECTING: {SessionState.READY, SessionState.STOPPED},
    SessionState.READY: {SessionState.STOPPED},
    SessionState.STOPPED: {SessionState.CONNECTING},
}


class SessionEvent(str, Enum):
    """Named lifecycle events a host can subscribe to with ConsumerSession.on()."""

    CONNECT = "connect"
    GROUP_JOIN = "group_join"
    REBALANCING = "rebalancing"
    CRASH = "crash"
    STOP = "stop"


@dataclass
class LifecycleEvent:
    """Event passed to lifecycle handlers."""

    name: SessionEvent
    state: SessionState
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class ConsumerSession:
    """
    Deduplicating consumer session around a KafkaClientAdapter.

    Usage:
        >>> session = ConsumerSession()
        >>> session.configure(ConsumerConfig(
        ...     brokers="localhost:9092",
        ...     consumer_group="test-group",
        ...     topics=["learner-xapi"],
        ... ))
        >>> def on_message(topic, offset, message):
        ...     print(f"{topic}@{offset}: {message}")
        >>> await session.start(on_message)   # returns once delivery is running
        >>> session.is_ready()
        >>> await session.stop()

    The message callback may be a plain function or a coroutine function.
    Each unique (topic, partition, offset) reaches it at most once while
    the session runs; a restart (stop() then start()) clears that history.
    """

    def __init__(
        self,
        config: Optional[ConsumerConfig] = None,
        adapter_factory: Callable[..., KafkaClientAdapter] = KafkaClientAdapter,
    ):
        """
        Initialize a session.

        Args:
            config: Optional configuration; equivalent to calling configure()
            adapter_factory: Builds the broker client adapter from
                (config, emit=...). Replaced in tests.

        Raises:
            ConfigurationError: If config is given and invalid
        """
        self._state = SessionState.UNCONFIGURED
        self._config: Optional[ConsumerConfig] = None
        self._adapter_factory = adapter_factory
        self._adapter: Optional[KafkaClientAdapter] = None
        self._task: Optional[asyncio.Task] = None
        self._tracker = OffsetTracker()
        self._handlers: Dict[SessionEvent, List[EventHandler]] = {
            event: [] for event in SessionEvent
        }
        self._on_message: Optional[MessageCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._connected = False
        self._brokers_assigned = False
        self._ready_event: Optional[asyncio.Event] = None
        self._stopped_event: Optional[asyncio.Event] = None
        self.last_error: Optional[ConsumerError] = None

        if config is not None:
            self.configure(config)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> Optional[ConsumerConfig]:
        return self._config

    @property
    def tracker(self) -> OffsetTracker:
        return self._tracker

    @property
    def connected(self) -> bool:
        """Adapter has bootstrapped against the cluster in this run."""
        return self._connected

    @property
    def brokers_assigned(self) -> bool:
        """Partitions were assigned to this consumer in this run."""
        return self._brokers_assigned

    @property
    def is_running(self) -> bool:
        return self._state in (SessionState.CONNECTING, SessionState.READY)

    @property
    def group_id(self) -> str:
        return self._config.consumer_group if self._config else ""

    def is_ready(self) -> bool:
        """True once the consumer group assigned partitions to this session."""
        return self._state is SessionState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure(self, config: ConsumerConfig) -> None:
        """
        Validate and store configuration. Does not contact the broker.

        Raises:
            SessionStateError: If the session was already configured
            ConfigurationError: If required fields are missing
        """
        if self._state is not SessionState.UNCONFIGURED:
            raise SessionStateError(
                "Session is already configured", state=self._state.value
            )

        config.validate()
        self._config = config
        self._transition(SessionState.CONFIGURED)

        log_with_context(
            logger,
            logging.INFO,
            "Configured consumer session",
            topics=config.topics,
            group_id=config.consumer_group,
            brokers=config.brokers,
            client_id=config.client_id,
        )

    async def start(
        self,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """
        Connect, subscribe and begin delivering messages to on_message.

        Returns once the delivery loop is scheduled; it does not wait for
        partition assignment (see is_ready() / wait_until_ready()).

        Args:
            on_message: Called as on_message(topic, offset, message) for every
                message not delivered before
            on_error: Optional observer called as on_error(error, context) for
                callback failures and adapter crashes

        Raises:
            ConfigurationError: If the session is not configured or the
                configuration is invalid (no connection is attempted)
            ConnectivityError: If the adapter fails to connect
            AuthError: If the cluster rejects the credentials
            ConsumerError: For any other, unclassified connect failure
        """
        if self._config is None:
            raise ConfigurationError("Session is not configured; call configure() first")

        if self.is_running:
            logger.warning("Session already running, ignoring duplicate start call")
            return

        self._config.validate()
        config = self._config

        self._on_message = on_message
        self._on_error = on_error
        self._connected = False
        self._brokers_assigned = False
        self.last_error = None
        self._ready_event = asyncio.Event()
        self._stopped_event = asyncio.Event()

        self._tracker.reset()
        for topic in config.topics:
            self._tracker.track_topic(topic)

        self._transition(SessionState.CONNECTING)

        adapter = self._adapter_factory(config, emit=self._handle_adapter_event)
        self._adapter = adapter

        try:
            await adapter.connect()
            if self._state is SessionState.STOPPED:
                # stop() was called while connecting
                await self._release_adapter(adapter)
                return
            adapter.subscribe(config.topics, from_latest=not config.from_beginning)
        except Exception as e:
            if self._state is SessionState.STOPPED:
                logger.info("Connection attempt abandoned after stop()")
                return

            error = wrap_exception(
                e, context={"brokers": config.brokers, "group_id": config.consumer_group}
            )
            self.last_error = error
            log_exception(logger, error, "Failed to start consumer session")
            await self._release_adapter(adapter)
            self._finish_stop()
            raise error from e

        self._task = asyncio.create_task(
            self._run(adapter), name=f"simple-kafka-consumer-{config.consumer_group}"
        )

        log_with_context(
            logger,
            logging.INFO,
            "Consumer session started",
            topics=config.topics,
            group_id=config.consumer_group,
        )

    async def stop(self, timeout: Optional[float] = DEFAULT_STOP_TIMEOUT) -> None:
        """
        Stop delivery and release the adapter's network resources.

        Waits up to timeout seconds for the message being processed to finish,
        then cancels the delivery task. No-op when no session is active.
        """
        if self._state in (SessionState.UNCONFIGURED, SessionState.STOPPED):
            logger.debug("Session not running or already stopped")
            return

        logger.info("Stopping consumer session", extra={"state": self._state.value})

        adapter = self._adapter
        task = self._task
        self._transition(SessionState.STOPPED)

        if adapter is not None:
            adapter.stop()

        if task is not None and not task.done() and task is not asyncio.current_task():
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning(
                    "Delivery loop did not finish in time, cancelling",
                    extra={"duration_ms": (timeout or 0) * 1000},
                )
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        try:
            if adapter is not None:
                await self._release_adapter(adapter, raise_errors=True)
            logger.info("Consumer session stopped")
        except Exception as e:
            log_exception(logger, e, "Error stopping consumer session")
            raise
        finally:
            await self._finish_stop_and_notify({"reason": "stop"})

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until partitions are assigned or the session stops.

        Returns:
            is_ready() at the time the wait finished

        Raises:
            asyncio.TimeoutError: If neither happened within timeout
        """
        if self._ready_event is None or self._stopped_event is None:
            return False

        waiters = {
            asyncio.ensure_future(self._ready_event.wait()),
            asyncio.ensure_future(self._stopped_event.wait()),
        }
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()

        if not done:
            raise asyncio.TimeoutError("Consumer session did not become ready in time")
        return self.is_ready()

    async def __aenter__(self) -> "ConsumerSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: EventHandler) -> EventHandler:
        """
        Register a handler for a lifecycle event.

        Handlers receive a LifecycleEvent and may be coroutine functions.
        A handler that raises is logged and does not affect the session.

        Raises:
            ValueError: If event is not a SessionEvent name
        """
        self._handlers[SessionEvent(event)].append(handler)
        return handler

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers[SessionEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    async def _emit(self, event: SessionEvent, payload: Dict[str, Any]) -> None:
        record_lifecycle_event(self.group_id, event.value)
        lifecycle_event = LifecycleEvent(name=event, state=self._state, payload=payload)

        for handler in list(self._handlers[event]):
            try:
                await _maybe_await(handler(lifecycle_event))
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Lifecycle event handler failed",
                    level=logging.WARNING,
                    event=event.value,
                )

    async def _handle_adapter_event(self, name: str, payload: Dict[str, Any]) -> None:
        event = SessionEvent(name)

        if event is SessionEvent.CONNECT:
            if not self._connected:
                self._connected = True
                update_connection_status(self.group_id, connected=True)
                logger.info("Connected to Kafka cluster, waiting for partition assignment ...")

        elif event is SessionEvent.GROUP_JOIN:
            partitions = payload.get("partitions", [])
            update_assigned_partitions(self.group_id, len(partitions))
            if not self._brokers_assigned:
                self._brokers_assigned = True
                if self._state is SessionState.CONNECTING:
                    self._transition(SessionState.READY)
                    if self._ready_event is not None:
                        self._ready_event.set()
                log_with_context(
                    logger,
                    logging.INFO,
                    "Ready for brokers ...",
                    group_id=self.group_id,
                    partitions=partitions,
                )
            else:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Partitions reassigned",
                    group_id=self.group_id,
                    partitions=partitions,
                )

        elif event is SessionEvent.REBALANCING:
            logger.info("Consumer group rebalancing ...", extra={"group_id": self.group_id})

        await self._emit(event, payload)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _run(self, adapter: KafkaClientAdapter) -> None:
        try:
            await adapter.run(self._deliver)
        except asyncio.CancelledError:
            logger.info("Delivery loop cancelled")
            raise
        except Exception as e:
            if self._state is SessionState.STOPPED:
                log_exception(
                    logger, e, "Delivery loop failed during shutdown", level=logging.WARNING
                )
                return
            await self._handle_crash(adapter, e)

    async def _handle_crash(self, adapter: KafkaClientAdapter, exc: Exception) -> None:
        """Adapter failed while running: surface it and end the session."""
        context = {"group_id": self.group_id, "topics": self._config.topics}
        error = wrap_exception(exc, context=context)
        self.last_error = error

        log_exception(logger, error, "Consumer crashed")
        await self._emit(SessionEvent.CRASH, {"error": error})
        await self._notify_error(error, context)

        if self._state is SessionState.STOPPED:
            # stop() took over while the crash was being reported
            return

        self._transition(SessionState.STOPPED)
        await self._release_adapter(adapter)
        await self._finish_stop_and_notify({"reason": "crash"})

    async def _deliver(self, record: ConsumerRecord) -> None:
        """Hand one record to the callback unless its offset was delivered."""
        topic = record.topic
        partition = record.partition
        offset = int(record.offset)

        if not self._tracker.should_deliver(topic, partition, offset):
            record_suppressed(topic, self.group_id)
            logger.debug(
                "Suppressed already delivered message",
                extra={"topic": topic, "partition": partition, "offset": offset},
            )
            return

        message = self._decode(record.value)

        with KafkaLogContext(
            topic=topic,
            partition=partition,
            offset=offset,
            consumer_group=self.group_id,
        ):
            start_time = time.perf_counter()
            try:
                await _maybe_await(self._on_message(topic, offset, message))
            except Exception as e:
                duration = time.perf_counter() - start_time
                record_delivery(topic, self.group_id, duration, success=False)

                error = DeliveryError(topic, partition, offset, cause=e)
                self.last_error = error
                log_exception(
                    logger,
                    error,
                    "Message callback failed - offset not recorded, redelivery will retry",
                    duration_ms=round(duration * 1000, 2),
                )
                await self._notify_error(error, dict(error.context))
                return

            duration = time.perf_counter() - start_time
            self._tracker.record(topic, partition, offset)
            record_delivery(topic, self.group_id, duration, success=True)
            update_delivered_offset(topic, partition, self.group_id, offset)

            logger.debug(
                "Message delivered",
                extra={"duration_ms": round(duration * 1000, 2)},
            )

    @staticmethod
    def _decode(value: Optional[bytes]) -> str:
        if value is None:
            return ""
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)

    async def _notify_error(self, error: ConsumerError, context: Dict[str, Any]) -> None:
        if self._on_error is None:
            return
        try:
            await _maybe_await(self._on_error(error, context))
        except Exception as e:
            log_exception(logger, e, "Error callback failed", level=logging.WARNING)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise SessionStateError(
                f"Illegal transition {self._state.value} -> {new_state.value}",
                state=self._state.value,
            )
        logger.debug(
            "Session state change",
            extra={"state": new_state.value, "group_id": self.group_id},
        )
        self._state = new_state

    async def _release_adapter(
        self, adapter: KafkaClientAdapter, raise_errors: bool = False
    ) -> None:
        try:
            adapter.stop()
            await adapter.disconnect()
        except Exception as e:
            if raise_errors:
                raise
            log_exception(
                logger, e, "Error disconnecting from Kafka cluster", level=logging.WARNING
            )
        finally:
            if self._adapter is adapter:
                self._adapter = None
            update_connection_status(self.group_id, connected=False)
            update_assigned_partitions(self.group_id, 0)

    def _finish_stop(self) -> None:
        if self._state is not SessionState.STOPPED:
            self._transition(SessionState.STOPPED)
        self._task = None
        if self._stopped_event is not None:
            self._stopped_event.set()

    async def _finish_stop_and_notify(self, payload: Dict[str, Any]) -> None:
        self._finish_stop()
        await self._emit(SessionEvent.STOP, payload)


__all__ = [
    "ConsumerSession",
    "SessionState",
    "SessionEvent",
    "LifecycleEvent",
    "MessageCallback",
    "ErrorCallback",
]
