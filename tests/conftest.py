"""
pytest configuration for simple_kafka_consumer tests.

Adds src directory to Python path for imports and provides an in-memory
stand-in for the aiokafka adapter so sessions can be driven without a broker.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiokafka.structs import ConsumerRecord

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from simple_kafka_consumer.config import ConsumerConfig  # noqa: E402

_STOP = object()


class FakeAdapter:
    """
    In-memory adapter with the same surface as KafkaClientAdapter.

    Tests push records (or exceptions, to simulate a client crash) and
    trigger group membership events explicitly.
    """

    def __init__(self, config: ConsumerConfig, emit=None):
        self.config = config
        self._emit = emit
        self.queue: asyncio.Queue = asyncio.Queue()
        self.connected = False
        self.running = False
        self.subscriptions: List[tuple] = []
        self.connect_error: Optional[Exception] = None
        self.stop_requested = False
        self.stop_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        await self._emit("connect", {"brokers": list(self.config.brokers)})

    def subscribe(self, topics, from_latest: bool = True) -> None:
        self.subscriptions.append((list(topics), from_latest))

    async def run(self, on_each_message) -> None:
        self.running = True
        try:
            while not self.stop_requested:
                item = await self.queue.get()
                try:
                    if item is _STOP:
                        return
                    if isinstance(item, Exception):
                        raise item
                    await on_each_message(item)
                finally:
                    self.queue.task_done()
        finally:
            self.running = False

    def stop(self) -> None:
        self.stop_calls += 1
        if not self.stop_requested:
            self.stop_requested = True
            self.queue.put_nowait(_STOP)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def assignment(self):
        return set()

    # Test helpers

    async def assign(self, partitions: List[str]) -> None:
        await self._emit("group_join", {"partitions": partitions})

    async def revoke(self, partitions: List[str]) -> None:
        await self._emit("rebalancing", {"partitions": partitions})

    async def deliver(self, *records: ConsumerRecord) -> None:
        """Queue records and wait until the session has handled all of them."""
        for record in records:
            self.queue.put_nowait(record)
        await asyncio.wait_for(self.queue.join(), timeout=2)

    def crash(self, error: Exception) -> None:
        self.queue.put_nowait(error)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def adapters() -> List[FakeAdapter]:
    """Adapters created by adapter_factory, in creation order."""
    return []


@pytest.fixture
def adapter_factory(adapters):
    def factory(config: ConsumerConfig, emit=None) -> FakeAdapter:
        adapter = FakeAdapter(config, emit=emit)
        adapters.append(adapter)
        return adapter

    return factory


@pytest.fixture
def consumer_config() -> ConsumerConfig:
    """Create test consumer configuration."""
    return ConsumerConfig(
        brokers="localhost:9092",
        consumer_group="test-group",
        topics=["t1", "t2"],
    )


@pytest.fixture
def make_record() -> Callable[..., ConsumerRecord]:
    """Build ConsumerRecords for a topic/partition/offset."""

    def _make(
        topic: str,
        partition: int,
        offset: int,
        value: Any = b"hello!",
        key: Optional[bytes] = None,
    ) -> ConsumerRecord:
        return ConsumerRecord(
            topic=topic,
            partition=partition,
            offset=offset,
            timestamp=1700000000000,
            timestamp_type=0,
            key=key,
            value=value,
            headers=[],
            checksum=None,
            serialized_key_size=len(key) if key else 0,
            serialized_value_size=len(value) if value else 0,
        )

    return _make


@pytest.fixture
def wait_for() -> Callable:
    return wait_until


@pytest.fixture
def clean_env(monkeypatch) -> Dict[str, str]:
    """Remove KAFKA_* variables so config tests see true defaults."""
    for name in (
        "KAFKA_BROKERS",
        "KAFKA_TOPICS",
        "KAFKA_CONSUMER_GROUP",
        "KAFKA_CLIENT_ID",
        "KAFKA_USE_SASL",
        "KAFKA_SASL_USER",
        "KAFKA_SASL_PASS",
        "KAFKA_SASL_MECHANISM",
        "KAFKA_SECURITY_PROTOCOL",
    ):
        monkeypatch.delenv(name, raising=False)
    return {}
