"""
Per topic-partition offset tracking for callback deduplication.

Kafka delivers at-least-once: after a rebalance, reconnect or restart
without a committed offset, records at or before the last processed
offset can arrive again. OffsetTracker remembers the highest offset handed
to the callback for every (topic, partition) and answers whether a newly
arrived record is new.

State is process-local and lives only as long as the tracker; nothing is
persisted, and ConsumerSession resets it on every start().
"""

import copy
from typing import Dict, Optional

OffsetTable = Dict[str, Dict[int, int]]


class OffsetTracker:
    """
    In-memory table of last delivered offsets keyed by topic then partition.

    The tracker is owned by a single delivery loop and is not thread-safe.

    Usage:
        >>> tracker = OffsetTracker()
        >>> tracker.should_deliver("t", 0, 5)
        True
        >>> tracker.record("t", 0, 5)
        >>> tracker.should_deliver("t", 0, 5)
        False
        >>> tracker.should_deliver("t", 0, 6)
        True
    """

    def __init__(self) -> None:
        self._table: OffsetTable = {}

    def track_topic(self, topic: str) -> None:
        """Create an empty entry for topic (no partitions) if missing."""
        self._table.setdefault(topic, {})

    def should_deliver(self, topic: str, partition: int, offset: int) -> bool:
        """
        Return False if an offset >= this one was already recorded.

        The first record seen for a topic/partition is always delivered,
        including offset 0 and topics that were never tracked.
        """
        last = self._table.get(topic, {}).get(partition)
        if last is None:
            return True
        return offset > last

    def record(self, topic: str, partition: int, offset: int) -> None:
        """
        Store offset as the last delivered offset for topic/partition.

        Overwrites unconditionally. Only call after should_deliver()
        returned True for the same offset to keep the table monotonic.
        """
        self._table.setdefault(topic, {})[partition] = offset

    def last_offset(self, topic: str, partition: int) -> Optional[int]:
        return self._table.get(topic, {}).get(partition)

    def topics(self) -> list:
        return list(self._table)

    def snapshot(self) -> OffsetTable:
        """Return a deep copy of the offset table."""
        return copy.deepcopy(self._table)

    def reset(self) -> None:
        self._table.clear()

    def __len__(self) -> int:
        return sum(len(partitions) for partitions in self._table.values())

    def __repr__(self) -> str:
        return f"OffsetTracker(topics={len(self._table)}, partitions={len(self)})"


__all__ = [
    "OffsetTracker",
    "OffsetTable",
]
