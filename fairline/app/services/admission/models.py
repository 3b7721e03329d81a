"""Admission engine data models.

This module contains the queue entry, the per-class queue with its lookup
index, and the sliding window used for budget accounting.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class QueueEntry:
    """A participant waiting in a class queue."""
    queue_id: str
    traffic_class: str
    joined_at: int  # epoch milliseconds
    credential_key: str
    region: str = ""
    expires_at: Optional[float] = None  # epoch seconds, when the credential expires


class ClassQueue:
    """FIFO sequence of entries with a ``credential_key -> index`` lookup.

    The index is rebuilt on every removal, which is O(n) in the queue
    length.
    """

    def __init__(self, name: str):
        self.name = name
        self._entries: List[QueueEntry] = []
        self._index: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(self._entries)

    def append(self, entry: QueueEntry) -> None:
        self._entries.append(entry)
        self._index[entry.credential_key] = len(self._entries) - 1

    def position(self, key: str) -> Optional[int]:
        """1-based position of ``key``, or None if not queued here."""
        idx = self._index.get(key)
        return None if idx is None else idx + 1

    def pop_head(self) -> Optional[QueueEntry]:
        if not self._entries:
            return None
        entry = self._entries.pop(0)
        self._reindex()
        return entry

    def remove_where(self, predicate) -> List[QueueEntry]:
        """Remove every entry matching ``predicate`` and return them."""
        removed = [e for e in self._entries if predicate(e)]
        if removed:
            self._entries = [e for e in self._entries if not predicate(e)]
            self._reindex()
        return removed

    def _reindex(self) -> None:
        self._index = {e.credential_key: i for i, e in enumerate(self._entries)}


@dataclass
class WindowBucket:
    """Admit counters for one time unit."""
    timestamp: int = -1
    counts: Dict[str, int] = field(default_factory=dict)


class SlidingWindow:
    """Ring of one-second buckets holding per-class admit counts.

    A bucket only counts toward the window while its timestamp lies within
    the trailing ``size`` units. Stale buckets are reset lazily when
    written to.
    """

    def __init__(self, classes: Iterable[str], size: int = 60):
        self.size = size
        self.classes = tuple(classes)
        self._buckets = [self._empty_bucket(-1) for _ in range(size)]

    def _empty_bucket(self, timestamp: int) -> WindowBucket:
        return WindowBucket(timestamp=timestamp, counts={c: 0 for c in self.classes})

    def record(self, traffic_class: str, now: int) -> None:
        slot = now % self.size
        bucket = self._buckets[slot]
        if bucket.timestamp != now:
            bucket = self._empty_bucket(now)
            self._buckets[slot] = bucket
        bucket.counts[traffic_class] = bucket.counts.get(traffic_class, 0) + 1

    def counts(self, now: int) -> Dict[str, int]:
        """Trailing-window admit counts per class."""
        totals = {c: 0 for c in self.classes}
        for bucket in self._buckets:
            if bucket.timestamp >= 0 and now - bucket.timestamp < self.size:
                for cls, n in bucket.counts.items():
                    totals[cls] = totals.get(cls, 0) + n
        return totals


@dataclass
class AdmissionStats:
    """Read-only snapshot of the engine."""
    queues: Dict[str, int]
    admitted_last_minute: Dict[str, int]
    admit_per_minute: float
    budgets: Dict[str, float]
    reservoir: float
    admitted_total: int

    def to_dict(self) -> dict:
        return {
            "queues": dict(self.queues),
            "admittedLastMinute": dict(self.admitted_last_minute),
            "admitPerMinute": self.admit_per_minute,
            "budgets": dict(self.budgets),
            "reservoir": self.reservoir,
            "admittedTotal": self.admitted_total,
        }
