"""Class-based admission engine.

Participants wait in one FIFO queue per traffic class. Once per time unit
``tick`` admits a number of them derived from the global rate, choosing
between classes by how much of each class's budget is left over the
trailing window.
"""

import math
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Set

from fairline.app.core.logging import get_log_context, get_logger
from fairline.app.services.admission.models import (
    AdmissionStats,
    ClassQueue,
    QueueEntry,
    SlidingWindow,
)

logger = get_logger(__name__)

DEFAULT_BUDGETS = {"vip": 0.2, "general": 0.8}
WINDOW_SECONDS = 60

# Float slack for reservoir and budget flooring (0.2 * 5 must admit one)
_EPSILON = 1e-9

AdmitCallback = Callable[[QueueEntry], None]


def validate_budgets(budgets: Mapping[str, float], classes: Optional[tuple] = None) -> Dict[str, float]:
    """Validate a class budget split.

    Args:
        budgets: Mapping of class name to share of the global rate
        classes: Expected class names; None accepts any non-empty set

    Returns:
        The budgets as a plain dict, preserving order

    Raises:
        ValueError: Unknown/missing classes, shares outside [0, 1], or a
            total different from 1
    """
    if not budgets:
        raise ValueError("budgets must name at least one class")
    if classes is not None and set(budgets) != set(classes):
        raise ValueError(f"budgets must name exactly the classes {list(classes)}")
    for cls, share in budgets.items():
        if not 0.0 <= share <= 1.0:
            raise ValueError(f"budget for '{cls}' must be within [0, 1]")
    total = sum(budgets.values())
    if abs(total - 1.0) > 1e-6:
        raise ValueError(f"budgets must sum to 1 (got {total:.6f})")
    return {cls: float(share) for cls, share in budgets.items()}


class AdmissionEngine:
    """Owns the class queues, the admitted set and the pacing state.

    All state is guarded by one re-entrant lock. ``tick`` holds it for its
    whole duration so ticks never overlap, and every other operation is
    safe to call concurrently with a tick.

    Usage:
        engine = AdmissionEngine(admit_per_minute=120, on_admit=notify)
        engine.enqueue(QueueEntry(...))
        engine.tick()  # once per second, from a scheduler
    """

    def __init__(
        self,
        admit_per_minute: float = 120,
        budgets: Optional[Mapping[str, float]] = None,
        on_admit: Optional[AdmitCallback] = None,
        clock: Callable[[], float] = time.time,
        window_seconds: int = WINDOW_SECONDS,
    ):
        """Initialize the engine.

        Args:
            admit_per_minute: Global admission rate
            budgets: Share of the rate per class; key order is the
                tie-break order
            on_admit: Called once per admitted entry; must not block
            clock: Returns epoch seconds; one time unit is one second
            window_seconds: Length of the budget accounting window
        """
        budgets = validate_budgets(budgets if budgets is not None else DEFAULT_BUDGETS)
        if admit_per_minute < 0:
            raise ValueError("admit_per_minute must not be negative")

        self.classes = tuple(budgets)
        self._budgets = budgets
        self._admit_per_minute = float(admit_per_minute)
        self._on_admit = on_admit
        self._clock = clock

        self._queues: Dict[str, ClassQueue] = {c: ClassQueue(c) for c in self.classes}
        self._admitted: Set[str] = set()
        self._admitted_total = 0
        self._window = SlidingWindow(self.classes, size=window_seconds)
        self._reservoir = 0.0
        self._lock = threading.RLock()

    @property
    def admit_per_minute(self) -> float:
        return self._admit_per_minute

    @property
    def budgets(self) -> Dict[str, float]:
        return dict(self._budgets)

    def set_on_admit(self, callback: Optional[AdmitCallback]) -> None:
        with self._lock:
            self._on_admit = callback

    def set_rate(self, admit_per_minute: float) -> None:
        """Replace the global rate, effective from the next tick."""
        if admit_per_minute < 0:
            raise ValueError("admit_per_minute must not be negative")
        with self._lock:
            self._admit_per_minute = float(admit_per_minute)
        logger.info(f"Admission rate set to {admit_per_minute}/min")

    def set_budgets(self, budgets: Mapping[str, float]) -> None:
        """Replace the class split, effective from the next tick."""
        validated = validate_budgets(budgets, self.classes)
        with self._lock:
            # Keep configuration order stable for tie-breaks
            self._budgets = {c: validated[c] for c in self.classes}
        logger.info(f"Admission budgets set to {self._budgets}")

    def enqueue(self, entry: QueueEntry) -> int:
        """Append an entry to the tail of its class queue.

        Returns:
            The entry's 1-based position

        Raises:
            ValueError: Unknown class or key already tracked
        """
        with self._lock:
            queue = self._queues.get(entry.traffic_class)
            if queue is None:
                raise ValueError(f"unknown traffic class '{entry.traffic_class}'")
            if self.has_token(entry.credential_key):
                raise ValueError("credential key is already tracked")
            queue.append(entry)
            return len(queue)

    def has_token(self, key: str) -> bool:
        with self._lock:
            if key in self._admitted:
                return True
            return any(key in q for q in self._queues.values())

    def position(self, key: str) -> Optional[int]:
        """0 if admitted, 1-based queue position, or None if unknown."""
        with self._lock:
            if key in self._admitted:
                return 0
            for queue in self._queues.values():
                pos = queue.position(key)
                if pos is not None:
                    return pos
            return None

    def estimate_wait_seconds(self, key: str) -> Optional[int]:
        """Rough ETA assuming the whole global rate serves this position.

        The estimate ignores class budgets, so it is optimistic for classes
        with a small share.
        """
        with self._lock:
            pos = self.position(key)
            if pos is None:
                return None
            if pos == 0:
                return 0
            per_second = self._admit_per_minute / 60.0
            if per_second <= 0:
                return None
            return math.ceil(pos / per_second)

    def tick(self) -> List[QueueEntry]:
        """Admit the entries due in this time unit.

        Returns:
            Entries admitted by this tick, in admission order
        """
        with self._lock:
            self._reservoir += self._admit_per_minute / 60.0
            to_admit = math.floor(self._reservoir + _EPSILON)
            if to_admit <= 0:
                return []
            self._reservoir = max(0.0, self._reservoir - to_admit)

            now = int(self._clock())
            counts = self._window.counts(now)
            admitted: List[QueueEntry] = []

            while to_admit > 0:
                chosen = self._choose_class(counts)
                if chosen is None:
                    break

                entry = self._queues[chosen].pop_head()
                self._admitted.add(entry.credential_key)
                self._admitted_total += 1
                self._window.record(chosen, now)
                counts[chosen] += 1
                admitted.append(entry)

                self._notify(entry)
                to_admit -= 1

            return admitted

    def _choose_class(self, counts: Dict[str, int]) -> Optional[str]:
        """Non-empty class with the most budget left; ties go to config order."""
        rate = self._admit_per_minute
        remaining = {
            c: max(0, math.floor(self._budgets[c] * rate + _EPSILON) - counts.get(c, 0))
            for c in self.classes
        }
        # sorted() is stable, so equal budgets keep configuration order
        for cls in sorted(self.classes, key=lambda c: -remaining[c]):
            if len(self._queues[cls]):
                return cls
        return None

    def _notify(self, entry: QueueEntry) -> None:
        if self._on_admit is None:
            return
        try:
            self._on_admit(entry)
        except Exception as e:
            # A failing notification never rolls back the admission
            logger.warning(
                f"Admission callback failed: {e}",
                extra=get_log_context(
                    queue_id=entry.queue_id,
                    traffic_class=entry.traffic_class,
                    event="admit",
                ),
            )

    def purge_expired(self) -> List[QueueEntry]:
        """Drop queued entries whose credential has expired.

        Returns:
            The removed entries
        """
        now = self._clock()
        removed: List[QueueEntry] = []
        with self._lock:
            for queue in self._queues.values():
                removed.extend(
                    queue.remove_where(
                        lambda e: e.expires_at is not None and e.expires_at <= now
                    )
                )
        if removed:
            logger.info(f"Purged {len(removed)} queue entries with expired credentials")
        return removed

    def get_stats(self) -> AdmissionStats:
        with self._lock:
            return AdmissionStats(
                queues={c: len(q) for c, q in self._queues.items()},
                admitted_last_minute=self._window.counts(int(self._clock())),
                admit_per_minute=self._admit_per_minute,
                budgets=dict(self._budgets),
                reservoir=self._reservoir,
                admitted_total=self._admitted_total,
            )
