"""Admission notifications for live subscribers."""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from fairline.app.core.logging import get_logger
from fairline.app.services.admission.models import QueueEntry
from fairline.app.services.events import EventOutbox, QueueEvent, now_ms

logger = get_logger(__name__)


@dataclass(eq=False)
class Subscription:
    """A live channel (WebSocket or SSE stream) waiting on one token."""
    key: str
    loop: asyncio.AbstractEventLoop
    messages: asyncio.Queue = field(default_factory=asyncio.Queue)


class AdmissionNotifier:
    """Engine callback that fans admissions out to subscribers and the outbox.

    ``on_admit`` runs inside an admission tick, possibly on another thread,
    so it only schedules work: messages are handed to each subscriber's
    loop with ``call_soon_threadsafe`` and the audit event goes to the
    outbox.
    """

    def __init__(self, outbox: Optional[EventOutbox] = None):
        self._outbox = outbox
        self._subscriptions: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str) -> Subscription:
        """Register a subscription; must be called from a running loop."""
        sub = Subscription(key=key, loop=asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.setdefault(key, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.key)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subscriptions[sub.key]

    def subscriber_count(self, key: Optional[str] = None) -> int:
        with self._lock:
            if key is not None:
                return len(self._subscriptions.get(key, ()))
            return sum(len(s) for s in self._subscriptions.values())

    def on_admit(self, entry: QueueEntry) -> None:
        message = {"type": "admit", "at": now_ms()}
        with self._lock:
            subs = list(self._subscriptions.get(entry.credential_key, ()))

        for sub in subs:
            try:
                sub.loop.call_soon_threadsafe(sub.messages.put_nowait, message)
            except RuntimeError:
                # Subscriber's loop is gone
                self.unsubscribe(sub)

        if self._outbox is not None:
            self._outbox.publish(
                QueueEvent(
                    type="admit",
                    queue_id=entry.queue_id,
                    traffic_class=entry.traffic_class,
                    region=entry.region,
                    joined_at=entry.joined_at,
                    position=0,
                    at=message["at"],
                )
            )
