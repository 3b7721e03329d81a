"""Queue event outbox and the JSON lines event log.

Request handlers and the admission callback never do I/O themselves. They
publish ``QueueEvent`` messages on the ``EventOutbox``; a background task
drains the outbox in batches and hands each batch to the configured sinks.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from fairline.app.core.logging import get_logger

logger = get_logger(__name__)

# Dispatcher shutdown marker
_STOP = object()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QueueEvent:
    """Something that happened in the waiting room."""
    type: str  # pow_start | pow_ok | join | resume | admit | throttle | budgets
    queue_id: Optional[str] = None
    traffic_class: Optional[str] = None
    region: Optional[str] = None
    joined_at: Optional[int] = None
    position: Optional[int] = None
    at: int = field(default_factory=now_ms)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"type": self.type, "t": self.at}
        if self.queue_id is not None:
            record["qid"] = self.queue_id
        if self.traffic_class is not None:
            record["bucket"] = self.traffic_class
        if self.region is not None:
            record["region"] = self.region
        if self.position is not None:
            record["position"] = self.position
        record.update(self.data)
        return record


class EventSink(ABC):
    """Destination for batches of queue events."""

    @abstractmethod
    async def handle(self, events: Sequence[QueueEvent]) -> None:
        pass

    async def start(self) -> None:
        """Acquire resources; called when the outbox starts."""

    async def close(self) -> None:
        """Release resources; called after the outbox drained."""


class EventLogWriter(EventSink):
    """Appends events as JSON lines to a file.

    Writes happen in the default executor so the event loop never blocks on
    disk I/O.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def handle(self, events: Sequence[QueueEvent]) -> None:
        lines = [json.dumps(e.to_record(), ensure_ascii=False) for e in events]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, lines)

    def _write_sync(self, lines: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")


class EventOutbox:
    """Bounded outbound channel between the core and the I/O sinks.

    ``publish`` may be called from any thread. Events published while the
    outbox is not running are dropped and counted.
    """

    def __init__(
        self,
        sinks: Optional[Sequence[EventSink]] = None,
        max_size: int = 10000,
        batch_size: int = 100,
    ):
        self.sinks: List[EventSink] = list(sinks or [])
        self.max_size = max_size
        self.batch_size = batch_size
        self.published = 0
        self.dropped = 0
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.max_size)
        for sink in self.sinks:
            await sink.start()
        self._task = asyncio.create_task(self._dispatch_loop())
        logger.debug(f"Event outbox started with {len(self.sinks)} sinks")

    async def stop(self) -> None:
        """Stop accepting events and deliver everything already queued before closing the sinks."""
        if self._task is None:
            return

        # New publishes are dropped from here on
        self._loop = None
        if not self._task.done():
            await self._queue.put(_STOP)
        await self._task
        self._task = None

        remaining = self._drain()
        self._queue = None
        if remaining:
            await self._deliver(remaining)

        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Failed to close event sink {type(sink).__name__}: {e}")

        logger.debug("Event outbox stopped")

    def publish(self, event: QueueEvent) -> None:
        loop = self._loop
        if loop is None:
            self.dropped += 1
            logger.debug(f"Event outbox not running, dropped '{event.type}' event")
            return
        try:
            loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed
            self.dropped += 1

    def _put(self, event: QueueEvent) -> None:
        if self._queue is None:
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(event)
            self.published += 1
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Event outbox full, dropped '{event.type}' event")

    def _drain(self) -> List[QueueEvent]:
        events: List[QueueEvent] = []
        if self._queue is None:
            return events
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if event is not _STOP:
                events.append(event)

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        while True:
            first = await self._queue.get()
            if first is _STOP:
                return
            batch = [first]
            stopping = False
            while len(batch) < self.batch_size:
                try:
                    event = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if event is _STOP:
                    stopping = True
                    break
                batch.append(event)
            await self._deliver(batch)
            if stopping:
                return

    async def _deliver(self, batch: List[QueueEvent]) -> None:
        for sink in self.sinks:
            try:
                await sink.handle(batch)
            except Exception as e:
                logger.error(
                    f"Event sink {type(sink).__name__} failed on {len(batch)} events: {e}"
                )
