"""Off-system audit mirror for join and admit events.

This module mirrors queue membership changes to an external ledger
endpoint over HTTP. Records carry only a hash of the participant identity
and join time, never the queue token itself.
"""

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import httpx

from fairline.app.core.logging import get_logger
from fairline.app.core.security import user_hash
from fairline.app.services.events import EventSink, QueueEvent

logger = get_logger(__name__)

AUDITED_EVENTS = {"join": 1, "admit": 2}


@dataclass
class AuditRecord:
    """One mirrored queue event."""
    userHash: str
    evType: int
    position: int
    timestamp: int


class AuditSink(EventSink):
    """Batched HTTP audit sink.

    Features:
    - Batch buffering: posts up to ``buffer_size`` records at once
    - Timer-based flush every ``flush_interval`` seconds
    - Retry with exponential backoff, then a dead letter file
    - Disabled (a no-op) when no URL is configured

    Example:
        sink = AuditSink(url="https://ledger.example/events")
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()
    """

    def __init__(
        self,
        url: str = "",
        token: str = "",
        buffer_size: int = 50,
        flush_interval: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 5.0,
        dead_letter_path: str | Path = "logs/audit-dead-letter.jsonl",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.dead_letter_path = Path(dead_letter_path)

        self._client = client
        self._owns_client = client is None
        self._buffer: List[AuditRecord] = []
        self._buffer_lock = asyncio.Lock()
        self._flush_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "url": self.url,
            "pending": len(self._buffer),
            "sent": self.sent,
            "failed": self.failed,
        }

    async def start(self) -> None:
        if not self.enabled or self._flush_task is not None:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._shutdown_event.clear()
        self._flush_task = asyncio.create_task(self._flush_loop())
        logger.info(f"Audit sink enabled: {self.url}")

    async def close(self) -> None:
        """Stop the flush loop and deliver what is still buffered."""
        self._shutdown_event.set()
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        await self.flush()

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def handle(self, events: Sequence[QueueEvent]) -> None:
        if not self.enabled:
            return

        records = [
            AuditRecord(
                userHash=user_hash(e.queue_id, e.joined_at),
                evType=AUDITED_EVENTS[e.type],
                position=e.position or 0,
                timestamp=e.at,
            )
            for e in events
            if e.type in AUDITED_EVENTS and e.queue_id is not None and e.joined_at is not None
        ]
        if not records:
            return

        async with self._buffer_lock:
            self._buffer.extend(records)
            buffer_count = len(self._buffer)

        if buffer_count >= self.buffer_size:
            await self.flush()

    async def _flush_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.flush_interval,
                )
            except asyncio.TimeoutError:
                pass

            if not self._shutdown_event.is_set():
                await self.flush()

    async def flush(self) -> None:
        async with self._buffer_lock:
            if not self._buffer:
                return
            records = self._buffer[:]
            self._buffer = []

        await self._post_with_retry(records)

    async def _post_with_retry(self, records: List[AuditRecord]) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        body = {"records": [asdict(r) for r in records]}

        last_error: Optional[Exception] = None
        delay = self.retry_delay

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.post(self.url, json=body, headers=headers)
                response.raise_for_status()
                self.sent += len(records)
                logger.debug(f"Mirrored {len(records)} audit records", extra={"attempt": attempt})
                return
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(
                    f"Audit post failed (attempt {attempt}/{self.max_retries}): {e}",
                    extra={"attempt": attempt},
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(delay)
                    delay *= 2

        self.failed += len(records)
        logger.error(
            f"Audit post failed after {self.max_retries} attempts: {last_error}. "
            f"Writing {len(records)} records to dead letter file."
        )
        await self._write_dead_letter(records)

    async def _write_dead_letter(self, records: List[AuditRecord]) -> None:
        def _write_sync() -> None:
            self.dead_letter_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.dead_letter_path, "a", encoding="utf-8") as f:
                for record in records:
                    line = {"failedAt": datetime.now().isoformat(), **asdict(record)}
                    f.write(json.dumps(line) + "\n")

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _write_sync)
        except OSError as e:
            logger.critical(
                f"Failed to write audit dead letter file: {e}. "
                f"{len(records)} audit records are lost!"
            )
