"""Periodic admission ticks and expiry sweeps."""

import asyncio
import time
from typing import Optional

from fairline.app.core.logging import get_logger
from fairline.app.services.admission.engine import AdmissionEngine
from fairline.app.services.challenge import ChallengeGate

logger = get_logger(__name__)


class AdmissionScheduler:
    """Drives ``AdmissionEngine.tick`` from a background task.

    Ticks run one after another on the event loop, so they never overlap.
    Every ``sweep_interval`` seconds the scheduler also drops expired
    challenges and queue entries whose credentials have expired.

    Usage:
        scheduler = AdmissionScheduler(engine, gate)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: AdmissionEngine,
        gate: Optional[ChallengeGate] = None,
        tick_interval: float = 1.0,
        sweep_interval: float = 30.0,
    ):
        self._engine = engine
        self._gate = gate
        self._tick_interval = tick_interval
        self._sweep_interval = sweep_interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._last_sweep = time.monotonic()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Admission scheduler already running")
            return

        self._stop_event.clear()
        self._last_sweep = time.monotonic()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started admission scheduler (tick: {self._tick_interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Admission scheduler did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped admission scheduler")

    def run_once(self) -> None:
        """One tick, plus a sweep when one is due."""
        admitted = self._engine.tick()
        self.ticks += 1
        if admitted:
            logger.debug(f"Tick admitted {len(admitted)} participants")

        if time.monotonic() - self._last_sweep >= self._sweep_interval:
            self._last_sweep = time.monotonic()
            self.sweep()

    def sweep(self) -> None:
        if self._gate is not None:
            self._gate.sweep_expired()
        self._engine.purge_expired()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Error during admission tick: {e}")

            # Fixed-period schedule; a slow tick shortens the next wait
            next_tick += self._tick_interval
            timeout = max(0.0, next_tick - loop.time())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
