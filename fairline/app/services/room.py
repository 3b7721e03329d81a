"""Wiring of the waiting room components.

``WaitingRoom`` builds the challenge gate, credential service, admission
engine and the outbound event pipeline from ``Settings``. The FastAPI app
keeps one instance on ``app.state.room``.
"""

import time
from typing import Callable

from fairline.app.core.config import Settings
from fairline.app.core.logging import get_logger
from fairline.app.core.security import PositionAttestor, derive_position_secret
from fairline.app.services.admission import AdmissionEngine, AdmissionScheduler
from fairline.app.services.audit import AuditSink
from fairline.app.services.challenge import ChallengeGate
from fairline.app.services.credentials import CredentialService
from fairline.app.services.events import EventLogWriter, EventOutbox
from fairline.app.services.notifier import AdmissionNotifier

logger = get_logger(__name__)


class WaitingRoom:
    """All waiting room state for one process."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.settings = settings

        self.gate = ChallengeGate(
            difficulty=settings.pow_difficulty,
            ttl_seconds=settings.challenge_ttl_seconds,
            clock=clock,
        )
        self.credentials = CredentialService(
            attestor=PositionAttestor(
                derive_position_secret(settings.position_secret),
                version=settings.queue_version,
            ),
            queue_secret=settings.queue_jwt_secret,
            proof_secret=settings.pow_jwt_secret,
            queue_ttl_seconds=settings.queue_token_ttl_seconds,
            proof_ttl_seconds=settings.proof_ttl_seconds,
        )

        self.audit = AuditSink(
            url=settings.audit_sink_url,
            token=settings.audit_sink_token,
            buffer_size=settings.audit_buffer_size,
            flush_interval=settings.audit_flush_interval,
            max_retries=settings.audit_max_retries,
            retry_delay=settings.audit_retry_delay,
            timeout=settings.audit_timeout,
            dead_letter_path=settings.audit_dead_letter_path,
        )
        self.outbox = EventOutbox(sinks=[EventLogWriter(settings.event_log_path), self.audit])
        self.notifier = AdmissionNotifier(self.outbox)

        self.engine = AdmissionEngine(
            admit_per_minute=settings.admit_per_minute,
            budgets=settings.budgets,
            on_admit=self.notifier.on_admit,
            clock=clock,
        )
        self.scheduler = AdmissionScheduler(
            self.engine,
            self.gate,
            tick_interval=settings.tick_interval_seconds,
            sweep_interval=settings.sweep_interval_seconds,
        )

    @property
    def queue_version(self) -> str:
        return self.settings.queue_version

    async def start(self) -> None:
        await self.outbox.start()
        if self.settings.scheduler_enabled:
            await self.scheduler.start()
        logger.info(
            "Waiting room started",
            extra={
                "admit_per_minute": self.engine.admit_per_minute,
                "budgets": self.engine.budgets,
                "pow_difficulty": self.gate.difficulty,
                "audit_enabled": self.audit.enabled,
            },
        )

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.outbox.stop()
        logger.info("Waiting room stopped")
