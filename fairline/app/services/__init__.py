"""Services package for the waiting room.

This package provides:
- Admission engine with budgeted, paced class queues
- Proof-of-work challenge gate
- Queue and proof credentials
- Outbound event pipeline (event log, audit mirror, live notifications)
"""

from fairline.app.services.admission import AdmissionEngine, AdmissionScheduler, QueueEntry
from fairline.app.services.audit import AuditSink
from fairline.app.services.challenge import Challenge, ChallengeGate
from fairline.app.services.credentials import CredentialService, ProofCredential, QueueCredential
from fairline.app.services.events import EventLogWriter, EventOutbox, QueueEvent
from fairline.app.services.notifier import AdmissionNotifier
from fairline.app.services.room import WaitingRoom

__all__ = [
    "AdmissionEngine",
    "AdmissionNotifier",
    "AdmissionScheduler",
    "AuditSink",
    "Challenge",
    "ChallengeGate",
    "CredentialService",
    "EventLogWriter",
    "EventOutbox",
    "ProofCredential",
    "QueueCredential",
    "QueueEntry",
    "QueueEvent",
    "WaitingRoom",
]
