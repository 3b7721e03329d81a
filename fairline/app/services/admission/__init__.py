"""Admission engine package.

Exports the engine, its data models and the scheduler that drives it.
"""

from fairline.app.services.admission.engine import (
    DEFAULT_BUDGETS,
    AdmissionEngine,
    validate_budgets,
)
from fairline.app.services.admission.models import (
    AdmissionStats,
    ClassQueue,
    QueueEntry,
    SlidingWindow,
)
from fairline.app.services.admission.scheduler import AdmissionScheduler

__all__ = [
    "DEFAULT_BUDGETS",
    "AdmissionEngine",
    "AdmissionScheduler",
    "AdmissionStats",
    "ClassQueue",
    "QueueEntry",
    "SlidingWindow",
    "validate_budgets",
]
