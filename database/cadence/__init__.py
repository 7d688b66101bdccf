"""Repos de cadência."""

from .cadence_repo import (
    CadenceRepository,
    CadenceStepRepository,
    LeadContactRepository,
    MessageTemplateRepository,
)
from .event_repo import CadenceEventRepository, CadenceEventType, CadenceRunnerLogRepository
from .run_repo import LeadCadenceRunRepository, RunConflictError, RunNotFoundError

__all__ = [
    "CadenceRepository",
    "CadenceStepRepository",
    "LeadContactRepository",
    "MessageTemplateRepository",
    "CadenceEventRepository",
    "CadenceEventType",
    "CadenceRunnerLogRepository",
    "LeadCadenceRunRepository",
    "RunConflictError",
    "RunNotFoundError",
]
