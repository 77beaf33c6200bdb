"""Competency scoring and synchronization engine."""

from .config import Settings, SyncConfig, get_settings
from .errors import CompetencyError, DeliveryError, NotFoundError, RetryExhaustedError, ValidationError
from .models import ActionInput, ActionRecord, CompetencyScores, CompetencySnapshot
from .persistence import RemotePersistenceAdapter
from .scoring import ScoringPolicy, ScoringRules
from .service import CompetencySyncService

__all__ = [
    "ActionInput",
    "ActionRecord",
    "CompetencyError",
    "CompetencyScores",
    "CompetencySnapshot",
    "CompetencySyncService",
    "DeliveryError",
    "NotFoundError",
    "RemotePersistenceAdapter",
    "RetryExhaustedError",
    "ScoringPolicy",
    "ScoringRules",
    "Settings",
    "SyncConfig",
    "ValidationError",
    "get_settings",
]
