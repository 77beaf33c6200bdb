"""Competency snapshot, action record and pending update models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

AxisKey = Literal["customer_analysis", "value_communication", "sales_execution"]
ActionCategory = Literal["customer_analysis", "value_communication", "sales_execution", "general"]
ImpactLevel = Literal["low", "medium", "high", "critical"]

AXES: Tuple[str, ...] = ("customer_analysis", "value_communication", "sales_execution")
AXIS_LABELS: Dict[str, str] = {
    "customer_analysis": "Customer Analysis",
    "value_communication": "Value Communication",
    "sales_execution": "Sales Execution",
}
GENERAL_CATEGORY = "general"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CompetencyScores(BaseModel):
    """The three competency axes, each bounded to [0, 100]."""

    customer_analysis: float = Field(default=0.0, ge=0.0, le=100.0)
    value_communication: float = Field(default=0.0, ge=0.0, le=100.0)
    sales_execution: float = Field(default=0.0, ge=0.0, le=100.0)

    def get(self, axis: str) -> float:
        if axis not in AXES:
            raise KeyError(axis)
        return float(getattr(self, axis))

    def with_axis(self, axis: str, value: float) -> "CompetencyScores":
        if axis not in AXES:
            raise KeyError(axis)
        return self.model_validate({**self.as_dict(), axis: value})

    def as_dict(self) -> Dict[str, float]:
        return {axis: self.get(axis) for axis in AXES}

    def average(self) -> float:
        return sum(self.as_dict().values()) / len(AXES)


class ActionInput(BaseModel):
    """Caller-supplied description of a real-world action."""

    type: str = Field(..., min_length=1, max_length=64)
    category: ActionCategory
    description: str = Field(default="", max_length=2000)
    impact: ImpactLevel = "medium"
    evidence_link: Optional[str] = Field(default=None, max_length=512)
    tags: List[str] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Action type cannot be blank.")
        return normalized

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, value: List[str]) -> List[str]:
        return [tag.strip() for tag in value if tag and tag.strip()]


class ActionRecord(BaseModel):
    """Immutable fact describing an accepted action and the points it earned."""

    model_config = ConfigDict(frozen=True)

    action_id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex[:12]}")
    type: str
    category: ActionCategory
    description: str = ""
    impact_level: ImpactLevel = "medium"
    points_awarded: int = Field(ge=0)
    timestamp: datetime = Field(default_factory=utc_now)
    # Honor system: accepted actions are always verified.
    verified: bool = True
    evidence_link: Optional[str] = None
    tags: Tuple[str, ...] = ()


class CompetencySnapshot(BaseModel):
    """Aggregate competency state for one subject."""

    subject_id: str
    baseline_scores: CompetencyScores = Field(default_factory=CompetencyScores)
    current_scores: CompetencyScores = Field(default_factory=CompetencyScores)
    total_points: int = Field(default=0, ge=0)
    tool_unlocks: Dict[str, bool] = Field(default_factory=dict)
    achievement_ids: List[str] = Field(default_factory=list)
    recent_actions: List[ActionRecord] = Field(default_factory=list)
    last_action_date: Optional[datetime] = None
    last_assessment_date: Optional[datetime] = None

    @field_validator("achievement_ids")
    @classmethod
    def _dedupe_achievements(cls, value: List[str]) -> List[str]:
        seen: Dict[str, None] = {}
        for achievement_id in value:
            trimmed = achievement_id.strip()
            if trimmed:
                seen.setdefault(trimmed, None)
        return list(seen)


class SnapshotFields(BaseModel):
    """Mutable snapshot fields pushed by a reconciling write."""

    current_scores: CompetencyScores
    total_points: int = Field(ge=0)
    tool_unlocks: Dict[str, bool] = Field(default_factory=dict)
    achievement_ids: List[str] = Field(default_factory=list)
    last_action_date: Optional[datetime] = None
    last_assessment_date: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: CompetencySnapshot) -> "SnapshotFields":
        return cls(
            current_scores=snapshot.current_scores.model_copy(),
            total_points=snapshot.total_points,
            tool_unlocks=dict(snapshot.tool_unlocks),
            achievement_ids=list(snapshot.achievement_ids),
            last_action_date=snapshot.last_action_date,
            last_assessment_date=snapshot.last_assessment_date,
        )


class AchievementUnlock(BaseModel):
    achievement_id: str = Field(..., min_length=1, max_length=128)
    bonus_points: int = Field(default=0, ge=0)
    unlocked_at: datetime = Field(default_factory=utc_now)


class ActionUpdate(BaseModel):
    kind: Literal["action"] = "action"
    record: ActionRecord
    attempt: int = Field(default=0, ge=0)
    enqueued_at: datetime = Field(default_factory=utc_now)


class AchievementUpdate(BaseModel):
    kind: Literal["achievement"] = "achievement"
    unlock: AchievementUnlock
    attempt: int = Field(default=0, ge=0)
    enqueued_at: datetime = Field(default_factory=utc_now)


DeliverableUpdate = Annotated[Union[ActionUpdate, AchievementUpdate], Field(discriminator="kind")]


class RetryUpdate(BaseModel):
    """A previously failed update waiting for another delivery attempt."""

    kind: Literal["retry_action"] = "retry_action"
    target: DeliverableUpdate
    attempt: int = Field(default=1, ge=1)
    last_error: Optional[str] = None
    enqueued_at: datetime = Field(default_factory=utc_now)


PendingUpdate = Annotated[Union[ActionUpdate, AchievementUpdate, RetryUpdate], Field(discriminator="kind")]


class ProfessionalLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    required_points: int = Field(ge=0)
    max_points: Optional[int] = None


class LevelProgress(BaseModel):
    current: ProfessionalLevel
    next: Optional[ProfessionalLevel] = None
    percent: float = Field(ge=0.0, le=100.0)
    points_to_next: int = Field(default=0, ge=0)
    points_in_level: int = Field(default=0, ge=0)
    points_needed_for_level: int = Field(default=0, ge=0)


class RecordActionResult(BaseModel):
    points_awarded: int
    record: ActionRecord
    snapshot: CompetencySnapshot
    level: ProfessionalLevel
    new_unlocks: List[str] = Field(default_factory=list)


class AchievementResult(BaseModel):
    status: Literal["unlocked", "already_unlocked"]
    achievement_id: str
    bonus_points: int = 0
    total_achievements: int = 0
    snapshot: CompetencySnapshot


class CacheStats(BaseModel):
    cached_subjects: int = 0
    pending_update_count: int = 0
    dirty_entry_count: int = 0


__all__ = [
    "AXES",
    "AXIS_LABELS",
    "AchievementResult",
    "AchievementUnlock",
    "AchievementUpdate",
    "ActionCategory",
    "ActionInput",
    "ActionRecord",
    "ActionUpdate",
    "AxisKey",
    "CacheStats",
    "CompetencyScores",
    "CompetencySnapshot",
    "DeliverableUpdate",
    "GENERAL_CATEGORY",
    "ImpactLevel",
    "LevelProgress",
    "PendingUpdate",
    "ProfessionalLevel",
    "RecordActionResult",
    "RetryUpdate",
    "SnapshotFields",
    "utc_now",
]
