"""Scoring rules: action points, professional levels and tool unlock gates.

Everything here is pure. The numbers live in :class:`ScoringPolicy` so that a
service (or a test) can swap in a different table, ratio or threshold without
touching the rules themselves.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import (
    AXES,
    ActionInput,
    ActionRecord,
    CompetencyScores,
    CompetencySnapshot,
    LevelProgress,
    ProfessionalLevel,
    utc_now,
)

DEFAULT_BASE_POINTS: Dict[str, int] = {
    "customer_meeting": 100,
    "prospect_qualification": 75,
    "value_proposition_delivery": 150,
    "roi_presentation": 200,
    "proposal_creation": 250,
    "deal_closure": 500,
    "referral_generation": 300,
    "case_study_development": 400,
}

DEFAULT_IMPACT_MULTIPLIERS: Dict[str, float] = {
    "low": 0.8,
    "medium": 1.0,
    "high": 1.5,
    "critical": 2.0,
}

DEFAULT_LEVELS: List[ProfessionalLevel] = [
    ProfessionalLevel(
        id="foundation",
        name="Customer Intelligence Foundation",
        description="Building fundamental customer analysis skills",
        required_points=0,
        max_points=1000,
    ),
    ProfessionalLevel(
        id="developing",
        name="Value Communication Developing",
        description="Developing value articulation capabilities",
        required_points=1000,
        max_points=2500,
    ),
    ProfessionalLevel(
        id="proficient",
        name="Sales Strategy Proficient",
        description="Proficient in systematic sales execution",
        required_points=2500,
        max_points=5000,
    ),
    ProfessionalLevel(
        id="advanced",
        name="Revenue Development Advanced",
        description="Advanced revenue generation expertise",
        required_points=5000,
        max_points=10000,
    ),
    ProfessionalLevel(
        id="expert",
        name="Market Execution Expert",
        description="Expert-level market execution capabilities",
        required_points=10000,
        max_points=20000,
    ),
    ProfessionalLevel(
        id="master",
        name="Revenue Intelligence Master",
        description="Master-level revenue intelligence expertise",
        required_points=20000,
        max_points=None,
    ),
]


class ToolGate(BaseModel):
    """A tool that opens once a single axis reaches its threshold."""

    model_config = ConfigDict(frozen=True)

    tool: str
    label: str
    axis: str
    # None means "use the policy-wide unlock threshold".
    threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)


DEFAULT_TOOL_GATES: List[ToolGate] = [
    ToolGate(tool="icp_analysis", label="ICP Analysis", axis="customer_analysis", threshold=0.0),
    ToolGate(tool="cost_calculator", label="Cost Calculator", axis="value_communication"),
    ToolGate(tool="business_case_builder", label="Business Case Builder", axis="sales_execution"),
]


class ScoringPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_points: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_BASE_POINTS))
    default_base_points: int = Field(default=50, ge=0)
    impact_multipliers: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_IMPACT_MULTIPLIERS))
    points_per_score_point: float = Field(default=10.0, gt=0.0)
    unlock_threshold: float = Field(default=70.0, ge=0.0, le=100.0)
    tool_gates: List[ToolGate] = Field(default_factory=lambda: list(DEFAULT_TOOL_GATES))
    levels: List[ProfessionalLevel] = Field(default_factory=lambda: list(DEFAULT_LEVELS))
    recent_action_retention: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def _check_tables(self) -> "ScoringPolicy":
        if not self.levels:
            raise ValueError("At least one professional level is required.")
        floors = [level.required_points for level in self.levels]
        if floors != sorted(floors) or len(set(floors)) != len(floors):
            raise ValueError("Level floors must be strictly ascending.")
        if floors[0] != 0:
            raise ValueError("The first professional level must start at 0 points.")
        if any(value < 0 for value in self.base_points.values()):
            raise ValueError("Base points cannot be negative.")
        if any(value < 0 for value in self.impact_multipliers.values()):
            raise ValueError("Impact multipliers cannot be negative.")
        for gate in self.tool_gates:
            if gate.axis not in AXES:
                raise ValueError(f"Tool gate {gate.tool!r} references unknown axis {gate.axis!r}.")
        return self

    def threshold_for(self, gate: ToolGate) -> float:
        return self.unlock_threshold if gate.threshold is None else gate.threshold


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ScoringRules:
    """Pure scoring functions bound to a policy."""

    def __init__(self, policy: Optional[ScoringPolicy] = None) -> None:
        self.policy = policy or ScoringPolicy()

    def points_for(self, action_type: str, impact_level: str) -> int:
        # Unknown types fall back to the default base so the honor-system flow never blocks.
        base = self.policy.base_points.get(action_type.strip().lower(), self.policy.default_base_points)
        multiplier = self.policy.impact_multipliers.get(impact_level, 1.0)
        return max(0, _round_half_up(base * multiplier))

    def level_for_points(self, total_points: int) -> ProfessionalLevel:
        for level in reversed(self.policy.levels):
            if total_points >= level.required_points:
                return level
        return self.policy.levels[0]

    def level_progress(self, total_points: int) -> LevelProgress:
        points = max(0, total_points)
        current = self.level_for_points(points)
        index = self.policy.levels.index(current)
        if index == len(self.policy.levels) - 1:
            return LevelProgress(
                current=current,
                next=None,
                percent=100.0,
                points_to_next=0,
                points_in_level=points - current.required_points,
                points_needed_for_level=0,
            )
        next_level = self.policy.levels[index + 1]
        in_level = points - current.required_points
        needed = next_level.required_points - current.required_points
        return LevelProgress(
            current=current,
            next=next_level,
            percent=min(100.0, (in_level / needed) * 100.0),
            points_to_next=next_level.required_points - points,
            points_in_level=in_level,
            points_needed_for_level=needed,
        )

    def score_delta_for(self, points: int) -> float:
        return points / self.policy.points_per_score_point

    def points_for_score_delta(self, delta: float) -> int:
        return int(math.ceil(max(0.0, delta) * self.policy.points_per_score_point))

    @staticmethod
    def clamp_score(value: float) -> float:
        return max(0.0, min(100.0, value))

    def gate_open(self, gate: ToolGate, scores: CompetencyScores) -> bool:
        return scores.get(gate.axis) >= self.policy.threshold_for(gate)

    def evaluate_unlocks(
        self,
        scores: CompetencyScores,
        previous: Optional[Mapping[str, bool]] = None,
    ) -> Dict[str, bool]:
        """Recompute every gate; a gate that was open stays open."""
        previous = previous or {}
        unlocks: Dict[str, bool] = {}
        for gate in self.policy.tool_gates:
            unlocks[gate.tool] = bool(previous.get(gate.tool)) or self.gate_open(gate, scores)
        for tool, state in previous.items():
            if tool not in unlocks:
                unlocks[tool] = bool(state)
        return unlocks

    @staticmethod
    def newly_unlocked(before: Mapping[str, bool], after: Mapping[str, bool]) -> List[str]:
        return [tool for tool, state in after.items() if state and not before.get(tool)]

    def build_action_record(self, action: ActionInput, at: Optional[datetime] = None) -> ActionRecord:
        return ActionRecord(
            type=action.type,
            category=action.category,
            description=action.description,
            impact_level=action.impact,
            points_awarded=self.points_for(action.type, action.impact),
            timestamp=at or utc_now(),
            verified=True,
            evidence_link=action.evidence_link,
            tags=tuple(action.tags),
        )

    def apply_action(self, snapshot: CompetencySnapshot, record: ActionRecord) -> CompetencySnapshot:
        scores = snapshot.current_scores
        if record.category in AXES:
            raised = scores.get(record.category) + self.score_delta_for(record.points_awarded)
            scores = scores.with_axis(record.category, self.clamp_score(raised))
        actions = [record, *snapshot.recent_actions][: self.policy.recent_action_retention]
        return self._finalize(
            snapshot,
            current_scores=scores,
            total_points=snapshot.total_points + record.points_awarded,
            recent_actions=actions,
            last_action_date=record.timestamp,
        )

    def apply_achievement(
        self,
        snapshot: CompetencySnapshot,
        achievement_id: str,
        bonus_points: int,
    ) -> CompetencySnapshot:
        if achievement_id in snapshot.achievement_ids:
            return snapshot
        return self._finalize(
            snapshot,
            achievement_ids=[*snapshot.achievement_ids, achievement_id],
            total_points=snapshot.total_points + max(0, bonus_points),
        )

    def apply_assessment(
        self,
        snapshot: CompetencySnapshot,
        scores: CompetencyScores,
        at: Optional[datetime] = None,
    ) -> CompetencySnapshot:
        clamped = CompetencyScores(**{axis: self.clamp_score(scores.get(axis)) for axis in AXES})
        return self._finalize(
            snapshot,
            current_scores=clamped,
            last_assessment_date=at or utc_now(),
        )

    def _finalize(self, snapshot: CompetencySnapshot, **changes) -> CompetencySnapshot:
        total_points = max(snapshot.total_points, changes.pop("total_points", snapshot.total_points))
        scores = changes.get("current_scores", snapshot.current_scores)
        unlocks = self.evaluate_unlocks(scores, snapshot.tool_unlocks)
        return snapshot.model_copy(
            update={**changes, "total_points": total_points, "tool_unlocks": unlocks},
            deep=True,
        )


__all__ = [
    "DEFAULT_BASE_POINTS",
    "DEFAULT_IMPACT_MULTIPLIERS",
    "DEFAULT_LEVELS",
    "DEFAULT_TOOL_GATES",
    "ScoringPolicy",
    "ScoringRules",
    "ToolGate",
]
