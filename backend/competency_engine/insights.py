"""Read-only insights, recommendations and development plans derived from a snapshot."""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from .models import AXES, AXIS_LABELS, ActionRecord, CompetencyScores, CompetencySnapshot, LevelProgress
from .scoring import ScoringRules

InsightType = Literal["positive", "opportunity", "milestone"]
Priority = Literal["high", "medium", "low"]

POSITIVE_IMPROVEMENT = 10.0
OPPORTUNITY_IMPROVEMENT = 5.0
HIGH_PRIORITY_BELOW = 50.0

AXIS_FOCUS_TOOLS: Dict[str, str] = {
    "customer_analysis": "ICP Analysis deep-dives",
    "value_communication": "Cost Calculator methodology",
    "sales_execution": "Business Case Builder framework",
}


class Insight(BaseModel):
    type: InsightType
    category: str
    title: str
    message: str
    impact: Literal["high", "medium", "low"] = "medium"


class Recommendation(BaseModel):
    category: str
    priority: Priority
    action: str
    description: str
    estimated_time: str = "2-4 hours"
    potential_points: int = Field(ge=0)
    score_gap: float = Field(ge=0.0)


class InsightBundle(BaseModel):
    subject_id: str
    improvements: Dict[str, float]
    weakest_axis: str
    focus_area: str
    overall_score: int
    insights: List[Insight] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    level_progress: LevelProgress


class PlanActivity(BaseModel):
    type: Literal["platform_engagement", "real_world_action"]
    title: str
    description: str
    estimated_time: str
    points_potential: int = Field(ge=0)
    category: str


class PlanObjective(BaseModel):
    category: str
    target: str
    current_score: float
    target_score: float
    priority: Priority = "high"


class PlanMilestone(BaseModel):
    type: Literal["level_progression"] = "level_progression"
    title: str
    description: str
    target_points: int
    current_points: int
    estimated_timeframe: str = "2-4 weeks"


class LevelProjection(BaseModel):
    will_advance: bool
    current_level: str
    potential_level: str
    progress_to_next: LevelProgress


class PlanOutcome(BaseModel):
    total_points_gain: int = 0
    projected_scores: CompetencyScores
    score_deltas: Dict[str, float] = Field(default_factory=dict)
    tool_unlocks: List[str] = Field(default_factory=list)
    level_projection: LevelProjection


class DevelopmentPlan(BaseModel):
    subject_id: str
    timeframe: str
    objectives: List[PlanObjective] = Field(default_factory=list)
    activities: List[PlanActivity] = Field(default_factory=list)
    milestones: List[PlanMilestone] = Field(default_factory=list)
    estimated_outcome: PlanOutcome


class ActionStatistics(BaseModel):
    total_actions: int = 0
    total_points: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_impact: Dict[str, int] = Field(default_factory=dict)
    average_points_per_action: int = 0


DEFAULT_ACTIVITY_CATALOG: List[PlanActivity] = [
    PlanActivity(
        type="platform_engagement",
        title="Complete ICP Analysis Deep-Dive",
        description="Comprehensive customer intelligence framework mastery",
        estimated_time="2 hours",
        points_potential=90,
        category="customer_analysis",
    ),
    PlanActivity(
        type="platform_engagement",
        title="Master Buyer Persona Framework",
        description="Advanced stakeholder psychology and communication",
        estimated_time="3 hours",
        points_potential=275,
        category="value_communication",
    ),
    PlanActivity(
        type="real_world_action",
        title="Apply ICP Framework to 3 Prospects",
        description="Real-world application of customer analysis skills",
        estimated_time="4 hours",
        points_potential=300,
        category="customer_analysis",
    ),
    PlanActivity(
        type="real_world_action",
        title="Deliver ROI Presentation to Prospect",
        description="Practice value communication methodology",
        estimated_time="2 hours",
        points_potential=200,
        category="value_communication",
    ),
]


class InsightGenerator:
    """Pure read-side analysis; safe to call for speculative previews."""

    def __init__(self, rules: Optional[ScoringRules] = None) -> None:
        self.rules = rules or ScoringRules()

    @property
    def threshold(self) -> float:
        return self.rules.policy.unlock_threshold

    def generate_insights(self, snapshot: CompetencySnapshot) -> InsightBundle:
        current = snapshot.current_scores
        baseline = snapshot.baseline_scores
        improvements = {axis: current.get(axis) - baseline.get(axis) for axis in AXES}

        # Ties go to the first axis in declaration order.
        weakest = min(AXES, key=current.get)

        insights: List[Insight] = []
        recommendations: List[Recommendation] = []
        for axis in AXES:
            label = AXIS_LABELS[axis]
            improvement = improvements[axis]
            if improvement > POSITIVE_IMPROVEMENT:
                insights.append(
                    Insight(
                        type="positive",
                        category=axis,
                        title=f"Strong Progress in {label}",
                        message=f"You've improved {improvement:.0f} points since your baseline assessment.",
                        impact="high",
                    )
                )
            elif improvement < OPPORTUNITY_IMPROVEMENT:
                insights.append(
                    Insight(
                        type="opportunity",
                        category=axis,
                        title=f"Development Opportunity: {label}",
                        message=f"Consider focusing more attention on {label.lower()} skills.",
                        impact="medium",
                    )
                )
            recommendation = self._recommendation_for(axis, current.get(axis))
            if recommendation is not None:
                recommendations.append(recommendation)

        level_progress = self.rules.level_progress(snapshot.total_points)
        if level_progress.next is not None:
            insights.append(
                Insight(
                    type="milestone",
                    category="progression",
                    title=f"{level_progress.points_to_next} Points to {level_progress.next.name}",
                    message=f"You're {level_progress.percent:.0f}% of the way to your next professional level.",
                    impact="high",
                )
            )

        recommendations.sort(key=lambda rec: (rec.priority != "high", -rec.score_gap))
        return InsightBundle(
            subject_id=snapshot.subject_id,
            improvements=improvements,
            weakest_axis=weakest,
            focus_area=AXIS_LABELS[weakest],
            overall_score=int(math.floor(current.average() + 0.5)),
            insights=insights,
            recommendations=recommendations,
            level_progress=level_progress,
        )

    def _recommendation_for(self, axis: str, score: float) -> Optional[Recommendation]:
        gap = self.threshold - score
        if gap <= 0:
            return None
        label = AXIS_LABELS[axis]
        return Recommendation(
            category=axis,
            priority="high" if score < HIGH_PRIORITY_BELOW else "medium",
            action=f"Focus on {AXIS_FOCUS_TOOLS[axis]}",
            description=f"Reach {self.threshold:.0f}+ points to unlock advanced {label.lower()} tools",
            potential_points=self.rules.points_for_score_delta(gap),
            score_gap=gap,
        )

    def generate_development_plan(
        self,
        snapshot: CompetencySnapshot,
        timeframe: str = "30days",
        catalog: Optional[Sequence[PlanActivity]] = None,
    ) -> DevelopmentPlan:
        bundle = self.generate_insights(snapshot)
        catalog = DEFAULT_ACTIVITY_CATALOG if catalog is None else catalog

        objectives = [
            PlanObjective(
                category=rec.category,
                target=f"Reach {self.threshold:.0f}+ points in {AXIS_LABELS[rec.category]}",
                current_score=snapshot.current_scores.get(rec.category),
                target_score=self.threshold,
                priority="high",
            )
            for rec in bundle.recommendations
            if rec.priority == "high"
        ]

        gap_axes = {rec.category for rec in bundle.recommendations}
        activities = [activity.model_copy() for activity in catalog if activity.category in gap_axes]

        milestones: List[PlanMilestone] = []
        upcoming = bundle.level_progress.next
        if upcoming is not None:
            milestones.append(
                PlanMilestone(
                    title=f"Achieve {upcoming.name}",
                    description=f"Unlock advanced {upcoming.name.lower()} capabilities",
                    target_points=upcoming.required_points,
                    current_points=snapshot.total_points,
                )
            )

        return DevelopmentPlan(
            subject_id=snapshot.subject_id,
            timeframe=timeframe,
            objectives=objectives,
            activities=activities,
            milestones=milestones,
            estimated_outcome=self.project_outcome(snapshot, activities),
        )

    def project_outcome(self, snapshot: CompetencySnapshot, activities: Iterable[PlanActivity]) -> PlanOutcome:
        """Project scores, unlocks and level as if every activity were completed."""
        points_by_axis: Dict[str, int] = {axis: 0 for axis in AXES}
        total_gain = 0
        for activity in activities:
            total_gain += activity.points_potential
            if activity.category in points_by_axis:
                points_by_axis[activity.category] += activity.points_potential

        current = snapshot.current_scores
        projected_values = {
            axis: self.rules.clamp_score(current.get(axis) + self.rules.score_delta_for(points_by_axis[axis]))
            for axis in AXES
        }
        projected = CompetencyScores(**projected_values)
        deltas = {axis: projected.get(axis) - current.get(axis) for axis in AXES}

        after = self.rules.evaluate_unlocks(projected, snapshot.tool_unlocks)
        before = self.rules.evaluate_unlocks(current, snapshot.tool_unlocks)
        new_unlocks = self.rules.newly_unlocked(before, after)

        new_total = snapshot.total_points + total_gain
        current_level = self.rules.level_for_points(snapshot.total_points)
        potential_level = self.rules.level_for_points(new_total)
        return PlanOutcome(
            total_points_gain=total_gain,
            projected_scores=projected,
            score_deltas=deltas,
            tool_unlocks=new_unlocks,
            level_projection=LevelProjection(
                will_advance=potential_level.id != current_level.id,
                current_level=current_level.name,
                potential_level=potential_level.name,
                progress_to_next=self.rules.level_progress(new_total),
            ),
        )


def action_statistics(actions: Iterable[ActionRecord]) -> ActionStatistics:
    records = list(actions)
    total_points = sum(record.points_awarded for record in records)
    return ActionStatistics(
        total_actions=len(records),
        total_points=total_points,
        by_category=dict(Counter(record.category for record in records)),
        by_impact=dict(Counter(record.impact_level for record in records)),
        average_points_per_action=round(total_points / len(records)) if records else 0,
    )


def learning_velocity(actions: Iterable[ActionRecord], now: datetime, window_days: int = 30) -> int:
    """Points earned per week over the trailing window."""
    if window_days <= 0:
        return 0
    since = now - timedelta(days=window_days)
    points = sum(record.points_awarded for record in actions if record.timestamp >= since)
    return int(math.floor(points / (window_days / 7) + 0.5))


__all__ = [
    "ActionStatistics",
    "DEFAULT_ACTIVITY_CATALOG",
    "DevelopmentPlan",
    "Insight",
    "InsightBundle",
    "InsightGenerator",
    "LevelProjection",
    "PlanActivity",
    "PlanMilestone",
    "PlanObjective",
    "PlanOutcome",
    "Recommendation",
    "action_statistics",
    "learning_velocity",
]
