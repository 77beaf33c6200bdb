"""Competency synchronization service: the entry point offered to callers.

A service owns one Progress Cache, one Update Queue and one Synchronization
Loop. Construct as many as needed; nothing is shared at module level.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .cache.progress_cache import ProgressCache, normalize_subject_id
from .config import Settings, SyncConfig, get_settings
from .errors import CompetencyError, DeliveryError, NotFoundError, ValidationError
from .insights import (
    ActionStatistics,
    DevelopmentPlan,
    InsightBundle,
    InsightGenerator,
    action_statistics,
    learning_velocity,
)
from .models import (
    AchievementResult,
    AchievementUnlock,
    AchievementUpdate,
    ActionInput,
    ActionRecord,
    ActionUpdate,
    CacheStats,
    CompetencyScores,
    CompetencySnapshot,
    ProfessionalLevel,
    RecordActionResult,
    utc_now,
)
from .persistence import RemotePersistenceAdapter
from .scoring import ScoringPolicy, ScoringRules
from .sync.loop import ErrorSink, SyncLoop, SyncReport
from .sync.update_queue import UpdateQueue
from .telemetry import emit_event

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ANALYTICS_WINDOW_DAYS = 90
VELOCITY_WINDOW_DAYS = 30


class AnalyticsBundle(BaseModel):
    snapshot: CompetencySnapshot
    insights: InsightBundle
    development_plan: DevelopmentPlan
    action_statistics: ActionStatistics
    learning_velocity: int = 0


def _validate(model: Type[ModelT], payload: Any, what: str) -> ModelT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        raise ValidationError(f"Invalid {what}: {exc.error_count()} validation error(s)", errors=errors) from exc


class CompetencySyncService:
    def __init__(
        self,
        adapter: RemotePersistenceAdapter,
        config: Optional[SyncConfig] = None,
        policy: Optional[ScoringPolicy] = None,
        error_sink: Optional[ErrorSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.adapter = adapter
        self.config = config or SyncConfig()
        self.rules = ScoringRules(policy)
        self.insight_generator = InsightGenerator(self.rules)
        self._clock = clock
        self.cache = ProgressCache(
            self._fetch_snapshot,
            freshness=timedelta(seconds=self.config.cache_freshness_seconds),
            clock=clock,
        )
        self.queue = UpdateQueue()
        self.sync_loop = SyncLoop(self.cache, self.queue, adapter, self.config, error_sink)

    @classmethod
    def from_settings(
        cls,
        adapter: RemotePersistenceAdapter,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> "CompetencySyncService":
        settings = settings or get_settings()
        kwargs.setdefault("policy", ScoringPolicy(recent_action_retention=settings.recent_action_retention))
        return cls(adapter, config=SyncConfig.from_settings(settings), **kwargs)

    async def _fetch_snapshot(self, subject_id: str) -> Optional[CompetencySnapshot]:
        try:
            snapshot = await asyncio.wait_for(
                self.adapter.fetch_snapshot(subject_id),
                timeout=self.config.remote_timeout_seconds,
            )
        except CompetencyError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DeliveryError(subject_id, "fetch_snapshot", exc) from exc
        if snapshot is None:
            return None
        # Remote unlock flags may lag behind the scores; recompute and keep anything already open.
        retention = self.rules.policy.recent_action_retention
        return snapshot.model_copy(
            update={
                "tool_unlocks": self.rules.evaluate_unlocks(snapshot.current_scores, snapshot.tool_unlocks),
                "recent_actions": list(snapshot.recent_actions)[:retention],
            }
        )

    def _require_snapshot(self, subject_id: str) -> CompetencySnapshot:
        key = normalize_subject_id(subject_id)
        snapshot = self.cache.peek(key)
        if snapshot is None:
            raise NotFoundError(key, f"Subject {key!r} has not been initialized.")
        return snapshot

    async def initialize(self, subject_id: str) -> CompetencySnapshot:
        snapshot = await self.cache.get(subject_id)
        if self.config.autostart and not self.sync_loop.running:
            self.start()
        return snapshot

    async def get_snapshot(self, subject_id: str) -> CompetencySnapshot:
        return await self.cache.get(subject_id)

    async def refresh(self, subject_id: str) -> CompetencySnapshot:
        return await self.cache.refresh(subject_id)

    def level_for(self, snapshot: CompetencySnapshot) -> ProfessionalLevel:
        return self.rules.level_for_points(snapshot.total_points)

    def record_action(
        self,
        subject_id: str,
        action_input: Union[ActionInput, Mapping[str, Any]],
    ) -> RecordActionResult:
        action = _validate(ActionInput, action_input, "action input")
        before = self._require_snapshot(subject_id)
        key = before.subject_id

        record: ActionRecord = self.rules.build_action_record(action, at=self._clock())
        snapshot = self.cache.apply_optimistic(key, lambda current: self.rules.apply_action(current, record))
        self.queue.enqueue(key, ActionUpdate(record=record))

        new_unlocks = self.rules.newly_unlocked(before.tool_unlocks, snapshot.tool_unlocks)
        emit_event(
            "competency_action_recorded",
            subject_id=key,
            action_type=record.type,
            category=record.category,
            impact=record.impact_level,
            points_awarded=record.points_awarded,
            total_points=snapshot.total_points,
        )
        self._announce_unlocks(key, new_unlocks)
        return RecordActionResult(
            points_awarded=record.points_awarded,
            record=record,
            snapshot=snapshot,
            level=self.level_for(snapshot),
            new_unlocks=new_unlocks,
        )

    def unlock_achievement(self, subject_id: str, achievement_id: str, bonus_points: int = 0) -> AchievementResult:
        unlock = _validate(
            AchievementUnlock,
            {"achievement_id": achievement_id.strip() if isinstance(achievement_id, str) else achievement_id,
             "bonus_points": bonus_points,
             "unlocked_at": self._clock()},
            "achievement unlock",
        )
        before = self._require_snapshot(subject_id)
        key = before.subject_id
        if unlock.achievement_id in before.achievement_ids:
            return AchievementResult(
                status="already_unlocked",
                achievement_id=unlock.achievement_id,
                bonus_points=0,
                total_achievements=len(before.achievement_ids),
                snapshot=before,
            )

        snapshot = self.cache.apply_optimistic(
            key,
            lambda current: self.rules.apply_achievement(current, unlock.achievement_id, unlock.bonus_points),
        )
        self.queue.enqueue(key, AchievementUpdate(unlock=unlock))
        emit_event(
            "competency_achievement_unlocked",
            subject_id=key,
            achievement_id=unlock.achievement_id,
            bonus_points=unlock.bonus_points,
            total_points=snapshot.total_points,
        )
        return AchievementResult(
            status="unlocked",
            achievement_id=unlock.achievement_id,
            bonus_points=unlock.bonus_points,
            total_achievements=len(snapshot.achievement_ids),
            snapshot=snapshot,
        )

    def record_assessment(
        self,
        subject_id: str,
        scores: Union[CompetencyScores, Mapping[str, Any]],
    ) -> CompetencySnapshot:
        """Replace the current axis scores with freshly assessed ones.

        Points are untouched and open tools stay open even when a score drops.
        The new scores reach the remote store through the reconciling write.
        """
        assessed = _validate(CompetencyScores, scores, "assessment scores")
        before = self._require_snapshot(subject_id)
        key = before.subject_id
        at = self._clock()
        snapshot = self.cache.apply_optimistic(key, lambda current: self.rules.apply_assessment(current, assessed, at))
        self._announce_unlocks(key, self.rules.newly_unlocked(before.tool_unlocks, snapshot.tool_unlocks))
        return snapshot

    def _announce_unlocks(self, subject_id: str, tools: List[str]) -> None:
        for tool in tools:
            logger.info("Tool %s unlocked for subject=%s", tool, subject_id)
            emit_event("competency_tool_unlocked", subject_id=subject_id, tool=tool)

    def get_insights(self, subject_id: str) -> InsightBundle:
        return self.insight_generator.generate_insights(self._require_snapshot(subject_id))

    def get_development_plan(self, subject_id: str, timeframe: str = "30days") -> DevelopmentPlan:
        return self.insight_generator.generate_development_plan(self._require_snapshot(subject_id), timeframe)

    async def get_analytics(self, subject_id: str) -> AnalyticsBundle:
        snapshot = await self.cache.get(subject_id)
        now = self._clock()
        actions = await self._recent_actions(snapshot, now - timedelta(days=ANALYTICS_WINDOW_DAYS))
        return AnalyticsBundle(
            snapshot=snapshot,
            insights=self.insight_generator.generate_insights(snapshot),
            development_plan=self.insight_generator.generate_development_plan(snapshot),
            action_statistics=action_statistics(actions),
            learning_velocity=learning_velocity(actions, now, VELOCITY_WINDOW_DAYS),
        )

    async def _recent_actions(self, snapshot: CompetencySnapshot, since: datetime) -> List[ActionRecord]:
        try:
            remote = await asyncio.wait_for(
                self.adapter.query_recent_actions(snapshot.subject_id, since),
                timeout=self.config.remote_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Falling back to cached actions for subject=%s; remote query failed: %s",
                snapshot.subject_id,
                exc,
            )
            remote = []
        # Merge in local actions that may not have been delivered yet.
        merged: Dict[str, ActionRecord] = {record.action_id: record for record in remote}
        for record in snapshot.recent_actions:
            if record.timestamp >= since:
                merged.setdefault(record.action_id, record)
        return sorted(merged.values(), key=lambda record: record.timestamp, reverse=True)

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            cached_subjects=len(self.cache),
            pending_update_count=self.queue.pending_count(),
            dirty_entry_count=self.cache.dirty_count(),
        )

    async def sync_now(self) -> SyncReport:
        return await self.sync_loop.sync_once()

    def start(self) -> "asyncio.Task[None]":
        return self.sync_loop.start()

    async def stop(self, *, flush: bool = True) -> Optional[SyncReport]:
        return await self.sync_loop.stop(flush=flush)

    def clear_cache(self) -> None:
        """Forget every cached snapshot and pending update."""
        dirty = self.cache.dirty_count()
        pending = self.queue.pending_count()
        if dirty or pending:
            logger.warning("Clearing cache with %s dirty entries and %s pending updates", dirty, pending)
        self.cache.clear()
        self.queue.clear()


__all__ = ["AnalyticsBundle", "CompetencySyncService"]
