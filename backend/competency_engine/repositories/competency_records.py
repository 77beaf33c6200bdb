"""Database-backed competency record store and its async persistence adapter."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, ContextManager, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..cache.progress_cache import normalize_subject_id
from ..db.models import AchievementUnlockModel, ActionRecordModel, CompetencyProfileModel
from ..db.session import session_scope
from ..models import ActionRecord, CompetencyScores, CompetencySnapshot, SnapshotFields, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECENT_ACTION_LIMIT = 50


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CompetencyRecordRepository:
    """Synchronous SQL access; every method takes the caller's session."""

    def __init__(self, recent_limit: int = RECENT_ACTION_LIMIT) -> None:
        self.recent_limit = recent_limit

    def get(self, session: Session, subject_id: str) -> Optional[CompetencySnapshot]:
        model = self._find_model(session, subject_id)
        if model is None:
            return None
        return self._to_domain(session, model)

    def create(
        self,
        session: Session,
        subject_id: str,
        baseline: CompetencyScores,
        *,
        assessed_at: Optional[datetime] = None,
    ) -> CompetencySnapshot:
        """Create a profile seeded from a baseline assessment; existing profiles are returned untouched."""
        model = self._find_model(session, subject_id)
        if model is None:
            model = CompetencyProfileModel(
                subject_id=normalize_subject_id(subject_id),
                baseline_scores=baseline.as_dict(),
                current_scores=baseline.as_dict(),
                total_points=0,
                tool_unlocks={},
                last_assessment_date=assessed_at or utc_now(),
            )
            session.add(model)
            session.flush()
            logger.info("Created competency profile for subject=%s", model.subject_id)
        return self._to_domain(session, model)

    def append_action(self, session: Session, subject_id: str, record: ActionRecord) -> bool:
        """Insert ``record``; returns False when the action id is already stored."""
        model = self._require_model(session, subject_id)
        existing = session.execute(
            select(ActionRecordModel.id).where(ActionRecordModel.action_id == record.action_id)
        ).scalar_one_or_none()
        if existing is not None:
            return False
        session.add(
            ActionRecordModel(
                profile_id=model.id,
                action_id=record.action_id,
                action_type=record.type,
                category=record.category,
                description=record.description,
                impact_level=record.impact_level,
                points_awarded=record.points_awarded,
                verified=record.verified,
                evidence_link=record.evidence_link,
                tags=list(record.tags),
                recorded_at=record.timestamp,
            )
        )
        session.flush()
        return True

    def append_achievement(
        self,
        session: Session,
        subject_id: str,
        achievement_id: str,
        bonus_points: int,
        *,
        unlocked_at: Optional[datetime] = None,
    ) -> bool:
        model = self._require_model(session, subject_id)
        existing = self._find_achievement(session, model.id, achievement_id)
        if existing is not None:
            # A reconciling write may have created the row before the unlock itself arrived.
            if existing.bonus_points == 0 and bonus_points:
                existing.bonus_points = bonus_points
            return False
        session.add(
            AchievementUnlockModel(
                profile_id=model.id,
                achievement_id=achievement_id,
                bonus_points=bonus_points,
                unlocked_at=unlocked_at or utc_now(),
            )
        )
        session.flush()
        return True

    def write_fields(self, session: Session, subject_id: str, fields: SnapshotFields) -> None:
        model = self._require_model(session, subject_id)
        model.current_scores = fields.current_scores.as_dict()
        model.total_points = fields.total_points
        model.tool_unlocks = dict(fields.tool_unlocks)
        model.last_action_date = fields.last_action_date
        model.last_assessment_date = fields.last_assessment_date
        for achievement_id in fields.achievement_ids:
            if self._find_achievement(session, model.id, achievement_id) is None:
                session.add(AchievementUnlockModel(profile_id=model.id, achievement_id=achievement_id))
        session.flush()

    def recent_actions(self, session: Session, subject_id: str, since: datetime) -> List[ActionRecord]:
        model = self._require_model(session, subject_id)
        stmt = (
            select(ActionRecordModel)
            .where(ActionRecordModel.profile_id == model.id, ActionRecordModel.recorded_at >= since)
            .order_by(ActionRecordModel.recorded_at.desc(), ActionRecordModel.id.desc())
        )
        return [self._action_to_domain(row) for row in session.execute(stmt).scalars()]

    def delete(self, session: Session, subject_id: str) -> bool:
        model = self._find_model(session, subject_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_model(self, session: Session, subject_id: str) -> Optional[CompetencyProfileModel]:
        normalized = normalize_subject_id(subject_id)
        stmt = select(CompetencyProfileModel).where(CompetencyProfileModel.subject_id == normalized)
        return session.execute(stmt).scalar_one_or_none()

    def _require_model(self, session: Session, subject_id: str) -> CompetencyProfileModel:
        model = self._find_model(session, subject_id)
        if model is None:
            raise LookupError(f"Competency profile '{subject_id}' does not exist.")
        return model

    def _find_achievement(
        self, session: Session, profile_id: str, achievement_id: str
    ) -> Optional[AchievementUnlockModel]:
        stmt = select(AchievementUnlockModel).where(
            AchievementUnlockModel.profile_id == profile_id,
            AchievementUnlockModel.achievement_id == achievement_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, session: Session, model: CompetencyProfileModel) -> CompetencySnapshot:
        actions_stmt = (
            select(ActionRecordModel)
            .where(ActionRecordModel.profile_id == model.id)
            .order_by(ActionRecordModel.recorded_at.desc(), ActionRecordModel.id.desc())
            .limit(self.recent_limit)
        )
        achievements_stmt = (
            select(AchievementUnlockModel.achievement_id)
            .where(AchievementUnlockModel.profile_id == model.id)
            .order_by(AchievementUnlockModel.id)
        )
        return CompetencySnapshot(
            subject_id=model.subject_id,
            baseline_scores=CompetencyScores.model_validate(model.baseline_scores or {}),
            current_scores=CompetencyScores.model_validate(model.current_scores or {}),
            total_points=model.total_points,
            tool_unlocks=dict(model.tool_unlocks or {}),
            achievement_ids=list(session.execute(achievements_stmt).scalars()),
            recent_actions=[self._action_to_domain(row) for row in session.execute(actions_stmt).scalars()],
            last_action_date=_as_utc(model.last_action_date),
            last_assessment_date=_as_utc(model.last_assessment_date),
        )

    @staticmethod
    def _action_to_domain(row: ActionRecordModel) -> ActionRecord:
        return ActionRecord(
            action_id=row.action_id,
            type=row.action_type,
            category=row.category,
            description=row.description,
            impact_level=row.impact_level,
            points_awarded=row.points_awarded,
            timestamp=_as_utc(row.recorded_at),
            verified=row.verified,
            evidence_link=row.evidence_link,
            tags=tuple(row.tags or ()),
        )


class SqlPersistenceAdapter:
    """Remote persistence adapter over the SQL record store.

    Blocking SQLAlchemy work runs in a worker thread so the event loop stays free
    while the sync loop waits on the database.
    """

    def __init__(
        self,
        repository: Optional[CompetencyRecordRepository] = None,
        scope: Callable[[], ContextManager[Session]] = session_scope,
    ) -> None:
        self.repository = repository or CompetencyRecordRepository()
        self._scope = scope

    def _run(self, work: Callable[[Session], T]) -> T:
        with self._scope() as session:
            return work(session)

    async def _call(self, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run, work)

    async def fetch_snapshot(self, subject_id: str) -> Optional[CompetencySnapshot]:
        return await self._call(lambda session: self.repository.get(session, subject_id))

    async def append_action_record(self, subject_id: str, record: ActionRecord) -> None:
        inserted = await self._call(lambda session: self.repository.append_action(session, subject_id, record))
        if not inserted:
            logger.debug("Action %s already stored for subject=%s", record.action_id, subject_id)

    async def append_achievement_unlock(self, subject_id: str, achievement_id: str, bonus_points: int) -> bool:
        return await self._call(
            lambda session: self.repository.append_achievement(session, subject_id, achievement_id, bonus_points)
        )

    async def write_snapshot_fields(self, subject_id: str, fields: SnapshotFields) -> None:
        await self._call(lambda session: self.repository.write_fields(session, subject_id, fields))

    async def query_recent_actions(self, subject_id: str, since: datetime) -> List[ActionRecord]:
        return await self._call(lambda session: self.repository.recent_actions(session, subject_id, since))

    async def create_subject(self, subject_id: str, baseline: CompetencyScores) -> CompetencySnapshot:
        return await self._call(lambda session: self.repository.create(session, subject_id, baseline))


__all__ = ["CompetencyRecordRepository", "SqlPersistenceAdapter"]
