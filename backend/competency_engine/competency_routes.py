"""REST endpoints exposing the competency service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .errors import DeliveryError, NotFoundError, ValidationError
from .insights import DevelopmentPlan, InsightBundle
from .models import (
    AchievementResult,
    ActionInput,
    CacheStats,
    CompetencyScores,
    CompetencySnapshot,
    LevelProgress,
    RecordActionResult,
)
from .repositories.competency_records import SqlPersistenceAdapter
from .service import AnalyticsBundle, CompetencySyncService
from .sync.loop import SyncReport
from .telemetry import emit_event

router = APIRouter(prefix="/api/competency", tags=["competency"])
logger = logging.getLogger(__name__)

_service: Optional[CompetencySyncService] = None


def get_competency_service() -> CompetencySyncService:
    global _service
    if _service is None:
        _service = CompetencySyncService.from_settings(SqlPersistenceAdapter())
    return _service


def reset_competency_service() -> None:
    global _service
    _service = None


def peek_competency_service() -> Optional[CompetencySyncService]:
    return _service


class SubjectCreateRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=128)
    baseline_scores: CompetencyScores = Field(default_factory=CompetencyScores)


class AchievementRequest(BaseModel):
    achievement_id: str = Field(..., min_length=1, max_length=128)
    bonus_points: int = Field(default=0, ge=0)


class SnapshotPayload(BaseModel):
    snapshot: CompetencySnapshot
    level_progress: LevelProgress


def _translate(exc: Exception) -> HTTPException:
    """Map engine errors to HTTP errors; remote failures become 503."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        detail: Any = {"message": str(exc), "errors": exc.errors} if exc.errors else str(exc)
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


async def _load(service: CompetencySyncService, subject_id: str) -> CompetencySnapshot:
    try:
        return await service.get_snapshot(subject_id)
    except (NotFoundError, ValidationError, DeliveryError) as exc:
        raise _translate(exc) from exc


def _snapshot_payload(service: CompetencySyncService, snapshot: CompetencySnapshot) -> SnapshotPayload:
    return SnapshotPayload(
        snapshot=snapshot,
        level_progress=service.rules.level_progress(snapshot.total_points),
    )


@router.post("/subjects", response_model=SnapshotPayload, status_code=status.HTTP_201_CREATED)
async def create_subject(
    payload: SubjectCreateRequest,
    service: CompetencySyncService = Depends(get_competency_service),
) -> SnapshotPayload:
    create = getattr(service.adapter, "create_subject", None)
    if create is None:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="The configured record store does not support creating subjects.",
        )
    subject_id = payload.subject_id.strip()
    if not subject_id:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Subject id cannot be empty.")
    await create(subject_id, payload.baseline_scores)
    snapshot = await service.refresh(subject_id)
    emit_event("competency_subject_created", subject_id=subject_id)
    return _snapshot_payload(service, snapshot)


@router.post("/{subject_id}/initialize", response_model=SnapshotPayload)
async def initialize_subject(
    subject_id: str,
    service: CompetencySyncService = Depends(get_competency_service),
) -> SnapshotPayload:
    try:
        snapshot = await service.initialize(subject_id)
    except (NotFoundError, ValidationError, DeliveryError) as exc:
        raise _translate(exc) from exc
    return _snapshot_payload(service, snapshot)


@router.get("/{subject_id}", response_model=SnapshotPayload)
async def get_subject(
    subject_id: str,
    service: CompetencySyncService = Depends(get_competency_service),
) -> SnapshotPayload:
    return _snapshot_payload(service, await _load(service, subject_id))


@router.post("/{subject_id}/actions", response_model=RecordActionResult)
async def record_action(
    subject_id: str,
    payload: ActionInput,
    service: CompetencySyncService = Depends(get_competency_service),
) -> RecordActionResult:
    await _load(service, subject_id)
    try:
        return service.record_action(subject_id, payload)
    except (NotFoundError, ValidationError) as exc:
        raise _translate(exc) from exc


@router.post("/{subject_id}/achievements", response_model=AchievementResult)
async def unlock_achievement(
    subject_id: str,
    payload: AchievementRequest,
    service: CompetencySyncService = Depends(get_competency_service),
) -> AchievementResult:
    await _load(service, subject_id)
    try:
        return service.unlock_achievement(subject_id, payload.achievement_id, payload.bonus_points)
    except (NotFoundError, ValidationError) as exc:
        raise _translate(exc) from exc


@router.post("/{subject_id}/assessment", response_model=SnapshotPayload)
async def record_assessment(
    subject_id: str,
    payload: CompetencyScores,
    service: CompetencySyncService = Depends(get_competency_service),
) -> SnapshotPayload:
    await _load(service, subject_id)
    try:
        snapshot = service.record_assessment(subject_id, payload)
    except (NotFoundError, ValidationError) as exc:
        raise _translate(exc) from exc
    return _snapshot_payload(service, snapshot)


@router.get("/{subject_id}/insights", response_model=InsightBundle)
async def get_insights(
    subject_id: str,
    service: CompetencySyncService = Depends(get_competency_service),
) -> InsightBundle:
    await _load(service, subject_id)
    return service.get_insights(subject_id)


@router.get("/{subject_id}/development-plan", response_model=DevelopmentPlan)
async def get_development_plan(
    subject_id: str,
    timeframe: str = Query(default="30days", min_length=1, max_length=32),
    service: CompetencySyncService = Depends(get_competency_service),
) -> DevelopmentPlan:
    await _load(service, subject_id)
    return service.get_development_plan(subject_id, timeframe)


@router.get("/{subject_id}/analytics", response_model=AnalyticsBundle)
async def get_analytics(
    subject_id: str,
    service: CompetencySyncService = Depends(get_competency_service),
) -> AnalyticsBundle:
    try:
        return await service.get_analytics(subject_id)
    except (NotFoundError, ValidationError, DeliveryError) as exc:
        raise _translate(exc) from exc


sync_router = APIRouter(prefix="/api/competency-sync", tags=["competency"])


def require_debug_endpoints(settings: Settings = Depends(get_settings)) -> None:
    if not settings.debug_endpoints:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


@sync_router.get("/stats", response_model=CacheStats)
def cache_stats(service: CompetencySyncService = Depends(get_competency_service)) -> CacheStats:
    return service.get_cache_stats()


@sync_router.post("/run", response_model=SyncReport, dependencies=[Depends(require_debug_endpoints)])
async def run_sync(service: CompetencySyncService = Depends(get_competency_service)) -> SyncReport:
    report = await service.sync_now()
    logger.info(
        "Manual sync delivered=%s requeued=%s dropped=%s flushed=%s",
        report.delivered,
        report.requeued,
        report.dropped,
        report.flushed,
    )
    return report


@sync_router.get("/status")
def sync_status(service: CompetencySyncService = Depends(get_competency_service)) -> Dict[str, Any]:
    return {"status": service.sync_loop.status, **service.get_cache_stats().model_dump()}


__all__ = [
    "get_competency_service",
    "peek_competency_service",
    "require_debug_endpoints",
    "reset_competency_service",
    "router",
    "sync_router",
]
