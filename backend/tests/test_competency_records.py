from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from competency_engine.config import SyncConfig, get_settings
from competency_engine.db.base import Base
from competency_engine.db.session import dispose_engine, get_engine, session_scope
from competency_engine.models import ActionRecord, CompetencyScores, SnapshotFields
from competency_engine.repositories.competency_records import CompetencyRecordRepository, SqlPersistenceAdapter
from competency_engine.service import CompetencySyncService


@pytest.fixture
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("COMPETENCY_DATABASE_URL", f"sqlite:///{tmp_path / 'competency.sqlite'}")
    get_settings.cache_clear()
    dispose_engine()
    Base.metadata.create_all(get_engine())
    yield
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def store(database) -> SqlPersistenceAdapter:
    return SqlPersistenceAdapter()


def _action(points: int, at: datetime, action_type: str = "customer_meeting") -> ActionRecord:
    return ActionRecord(type=action_type, category="customer_analysis", points_awarded=points, timestamp=at)


def test_fetch_missing_subject_returns_none(store) -> None:
    assert asyncio.run(store.fetch_snapshot("ghost")) is None


def test_create_subject_seeds_baseline(store) -> None:
    baseline = CompetencyScores(customer_analysis=40, value_communication=55, sales_execution=30)

    async def scenario():
        created = await store.create_subject("rep-1", baseline)
        again = await store.create_subject("rep-1", CompetencyScores())
        fetched = await store.fetch_snapshot("rep-1")
        return created, again, fetched

    created, again, fetched = asyncio.run(scenario())
    assert created.baseline_scores == baseline
    assert again.baseline_scores == baseline
    assert fetched.current_scores == baseline
    assert fetched.total_points == 0
    assert fetched.last_assessment_date is not None
    assert fetched.last_assessment_date.tzinfo is not None


def test_action_log_is_append_only_and_idempotent(store) -> None:
    now = datetime.now(timezone.utc)
    older = _action(100, now - timedelta(days=40))
    newer = _action(500, now - timedelta(days=1), "deal_closure")

    async def scenario():
        await store.create_subject("rep-1", CompetencyScores())
        await store.append_action_record("rep-1", older)
        await store.append_action_record("rep-1", newer)
        await store.append_action_record("rep-1", newer)
        recent = await store.query_recent_actions("rep-1", now - timedelta(days=30))
        snapshot = await store.fetch_snapshot("rep-1")
        return recent, snapshot

    recent, snapshot = asyncio.run(scenario())
    assert [record.action_id for record in recent] == [newer.action_id]
    assert recent[0].timestamp.tzinfo is not None
    assert recent[0].points_awarded == 500
    assert [record.action_id for record in snapshot.recent_actions] == [newer.action_id, older.action_id]


def test_recent_actions_are_limited(database) -> None:
    store = SqlPersistenceAdapter(CompetencyRecordRepository(recent_limit=2))
    now = datetime.now(timezone.utc)

    async def scenario():
        await store.create_subject("rep-1", CompetencyScores())
        for offset in range(4):
            await store.append_action_record("rep-1", _action(10, now - timedelta(hours=offset)))
        return await store.fetch_snapshot("rep-1")

    snapshot = asyncio.run(scenario())
    assert len(snapshot.recent_actions) == 2
    assert snapshot.recent_actions[0].timestamp > snapshot.recent_actions[1].timestamp


def test_achievements_are_recorded_once(store) -> None:
    async def scenario():
        await store.create_subject("rep-1", CompetencyScores())
        first = await store.append_achievement_unlock("rep-1", "first_deal", 50)
        second = await store.append_achievement_unlock("rep-1", "first_deal", 50)
        snapshot = await store.fetch_snapshot("rep-1")
        return first, second, snapshot

    first, second, snapshot = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert snapshot.achievement_ids == ["first_deal"]


def test_write_snapshot_fields_updates_profile(store) -> None:
    now = datetime.now(timezone.utc)
    fields = SnapshotFields(
        current_scores=CompetencyScores(customer_analysis=20, value_communication=75, sales_execution=10),
        total_points=1250,
        tool_unlocks={"icp_analysis": True, "cost_calculator": True, "business_case_builder": False},
        achievement_ids=["first_meeting"],
        last_action_date=now,
    )

    async def scenario():
        await store.create_subject("rep-1", CompetencyScores())
        await store.write_snapshot_fields("rep-1", fields)
        return await store.fetch_snapshot("rep-1")

    snapshot = asyncio.run(scenario())
    assert snapshot.total_points == 1250
    assert snapshot.current_scores.value_communication == 75
    assert snapshot.tool_unlocks["cost_calculator"] is True
    assert snapshot.achievement_ids == ["first_meeting"]
    assert snapshot.last_action_date == now


def test_writes_to_unknown_subject_fail(store) -> None:
    with pytest.raises(LookupError):
        asyncio.run(store.append_action_record("ghost", _action(10, datetime.now(timezone.utc))))


def test_repository_delete(database) -> None:
    repository = CompetencyRecordRepository()
    with session_scope() as session:
        repository.create(session, "rep-1", CompetencyScores())
    with session_scope() as session:
        assert repository.delete(session, "rep-1") is True
        assert repository.delete(session, "rep-1") is False
    with session_scope() as session:
        assert repository.get(session, "rep-1") is None


def test_service_round_trip_through_database(store) -> None:
    config = SyncConfig(autostart=False)

    async def scenario():
        await store.create_subject("rep-1", CompetencyScores(value_communication=65))
        service = CompetencySyncService(store, config=config)
        await service.initialize("rep-1")
        result = service.record_action(
            "rep-1", {"type": "prospect_qualification", "category": "value_communication", "impact": "low"}
        )
        service.unlock_achievement("rep-1", "first_qualification", 10)
        report = await service.sync_now()

        fresh = CompetencySyncService(store, config=config)
        return result, report, await fresh.get_snapshot("rep-1")

    result, report, remote = asyncio.run(scenario())
    assert result.new_unlocks == ["cost_calculator"]
    assert report.delivered == 2
    assert report.flushed == 1
    assert remote.total_points == 70
    assert remote.current_scores.value_communication == pytest.approx(71.0)
    assert remote.tool_unlocks["cost_calculator"] is True
    assert remote.achievement_ids == ["first_qualification"]
    assert [record.action_id for record in remote.recent_actions] == [result.record.action_id]
