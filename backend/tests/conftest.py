from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Set, Tuple

import pytest

from competency_engine.config import SyncConfig
from competency_engine.models import ActionRecord, CompetencyScores, CompetencySnapshot, SnapshotFields
from competency_engine.telemetry import clear_listeners


class FakeRemoteAdapter:
    """In-memory record store with switchable failures and latency."""

    def __init__(self) -> None:
        self.snapshots: Dict[str, CompetencySnapshot] = {}
        self.actions: Dict[str, List[ActionRecord]] = {}
        self.achievements: Dict[str, List[Tuple[str, int]]] = {}
        self.writes: List[Tuple[str, SnapshotFields]] = []
        self.calls: List[Tuple[str, str]] = []
        self.fail_operations: Set[str] = set()
        self.delays: Dict[str, float] = {}

    def seed(self, subject_id: str, **fields: Any) -> CompetencySnapshot:
        snapshot = CompetencySnapshot(subject_id=subject_id, **fields)
        self.snapshots[subject_id] = snapshot
        return snapshot

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, subject_id: str) -> None:
        self.calls.append((operation, subject_id))
        delay = self.delays.get(operation, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if operation in self.fail_operations:
            raise ConnectionError(f"{operation} unavailable")

    async def fetch_snapshot(self, subject_id: str):
        await self._enter("fetch_snapshot", subject_id)
        snapshot = self.snapshots.get(subject_id)
        return snapshot.model_copy(deep=True) if snapshot is not None else None

    async def append_action_record(self, subject_id: str, record: ActionRecord) -> None:
        await self._enter("append_action_record", subject_id)
        self.actions.setdefault(subject_id, []).append(record)

    async def append_achievement_unlock(self, subject_id: str, achievement_id: str, bonus_points: int) -> bool:
        await self._enter("append_achievement_unlock", subject_id)
        stored = self.achievements.setdefault(subject_id, [])
        if any(existing == achievement_id for existing, _ in stored):
            return False
        stored.append((achievement_id, bonus_points))
        return True

    async def write_snapshot_fields(self, subject_id: str, fields: SnapshotFields) -> None:
        await self._enter("write_snapshot_fields", subject_id)
        self.writes.append((subject_id, fields))
        current = self.snapshots[subject_id]
        self.snapshots[subject_id] = current.model_copy(
            update={name: getattr(fields, name) for name in SnapshotFields.model_fields},
            deep=True,
        )

    async def query_recent_actions(self, subject_id: str, since: datetime) -> List[ActionRecord]:
        await self._enter("query_recent_actions", subject_id)
        records = [record for record in self.actions.get(subject_id, []) if record.timestamp >= since]
        return sorted(records, key=lambda record: record.timestamp, reverse=True)

    async def create_subject(self, subject_id: str, baseline: CompetencyScores) -> CompetencySnapshot:
        await self._enter("create_subject", subject_id)
        if subject_id not in self.snapshots:
            self.seed(subject_id, baseline_scores=baseline, current_scores=baseline)
        return self.snapshots[subject_id]


@pytest.fixture
def adapter() -> FakeRemoteAdapter:
    return FakeRemoteAdapter()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        sync_interval_seconds=0.01,
        cache_freshness_seconds=300,
        max_delivery_attempts=3,
        remote_timeout_seconds=0.5,
        autostart=False,
    )


@pytest.fixture(autouse=True)
def _reset_telemetry_listeners():
    yield
    clear_listeners()
