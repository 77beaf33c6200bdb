"""Contract for the remote record store the engine synchronises with."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .models import ActionRecord, CompetencySnapshot, SnapshotFields


class RemotePersistenceAdapter(Protocol):
    """The only collaborator that performs network or database I/O.

    ``fetch_snapshot`` returns ``None`` when the subject does not exist. Every
    write either completes or raises; the sync loop treats any exception (and
    any timeout) as a transient delivery failure.
    """

    async def fetch_snapshot(self, subject_id: str) -> Optional[CompetencySnapshot]:  # pragma: no cover - protocol definition
        ...

    async def append_action_record(self, subject_id: str, record: ActionRecord) -> None:  # pragma: no cover
        ...

    async def append_achievement_unlock(
        self, subject_id: str, achievement_id: str, bonus_points: int
    ) -> bool:  # pragma: no cover
        """Return ``False`` when the achievement was already recorded remotely."""
        ...

    async def write_snapshot_fields(self, subject_id: str, fields: SnapshotFields) -> None:  # pragma: no cover
        ...

    async def query_recent_actions(
        self, subject_id: str, since: datetime
    ) -> List[ActionRecord]:  # pragma: no cover
        ...


__all__ = ["RemotePersistenceAdapter"]
