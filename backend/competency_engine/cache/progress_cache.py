"""In-memory cache of competency snapshots with optimistic updates."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import NotFoundError, ValidationError
from ..models import CompetencySnapshot, utc_now

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Optional[CompetencySnapshot]]]
Mutation = Callable[[CompetencySnapshot], CompetencySnapshot]


def normalize_subject_id(subject_id: str) -> str:
    normalized = subject_id.strip() if isinstance(subject_id, str) else ""
    if not normalized:
        raise ValidationError("Subject id cannot be empty.")
    return normalized


@dataclass
class CacheEntry:
    snapshot: CompetencySnapshot
    last_sync: datetime
    is_dirty: bool = False
    version: int = 0


class ProgressCache:
    """Process-local snapshot cache keyed by subject id.

    Reads are served from memory while the entry is fresh. A miss (or a stale
    clean entry) goes to ``fetch``; concurrent misses for one subject share a
    single in-flight fetch. Dirty entries are always served from memory, and a
    fetch that completes after a local mutation keeps the local snapshot, so
    only an explicit ``refresh`` replaces writes that have not been flushed.
    """

    def __init__(
        self,
        fetch: Fetcher,
        freshness: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._fetch = fetch
        self._freshness = freshness
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, "asyncio.Future[CompetencySnapshot]"] = {}

    def __contains__(self, subject_id: str) -> bool:
        return normalize_subject_id(subject_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if entry.is_dirty:
            return True
        return self._clock() - entry.last_sync < self._freshness

    async def get(self, subject_id: str) -> CompetencySnapshot:
        key = normalize_subject_id(subject_id)
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.snapshot.model_copy(deep=True)
        return await self._load(key)

    async def refresh(self, subject_id: str) -> CompetencySnapshot:
        """Refetch regardless of freshness; remote state wins."""
        return await self._load(normalize_subject_id(subject_id), force=True)

    async def _load(self, key: str, force: bool = False) -> CompetencySnapshot:
        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(key, force))
            self._inflight[key] = pending
            pending.add_done_callback(lambda _: self._inflight.pop(key, None))
        snapshot = await asyncio.shield(pending)
        return snapshot.model_copy(deep=True)

    async def _fetch_and_store(self, key: str, force: bool = False) -> CompetencySnapshot:
        logger.debug("Fetching competency snapshot for subject=%s", key)
        before = self._entries.get(key)
        version_before = before.version if before is not None else None
        snapshot = await self._fetch(key)
        if snapshot is None:
            raise NotFoundError(key)
        previous = self._entries.get(key)
        if previous is not None and not force:
            if previous.is_dirty or previous.version != version_before:
                logger.debug("Subject=%s changed locally during fetch; keeping local snapshot", key)
                return previous.snapshot
        self._entries[key] = CacheEntry(
            snapshot=snapshot.model_copy(update={"subject_id": key}, deep=True),
            last_sync=self._clock(),
            is_dirty=False,
            version=previous.version + 1 if previous else 0,
        )
        return self._entries[key].snapshot

    def peek(self, subject_id: str) -> Optional[CompetencySnapshot]:
        entry = self._entries.get(normalize_subject_id(subject_id))
        if entry is None:
            return None
        return entry.snapshot.model_copy(deep=True)

    def entry(self, subject_id: str) -> Optional[CacheEntry]:
        return self._entries.get(normalize_subject_id(subject_id))

    def apply_optimistic(self, subject_id: str, mutation: Mutation) -> CompetencySnapshot:
        """Apply ``mutation`` to the cached snapshot in place and mark it dirty."""
        key = normalize_subject_id(subject_id)
        entry = self._entries.get(key)
        if entry is None:
            raise NotFoundError(key, f"Subject {key!r} must be initialized before it can be updated.")
        updated = mutation(entry.snapshot.model_copy(deep=True))
        if updated.total_points < entry.snapshot.total_points:
            raise ValueError("Mutations may not decrease total points.")
        entry.snapshot = updated
        entry.is_dirty = True
        entry.version += 1
        return updated.model_copy(deep=True)

    def mark_clean(self, subject_id: str, expected_version: Optional[int] = None) -> bool:
        """Clear the dirty flag after a confirmed remote write.

        When ``expected_version`` is given and a newer local mutation landed
        while the write was in flight, the entry stays dirty.
        """
        entry = self._entries.get(normalize_subject_id(subject_id))
        if entry is None:
            return False
        if expected_version is not None and entry.version != expected_version:
            return False
        entry.is_dirty = False
        entry.last_sync = self._clock()
        return True

    def dirty_entries(self) -> List[Tuple[str, CompetencySnapshot, int]]:
        return [
            (key, entry.snapshot.model_copy(deep=True), entry.version)
            for key, entry in self._entries.items()
            if entry.is_dirty
        ]

    def dirty_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_dirty)

    def stats(self) -> Dict[str, int]:
        return {"cached_subjects": len(self._entries), "dirty_entries": self.dirty_count()}

    def invalidate(self, subject_id: str) -> None:
        self._entries.pop(normalize_subject_id(subject_id), None)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["CacheEntry", "Mutation", "ProgressCache", "normalize_subject_id"]
