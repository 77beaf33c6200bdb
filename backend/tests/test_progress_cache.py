from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from competency_engine.cache.progress_cache import ProgressCache, normalize_subject_id
from competency_engine.errors import NotFoundError, ValidationError


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _add_points(points: int):
    def mutation(snapshot):
        return snapshot.model_copy(update={"total_points": snapshot.total_points + points})

    return mutation


def test_get_fetches_once_while_fresh(adapter) -> None:
    adapter.seed("rep-1", total_points=120)
    cache = ProgressCache(adapter.fetch_snapshot)

    async def scenario():
        first = await cache.get("rep-1")
        second = await cache.get(" rep-1 ")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.total_points == 120
    assert second.total_points == 120
    assert adapter.call_count("fetch_snapshot") == 1


def test_stale_clean_entry_is_refetched(adapter) -> None:
    adapter.seed("rep-1", total_points=10)
    clock = _Clock()
    cache = ProgressCache(adapter.fetch_snapshot, freshness=timedelta(minutes=5), clock=clock)

    async def scenario():
        await cache.get("rep-1")
        adapter.seed("rep-1", total_points=40)
        clock.advance(minutes=4)
        cached = await cache.get("rep-1")
        clock.advance(minutes=2)
        refreshed = await cache.get("rep-1")
        return cached, refreshed

    cached, refreshed = asyncio.run(scenario())
    assert cached.total_points == 10
    assert refreshed.total_points == 40
    assert adapter.call_count("fetch_snapshot") == 2


def test_dirty_entry_is_served_even_when_stale(adapter) -> None:
    adapter.seed("rep-1", total_points=10)
    clock = _Clock()
    cache = ProgressCache(adapter.fetch_snapshot, freshness=timedelta(minutes=5), clock=clock)

    async def scenario():
        await cache.get("rep-1")
        cache.apply_optimistic("rep-1", _add_points(50))
        clock.advance(hours=1)
        return await cache.get("rep-1")

    snapshot = asyncio.run(scenario())
    assert snapshot.total_points == 60
    assert adapter.call_count("fetch_snapshot") == 1


def test_concurrent_misses_share_one_fetch(adapter) -> None:
    adapter.seed("rep-1", total_points=5)
    adapter.delays["fetch_snapshot"] = 0.02
    cache = ProgressCache(adapter.fetch_snapshot)

    async def scenario():
        return await asyncio.gather(*(cache.get("rep-1") for _ in range(5)))

    results = asyncio.run(scenario())
    assert [snapshot.total_points for snapshot in results] == [5] * 5
    assert adapter.call_count("fetch_snapshot") == 1


def test_missing_subject_raises_and_is_not_cached(adapter) -> None:
    cache = ProgressCache(adapter.fetch_snapshot)

    async def scenario():
        for _ in range(2):
            with pytest.raises(NotFoundError):
                await cache.get("ghost")

    asyncio.run(scenario())
    assert "ghost" not in cache
    # A failed fetch does not stay in flight.
    assert adapter.call_count("fetch_snapshot") == 2


def test_fetch_failure_propagates(adapter) -> None:
    adapter.seed("rep-1")
    adapter.fail_operations.add("fetch_snapshot")
    cache = ProgressCache(adapter.fetch_snapshot)

    with pytest.raises(ConnectionError):
        asyncio.run(cache.get("rep-1"))
    assert len(cache) == 0


def test_apply_optimistic_requires_loaded_subject(adapter) -> None:
    cache = ProgressCache(adapter.fetch_snapshot)
    with pytest.raises(NotFoundError):
        cache.apply_optimistic("rep-1", _add_points(10))


def test_apply_optimistic_marks_dirty_and_returns_a_copy(adapter) -> None:
    adapter.seed("rep-1", total_points=10)
    cache = ProgressCache(adapter.fetch_snapshot)
    asyncio.run(cache.get("rep-1"))

    updated = cache.apply_optimistic("rep-1", _add_points(15))
    updated.achievement_ids.append("tampered")

    entry = cache.entry("rep-1")
    assert entry is not None and entry.is_dirty
    assert entry.snapshot.total_points == 25
    assert entry.snapshot.achievement_ids == []
    assert cache.dirty_count() == 1
    assert cache.stats() == {"cached_subjects": 1, "dirty_entries": 1}


def test_mutation_may_not_lower_points(adapter) -> None:
    adapter.seed("rep-1", total_points=10)
    cache = ProgressCache(adapter.fetch_snapshot)
    asyncio.run(cache.get("rep-1"))

    with pytest.raises(ValueError):
        cache.apply_optimistic("rep-1", lambda snapshot: snapshot.model_copy(update={"total_points": 0}))
    assert cache.peek("rep-1").total_points == 10


def test_mark_clean_respects_expected_version(adapter) -> None:
    adapter.seed("rep-1")
    cache = ProgressCache(adapter.fetch_snapshot)
    asyncio.run(cache.get("rep-1"))

    cache.apply_optimistic("rep-1", _add_points(1))
    (_, _, version), = cache.dirty_entries()
    cache.apply_optimistic("rep-1", _add_points(1))

    assert cache.mark_clean("rep-1", expected_version=version) is False
    assert cache.entry("rep-1").is_dirty
    assert cache.mark_clean("rep-1", expected_version=version + 1) is True
    assert cache.dirty_entries() == []


def test_refresh_replaces_dirty_entry_with_remote_state(adapter) -> None:
    adapter.seed("rep-1", total_points=10)
    cache = ProgressCache(adapter.fetch_snapshot)

    async def scenario():
        await cache.get("rep-1")
        cache.apply_optimistic("rep-1", _add_points(90))
        return await cache.refresh("rep-1")

    snapshot = asyncio.run(scenario())
    assert snapshot.total_points == 10
    assert cache.dirty_count() == 0


def test_invalidate_and_clear(adapter) -> None:
    adapter.seed("rep-1")
    adapter.seed("rep-2")
    cache = ProgressCache(adapter.fetch_snapshot)

    async def scenario():
        await cache.get("rep-1")
        await cache.get("rep-2")

    asyncio.run(scenario())
    cache.invalidate("rep-1")
    assert cache.peek("rep-1") is None
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("subject_id", ["", "   ", None])
def test_blank_subject_ids_are_rejected(subject_id) -> None:
    with pytest.raises(ValidationError):
        normalize_subject_id(subject_id)


def test_fetch_completing_after_a_local_mutation_keeps_local_state(adapter) -> None:
    adapter.seed("rep-1", total_points=0)
    adapter.delays["fetch_snapshot"] = 0.05
    clock = _Clock()
    cache = ProgressCache(adapter.fetch_snapshot, freshness=timedelta(minutes=5), clock=clock)

    async def scenario():
        await cache.get("rep-1")
        clock.advance(minutes=10)
        fetch = asyncio.ensure_future(cache.get("rep-1"))
        await asyncio.sleep(0.01)
        cache.apply_optimistic("rep-1", _add_points(100))
        return await fetch

    snapshot = asyncio.run(scenario())
    entry = cache.entry("rep-1")
    assert snapshot.total_points == 100
    assert entry.is_dirty
    assert entry.snapshot.total_points == 100
    assert adapter.call_count("fetch_snapshot") == 2
