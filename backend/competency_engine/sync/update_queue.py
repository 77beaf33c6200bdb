"""Per-subject queue of mutations waiting for remote delivery."""

from __future__ import annotations

from typing import Dict, List

from ..models import PendingUpdate


class UpdateQueue:
    """Ordered pending updates keyed by subject id."""

    def __init__(self) -> None:
        self._pending: Dict[str, List[PendingUpdate]] = {}

    def enqueue(self, subject_id: str, update: PendingUpdate) -> None:
        self._pending.setdefault(subject_id, []).append(update)

    def drain(self, subject_id: str) -> List[PendingUpdate]:
        """Remove and return everything queued so far for ``subject_id``.

        Updates enqueued after the drain land in a fresh list and belong to the
        next sync cycle.
        """
        return self._pending.pop(subject_id, [])

    def requeue_front(self, subject_id: str, updates: List[PendingUpdate]) -> None:
        """Put ``updates`` back ahead of anything enqueued since the last drain."""
        if updates:
            self._pending[subject_id] = list(updates) + self._pending.get(subject_id, [])

    def peek(self, subject_id: str) -> List[PendingUpdate]:
        return list(self._pending.get(subject_id, []))

    def subjects(self) -> List[str]:
        return [subject_id for subject_id, updates in self._pending.items() if updates]

    def pending_count(self, subject_id: str | None = None) -> int:
        if subject_id is not None:
            return len(self._pending.get(subject_id, []))
        return sum(len(updates) for updates in self._pending.values())

    def discard(self, subject_id: str) -> None:
        self._pending.pop(subject_id, None)

    def clear(self) -> None:
        self._pending.clear()


__all__ = ["UpdateQueue"]
