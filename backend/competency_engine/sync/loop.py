"""
Synchronization Loop: the heartbeat that pushes local progress upstream.

Each tick:
  1. drains the Update Queue per subject and delivers updates in enqueue order
     (subjects run concurrently, one subject's updates never do);
  2. pushes one reconciling write for every dirty cache entry.

A failed delivery ends that subject's batch for the tick: it comes back as a
``RetryUpdate`` at the head of the queue, followed by the updates behind it,
until the attempt budget is spent. A spent update goes to the error sink and
the batch carries on. Nothing here ever raises into the code that recorded the
mutation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..cache.progress_cache import ProgressCache
from ..config import SyncConfig
from ..errors import DeliveryError, RetryExhaustedError
from ..models import ActionUpdate, PendingUpdate, RetryUpdate, SnapshotFields, utc_now
from ..persistence import RemotePersistenceAdapter
from ..telemetry import emit_event
from .update_queue import UpdateQueue

logger = logging.getLogger(__name__)

ErrorSink = Callable[[RetryExhaustedError], None]


def telemetry_error_sink(error: RetryExhaustedError) -> None:
    """Default sink: log the dropped update and emit a telemetry event."""
    logger.error("%s (last error: %s)", error, error.last_error)
    update = error.update
    target = update.target if isinstance(update, RetryUpdate) else update
    emit_event(
        "competency_update_dropped",
        subject_id=error.subject_id,
        kind=target.kind,
        attempts=update.attempt,
        error=str(error.last_error) if error.last_error else None,
    )


class SyncReport(BaseModel):
    """Outcome counters for a single sync tick."""

    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    subjects: int = 0
    delivered: int = 0
    requeued: int = 0
    dropped: int = 0
    flushed: int = 0
    flush_failures: int = 0

    @property
    def idle(self) -> bool:
        return not (self.subjects or self.flushed or self.flush_failures)


class SyncLoop:
    """
    Periodic delivery of queued updates and dirty snapshots.

    States:
      STOPPED → (start) → RUNNING → (tick every interval) → RUNNING → (stop) → STOPPED
    """

    def __init__(
        self,
        cache: ProgressCache,
        queue: UpdateQueue,
        adapter: RemotePersistenceAdapter,
        config: Optional[SyncConfig] = None,
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self.cache = cache
        self.queue = queue
        self.adapter = adapter
        self.config = config or SyncConfig()
        self.error_sink = error_sink or telemetry_error_sink

        self._running = False
        self._task: Optional["asyncio.Task[None]"] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_lock = asyncio.Lock()

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    @property
    def running(self) -> bool:
        return self._running or (self._task is not None and not self._task.done())

    async def sync_once(self) -> SyncReport:
        """Run a single sync tick. Concurrent callers are serialised."""
        async with self._tick_lock:
            report = SyncReport()
            subjects = self.queue.subjects()
            report.subjects = len(subjects)
            outcomes = await asyncio.gather(*(self._drain_subject(subject_id) for subject_id in subjects))
            for delivered, requeued, dropped in outcomes:
                report.delivered += delivered
                report.requeued += requeued
                report.dropped += dropped

            # Flush after the drains so the reconciling write reflects this tick's deliveries.
            await self._flush_dirty(report)
            report.finished_at = utc_now()

        if not report.idle:
            emit_event(
                "competency_sync_tick",
                subjects=report.subjects,
                delivered=report.delivered,
                requeued=report.requeued,
                dropped=report.dropped,
                flushed=report.flushed,
                flush_failures=report.flush_failures,
            )
        return report

    async def _drain_subject(self, subject_id: str) -> Tuple[int, int, int]:
        """Deliver one subject's updates in order, stopping at the first retryable failure."""
        delivered = requeued = dropped = 0
        updates = self.queue.drain(subject_id)
        for index, update in enumerate(updates):
            try:
                await self._deliver(subject_id, update)
            except DeliveryError as exc:
                retry = self._handle_failure(subject_id, update, exc)
                if retry is None:
                    dropped += 1
                    continue
                requeued += 1
                self.queue.requeue_front(subject_id, [retry, *updates[index + 1 :]])
                break
            else:
                delivered += 1
        return delivered, requeued, dropped

    async def _deliver(self, subject_id: str, update: PendingUpdate) -> None:
        target = update.target if isinstance(update, RetryUpdate) else update
        if isinstance(target, ActionUpdate):
            await self._call(
                subject_id,
                "append_action_record",
                lambda: self.adapter.append_action_record(subject_id, target.record),
            )
            return
        unlock = target.unlock
        accepted = await self._call(
            subject_id,
            "append_achievement_unlock",
            lambda: self.adapter.append_achievement_unlock(subject_id, unlock.achievement_id, unlock.bonus_points),
        )
        if accepted is False:
            logger.info(
                "Achievement %s already recorded remotely for subject=%s",
                unlock.achievement_id,
                subject_id,
            )

    def _handle_failure(
        self, subject_id: str, update: PendingUpdate, exc: DeliveryError
    ) -> Optional[RetryUpdate]:
        """Return the retry for ``update``, or None once its attempts are used up."""
        target = update.target if isinstance(update, RetryUpdate) else update
        attempt = update.attempt + 1
        retry = RetryUpdate(target=target, attempt=attempt, last_error=str(exc))
        if attempt >= self.config.max_delivery_attempts:
            self._report_drop(RetryExhaustedError(subject_id, retry, last_error=exc.cause or exc))
            return None
        logger.warning(
            "Delivery of %s failed for subject=%s (attempt %s/%s); requeueing: %s",
            target.kind,
            subject_id,
            attempt,
            self.config.max_delivery_attempts,
            exc,
        )
        return retry

    def _report_drop(self, error: RetryExhaustedError) -> None:
        try:
            self.error_sink(error)
        except Exception:  # noqa: BLE001
            logger.exception("Error sink failed while reporting dropped update for subject=%s", error.subject_id)

    async def _flush_dirty(self, report: SyncReport) -> None:
        for subject_id, snapshot, version in self.cache.dirty_entries():
            fields = SnapshotFields.from_snapshot(snapshot)
            try:
                await self._call(
                    subject_id,
                    "write_snapshot_fields",
                    lambda: self.adapter.write_snapshot_fields(subject_id, fields),
                )
            except DeliveryError as exc:
                report.flush_failures += 1
                logger.warning("Reconciling write failed for subject=%s; entry stays dirty: %s", subject_id, exc)
                continue
            if self.cache.mark_clean(subject_id, expected_version=version):
                report.flushed += 1
            else:
                logger.debug("Subject=%s changed during flush; keeping it dirty", subject_id)

    async def _call(self, subject_id: str, operation: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(factory(), timeout=self.config.remote_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise DeliveryError(subject_id, operation, exc) from exc
        except Exception as exc:  # noqa: BLE001
            raise DeliveryError(subject_id, operation, exc) from exc

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Tick every ``sync_interval_seconds`` until ``stop_event`` is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.sync_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
                else:
                    break
                try:
                    await self.sync_once()
                except Exception:  # noqa: BLE001
                    logger.exception("Competency sync tick failed")
        finally:
            self._running = False

    def start(self) -> "asyncio.Task[None]":
        """Schedule the loop on the running event loop. Idempotent."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self.run_async(self._stop_event))
        logger.info("Competency sync loop started (interval=%ss)", self.config.sync_interval_seconds)
        return self._task

    async def stop(self, *, flush: bool = False) -> Optional[SyncReport]:
        """Stop the loop; with ``flush`` run one last tick afterwards."""
        task, self._task = self._task, None
        if task is not None:
            if self._stop_event is not None:
                self._stop_event.set()
            await task
            logger.info("Competency sync loop stopped")
        if flush:
            return await self.sync_once()
        return None


__all__ = ["ErrorSink", "SyncLoop", "SyncReport", "telemetry_error_sink"]
