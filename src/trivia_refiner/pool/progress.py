"""Thread-safe progress counters shared by all pool workers."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field


@dataclass(slots=True)
class WorkerStats:
    """Per-worker tallies."""

    completed: int = 0
    failed: int = 0
    items_processed: int = 0


@dataclass(slots=True)
class ProgressSnapshot:
    """Consistent copy of the counters taken under the tracker lock."""

    batch_number: int
    total_batches: int
    items_processed: int
    total_items: int
    failed_batches: int
    elapsed_seconds: float
    workers: dict[str, WorkerStats] = field(default_factory=dict)

    @property
    def items_processed_this_run(self) -> int:
        return sum(stats.items_processed for stats in self.workers.values())


class ProgressTracker:
    """Batch sequence plus per-worker tallies, updated under one lock."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        total_items: int,
        unprocessed_items: int,
        batch_size: int,
        worker_ids: Iterable[str],
        display_throttle_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = clock()
        self._last_display_at: float | None = None
        self._display_throttle_seconds = display_throttle_seconds
        self._total_items = total_items
        self._total_batches = math.ceil(unprocessed_items / batch_size) if batch_size > 0 else 0
        self._items_processed = total_items - unprocessed_items
        self._batch_number = 0
        self._failed_batches = 0
        self._workers = {worker_id: WorkerStats() for worker_id in worker_ids}

    def start_batch(self, worker_id: str) -> int:
        """Allocate the next batch sequence number."""

        with self._lock:
            self._workers.setdefault(worker_id, WorkerStats())
            self._batch_number += 1
            return self._batch_number

    def complete_batch(self, worker_id: str, items: int) -> None:
        with self._lock:
            stats = self._workers.setdefault(worker_id, WorkerStats())
            stats.completed += 1
            stats.items_processed += items
            self._items_processed += items

    def fail_batch(self, worker_id: str) -> None:
        with self._lock:
            stats = self._workers.setdefault(worker_id, WorkerStats())
            stats.failed += 1
            self._failed_batches += 1

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                batch_number=self._batch_number,
                total_batches=self._total_batches,
                items_processed=self._items_processed,
                total_items=self._total_items,
                failed_batches=self._failed_batches,
                elapsed_seconds=self._clock() - self._started_at,
                workers={
                    worker_id: WorkerStats(
                        completed=stats.completed,
                        failed=stats.failed,
                        items_processed=stats.items_processed,
                    )
                    for worker_id, stats in self._workers.items()
                },
            )

    def render_progress(self, *, force: bool = False) -> list[str] | None:
        """Progress lines, or ``None`` when throttled."""

        now = self._clock()
        with self._lock:
            if (
                not force
                and self._last_display_at is not None
                and now - self._last_display_at < self._display_throttle_seconds
            ):
                return None
            self._last_display_at = now

        snapshot = self.snapshot()
        percent = (
            100
            if snapshot.total_batches == 0
            else round(snapshot.batch_number / snapshot.total_batches * 100)
        )
        avg_per_batch = (
            snapshot.elapsed_seconds / snapshot.batch_number if snapshot.batch_number else 0.0
        )
        remaining = max(0, snapshot.total_batches - snapshot.batch_number)
        lines = [
            f"Progress: {snapshot.items_processed:,}/{snapshot.total_items:,} ({percent}%) | "
            f"Batches: {snapshot.batch_number}/{snapshot.total_batches} | "
            f"Failed: {snapshot.failed_batches} | "
            f"ETA: {format_duration(avg_per_batch * remaining)}",
        ]
        lines.extend(_worker_lines(snapshot))
        return lines

    def render_summary(self) -> list[str]:
        snapshot = self.snapshot()
        return [
            "Processing complete!",
            f"Processed: {snapshot.items_processed:,} questions",
            f"Failed batches: {snapshot.failed_batches}",
            f"Time: {format_duration(snapshot.elapsed_seconds)}",
            "Per-worker stats:",
            *_worker_lines(snapshot),
        ]


def format_duration(seconds: float) -> str:
    """Compact ``1h 2m`` / ``3m 4s`` / ``5s`` rendering."""

    total_seconds = int(max(0.0, seconds))
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _worker_lines(snapshot: ProgressSnapshot) -> list[str]:
    return [
        f"  Worker {worker_id}: {stats.items_processed} questions "
        f"({stats.completed} batches, {stats.failed} failed)"
        for worker_id, stats in snapshot.workers.items()
    ]
