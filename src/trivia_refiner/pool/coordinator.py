"""Worker pool coordinator owning startup recovery, threads, and the run summary."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from trivia_refiner.config import PoolSettings
from trivia_refiner.generation.base import BatchGenerator
from trivia_refiner.pool.credentials import CredentialPool
from trivia_refiner.pool.progress import ProgressTracker, WorkerStats, format_duration
from trivia_refiner.pool.worker import BatchWorker, WorkerExit, WorkerReport
from trivia_refiner.queue.repository import QuestionQueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PoolRunSummary:
    """Aggregate result of one pool run."""

    total_items: int = 0
    pending_at_start: int = 0
    reset_stuck: int = 0
    processed: int = 0
    failed_batches: int = 0
    elapsed_seconds: float = 0.0
    per_worker: dict[str, WorkerStats] = field(default_factory=dict)
    reports: list[WorkerReport] = field(default_factory=list)
    summary_lines: list[str] = field(default_factory=list)
    fatal_reason: str | None = None
    stop_requested: bool = False

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal_reason is not None else 0


class WorkerPool:
    """Runs ``worker_count`` batch workers against one queue until they all stop."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QuestionQueueRepository,
        generator: BatchGenerator,
        credentials: CredentialPool,
        settings: PoolSettings,
        echo: Callable[[str], None] | None = None,
        progress_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.credentials = credentials
        self.settings = settings
        self._echo = echo
        self._progress_interval_seconds = progress_interval_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._stop_requested = False
        self._lock = threading.Lock()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def request_stop(self, *, signal_name: str | None = None) -> None:
        """Ask workers to finish their current batch and stop claiming."""

        self._stop_requested = True
        if signal_name is not None:
            logger.warning(
                "Received %s, waiting for workers to finish current batches",
                signal_name,
            )
        self._stop_event.set()

    def run(self, worker_count: int) -> PoolRunSummary:
        if worker_count <= 0:
            raise ValueError(f"Worker count must be positive, got {worker_count}")

        started_at = self._clock()
        summary = PoolRunSummary()
        summary.reset_stuck = self.repository.reset_stuck_items()
        if summary.reset_stuck:
            logger.info("Reset %d stuck questions back to unprocessed", summary.reset_stuck)
        summary.total_items = self.repository.count_total()
        summary.pending_at_start = self.repository.count_pending()
        self._emit(f"Total questions: {summary.total_items:,}")
        self._emit(f"Unprocessed questions: {summary.pending_at_start:,}")
        self._emit(f"Workers: {worker_count}")
        self._emit(f"Batch size: {self.settings.batch_size}")
        self._emit(f"Delay between batches: {self.settings.delay_seconds}s")

        if summary.pending_at_start == 0:
            self._emit("No questions to process!")
            summary.elapsed_seconds = self._clock() - started_at
            return summary

        worker_ids = [str(index) for index in range(1, worker_count + 1)]
        progress = ProgressTracker(
            total_items=summary.total_items,
            unprocessed_items=summary.pending_at_start,
            batch_size=self.settings.batch_size,
            worker_ids=worker_ids,
            display_throttle_seconds=self._progress_interval_seconds,
            clock=self._clock,
        )
        reports: dict[str, WorkerReport] = {}
        threads = [
            threading.Thread(
                target=self._run_worker,
                args=(self._build_worker(worker_id, progress), reports),
                name=f"trivia-refiner-worker-{worker_id}",
                daemon=True,
            )
            for worker_id in worker_ids
        ]
        for thread in threads:
            thread.start()
        self._wait_for(threads, progress)

        snapshot = progress.snapshot()
        summary.processed = snapshot.items_processed_this_run
        summary.failed_batches = snapshot.failed_batches
        summary.per_worker = snapshot.workers
        summary.reports = [reports[worker_id] for worker_id in worker_ids if worker_id in reports]
        summary.fatal_reason = self._first_fatal_reason(summary.reports)
        summary.stop_requested = self._stop_requested
        summary.elapsed_seconds = self._clock() - started_at
        summary.summary_lines = progress.render_summary()
        logger.info(
            "Pool finished in %s: processed=%d failed_batches=%d fatal=%s",
            format_duration(summary.elapsed_seconds),
            summary.processed,
            summary.failed_batches,
            summary.fatal_reason,
        )
        return summary

    @contextmanager
    def signal_handlers(self) -> Iterator[None]:
        """Route SIGINT/SIGTERM to ``request_stop`` while the block runs."""

        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)

    def _build_worker(self, worker_id: str, progress: ProgressTracker) -> BatchWorker:
        settings = self.settings
        return BatchWorker(
            worker_id=worker_id,
            repository=self.repository,
            generator=self.generator,
            credentials=self.credentials,
            progress=progress,
            stop_event=self._stop_event,
            batch_size=settings.batch_size,
            batch_limit=settings.batch_limit,
            delay_seconds=settings.delay_seconds,
            overload_retry_cap=settings.overload_retry_cap,
            overload_retry_delay_seconds=settings.overload_retry_delay_seconds,
            key_rotation_delay_seconds=settings.key_rotation_delay_seconds,
        )

    def _run_worker(self, worker: BatchWorker, reports: dict[str, WorkerReport]) -> None:
        try:
            report = worker.run()
        except Exception as error:
            logger.exception("Worker %s crashed", worker.worker_id)
            report = WorkerReport(
                worker_id=worker.worker_id,
                exit_reason=WorkerExit.FATAL,
                batches_committed=worker.batches_committed,
                batches_released=worker.batches_released,
                items_committed=worker.items_committed,
                fatal_reason=f"Worker {worker.worker_id} crashed: {type(error).__name__}: {error}",
            )
            self._stop_event.set()
        with self._lock:
            reports[worker.worker_id] = report

    def _wait_for(self, threads: list[threading.Thread], progress: ProgressTracker) -> None:
        interval = max(self._progress_interval_seconds, 0.05)
        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(timeout=interval)
                if thread.is_alive():
                    break
            lines = progress.render_progress()
            if lines:
                for line in lines:
                    self._emit(line)

    @staticmethod
    def _first_fatal_reason(reports: list[WorkerReport]) -> str | None:
        for report in reports:
            if report.exit_reason == WorkerExit.FATAL and report.fatal_reason:
                return report.fatal_reason
        return None

    def _emit(self, line: str) -> None:
        if self._echo is not None:
            self._echo(line)
