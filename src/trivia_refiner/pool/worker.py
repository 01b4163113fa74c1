"""Batch worker: claim, dispatch, classify, commit or release, pace."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from trivia_refiner.generation.base import BatchGenerator
from trivia_refiner.generation.validator import sanitize_batch, validate_batch
from trivia_refiner.pool.credentials import Credential, CredentialPool
from trivia_refiner.pool.progress import ProgressTracker
from trivia_refiner.queue.failure_classifier import (
    BatchValidationError,
    DispatchFailureClassification,
    classify_dispatch_failure,
)
from trivia_refiner.queue.models import Batch, FailureKind, ProcessedQuestion
from trivia_refiner.queue.repository import QuestionQueueRepository

logger = logging.getLogger(__name__)
failures_logger = logging.getLogger("trivia_refiner.failures")


class WorkerState(str, Enum):
    CLAIMING = "claiming"
    DISPATCHING = "dispatching"
    CLASSIFYING = "classifying"
    COMMITTING = "committing"
    RELEASING = "releasing"
    PACING = "pacing"
    STOPPED = "stopped"


class BatchOutcome(str, Enum):
    """How one claim cycle resolved."""

    COMMITTED = "committed"
    RELEASED = "released"
    EMPTY = "empty"


class WorkerExit(str, Enum):
    """Why a worker loop terminated."""

    DRAINED = "drained"
    STOP_REQUESTED = "stop_requested"
    BATCH_LIMIT = "batch_limit"
    FATAL = "fatal"


@dataclass(slots=True)
class WorkerReport:
    """Per-worker result handed back to the pool."""

    worker_id: str
    exit_reason: WorkerExit
    batches_committed: int = 0
    batches_released: int = 0
    items_committed: int = 0
    fatal_reason: str | None = None


class BatchWorker:
    """Runs the claim/dispatch/commit cycle until the queue drains or the pool stops.

    The worker never exits the process. Fatal conditions set the shared stop
    event and are reported through ``WorkerReport.fatal_reason``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        worker_id: str,
        repository: QuestionQueueRepository,
        generator: BatchGenerator,
        credentials: CredentialPool,
        progress: ProgressTracker,
        stop_event: threading.Event,
        batch_size: int,
        batch_limit: int | None = None,
        delay_seconds: float = 2.0,
        overload_retry_cap: int = 10,
        overload_retry_delay_seconds: float = 30.0,
        key_rotation_delay_seconds: float = 5.0,
    ) -> None:
        self.worker_id = worker_id
        self.repository = repository
        self.generator = generator
        self.credentials = credentials
        self.progress = progress
        self.stop_event = stop_event
        self.batch_size = batch_size
        self.batch_limit = batch_limit
        self.delay_seconds = delay_seconds
        self.overload_retry_cap = overload_retry_cap
        self.overload_retry_delay_seconds = overload_retry_delay_seconds
        self.key_rotation_delay_seconds = key_rotation_delay_seconds
        self.state = WorkerState.CLAIMING
        self.consecutive_overloads = 0
        self.fatal_reason: str | None = None
        self.batches_claimed = 0
        self.batches_committed = 0
        self.batches_released = 0
        self.items_committed = 0
        self._skip_pacing = False

    def run(self) -> WorkerReport:
        """Loop until drained, stopped, limited, or fatal."""

        exit_reason = self._loop()
        self.state = WorkerState.STOPPED
        logger.info(
            "Worker %s stopped (%s): %d committed, %d released",
            self.worker_id,
            exit_reason.value,
            self.batches_committed,
            self.batches_released,
        )
        return WorkerReport(
            worker_id=self.worker_id,
            exit_reason=exit_reason,
            batches_committed=self.batches_committed,
            batches_released=self.batches_released,
            items_committed=self.items_committed,
            fatal_reason=self.fatal_reason,
        )

    def _loop(self) -> WorkerExit:
        while True:
            if self.fatal_reason is not None:
                return WorkerExit.FATAL
            if self.stop_event.is_set():
                return WorkerExit.STOP_REQUESTED
            if self.batch_limit is not None and self.batches_claimed >= self.batch_limit:
                return WorkerExit.BATCH_LIMIT

            outcome = self.run_one_batch()
            if outcome == BatchOutcome.EMPTY:
                return WorkerExit.DRAINED
            if self.fatal_reason is not None:
                return WorkerExit.FATAL

            self.state = WorkerState.PACING
            if self._skip_pacing:
                self._skip_pacing = False
                continue
            self._wait(self.delay_seconds)

    def run_one_batch(self) -> BatchOutcome:
        """Claim one batch and resolve it to exactly one of commit or release."""

        self.state = WorkerState.CLAIMING
        batch = self.repository.claim_batch(self.batch_size, worker_id=self.worker_id)
        if not batch:
            self.state = WorkerState.STOPPED
            return BatchOutcome.EMPTY

        self.batches_claimed += 1
        batch_number = self.progress.start_batch(self.worker_id)
        logger.info(
            "Worker %s batch %d: claimed %d questions (IDs %s to %s)",
            self.worker_id,
            batch_number,
            len(batch),
            batch.ids[0],
            batch.ids[-1],
        )

        try:
            self.state = WorkerState.DISPATCHING
            credential = self.credentials.current()
            try:
                results = self.generator.generate(batch.items, credential)
                self.state = WorkerState.COMMITTING
                results = _check_results(batch, results)
            except Exception as error:  # noqa: BLE001
                self.state = WorkerState.CLASSIFYING
                return self._handle_failure(
                    batch=batch,
                    batch_number=batch_number,
                    error=error,
                    credential=credential,
                )
            committed = self.repository.commit_batch(batch, results)
        except Exception:
            logger.exception(
                "Worker %s batch %d: store failure, releasing claimed items",
                self.worker_id,
                batch_number,
            )
            self._release_after_store_failure(batch)
            raise

        self.consecutive_overloads = 0
        self.batches_committed += 1
        self.items_committed += committed
        self.progress.complete_batch(self.worker_id, committed)
        logger.info(
            "Worker %s batch %d: committed %d questions",
            self.worker_id,
            batch_number,
            committed,
        )
        return BatchOutcome.COMMITTED

    def _handle_failure(
        self,
        *,
        batch: Batch,
        batch_number: int,
        error: Exception,
        credential: Credential,
    ) -> BatchOutcome:
        classification = classify_dispatch_failure(
            error,
            consecutive_overloads=self.consecutive_overloads,
            overload_retry_cap=self.overload_retry_cap,
            overload_retry_delay_seconds=self.overload_retry_delay_seconds,
        )
        self._log_failure(
            batch=batch,
            batch_number=batch_number,
            error=error,
            classification=classification,
        )
        kind = classification.kind

        if kind == FailureKind.RETRYABLE:
            self.consecutive_overloads += 1
            logger.warning(
                "Worker %s: service overloaded, retry %d/%d in %.1fs",
                self.worker_id,
                self.consecutive_overloads,
                self.overload_retry_cap,
                classification.delay_seconds,
            )
            self._wait(classification.delay_seconds)
            self._release(batch)
            self._skip_pacing = True
            return BatchOutcome.RELEASED

        if kind == FailureKind.CREDENTIAL_EXHAUSTED:
            rotation = self.credentials.report_exhausted(credential)
            if rotation.exhausted_all:
                self._release(batch)
                self._fail(
                    f"All {self.credentials.size} API keys exhausted (quota exceeded)",
                )
                return BatchOutcome.RELEASED
            logger.info(
                "Worker %s: waiting %.1fs before continuing with key %d",
                self.worker_id,
                self.key_rotation_delay_seconds,
                rotation.current_index + 1,
            )
            self._wait(self.key_rotation_delay_seconds)
            self._release(batch)
            return BatchOutcome.RELEASED

        self._release(batch)
        if classification.stops_pool:
            self._fail(f"{classification.reason_code}: {error}")
        return BatchOutcome.RELEASED

    def _release(self, batch: Batch) -> None:
        self.state = WorkerState.RELEASING
        self.repository.release_batch(batch)
        self.batches_released += 1
        self.progress.fail_batch(self.worker_id)

    def _release_after_store_failure(self, batch: Batch) -> None:
        self.batches_released += 1
        self.progress.fail_batch(self.worker_id)
        try:
            self.repository.release_batch(batch)
        except Exception:
            logger.exception(
                "Worker %s: could not release batch %s; it stays claimed until reset",
                self.worker_id,
                batch.claim_token,
            )

    def _fail(self, reason: str) -> None:
        self.fatal_reason = reason
        logger.error("Worker %s: fatal error, stopping pool: %s", self.worker_id, reason)
        self.stop_event.set()

    def _wait(self, seconds: float) -> None:
        if seconds > 0:
            self.stop_event.wait(seconds)

    def _log_failure(
        self,
        *,
        batch: Batch,
        batch_number: int,
        error: Exception,
        classification: DispatchFailureClassification,
    ) -> None:
        item_id = getattr(error, "item_id", None)
        failures_logger.error(
            "Batch %d failed (worker %s, %s/%s): %s | item: %s | IDs: %s | details: %s",
            batch_number,
            self.worker_id,
            classification.kind.value,
            classification.reason_code,
            error,
            item_id or "-",
            ", ".join(batch.ids),
            json.dumps(classification.to_log_details(), sort_keys=True),
        )


def _check_results(batch: Batch, results: Sequence[ProcessedQuestion]) -> list[ProcessedQuestion]:
    if len(results) != len(batch):
        raise BatchValidationError(
            f"Expected {len(batch)} results for batch, got {len(results)}",
        )
    result_ids = [result.id for result in results]
    if set(result_ids) != set(batch.ids) or len(set(result_ids)) != len(result_ids):
        missing = sorted(set(batch.ids) - set(result_ids))
        raise BatchValidationError(
            f"Result IDs do not match claimed batch; missing={missing}",
            item_id=missing[0] if missing else None,
        )
    sanitized = sanitize_batch(results)
    validation = validate_batch(sanitized)
    if not validation.is_valid:
        raise BatchValidationError(
            validation.reason or "Result validation failed",
            item_id=validation.item_id,
        )
    return sanitized
