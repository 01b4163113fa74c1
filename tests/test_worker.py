from __future__ import annotations

import logging
import re
import threading

import allure
import pytest

from trivia_refiner.generation.errors import GenerationServiceError, ResponseFormatError
from trivia_refiner.pool.credentials import CredentialPool
from trivia_refiner.pool.progress import ProgressTracker
from trivia_refiner.pool.worker import BatchOutcome, BatchWorker, WorkerExit, WorkerState
from trivia_refiner.queue.models import QuestionStatus

pytestmark = [
    allure.epic("Batch Rewriting"),
    allure.feature("Worker State Machine"),
]


def _overloaded() -> GenerationServiceError:
    return GenerationServiceError("Gemini API error (503): overloaded", status_code=503)


def _quota() -> GenerationServiceError:
    return GenerationServiceError("Gemini API error (429): quota", status_code=429)


def _worker(repository, generator, **overrides) -> BatchWorker:
    options = {
        "worker_id": "1",
        "repository": repository,
        "generator": generator,
        "credentials": CredentialPool(["k1"]),
        "progress": ProgressTracker(
            total_items=repository.count_total(),
            unprocessed_items=repository.count_pending(),
            batch_size=2,
            worker_ids=["1"],
        ),
        "stop_event": threading.Event(),
        "batch_size": 2,
        "delay_seconds": 0.0,
        "overload_retry_delay_seconds": 0.0,
        "key_rotation_delay_seconds": 0.0,
    }
    options.update(overrides)
    return BatchWorker(**options)


class _ShortGenerator:
    """Drops the last result on the first call only."""

    def __init__(self, rewrite) -> None:
        self.rewrite = rewrite
        self.calls = 0

    def generate(self, batch, credential):
        self.calls += 1
        results = [self.rewrite(item) for item in batch]
        return results[:-1] if self.calls == 1 else results


class _DuplicateOptionsGenerator:
    def __init__(self, rewrite) -> None:
        self.rewrite = rewrite

    def generate(self, batch, credential):
        results = [self.rewrite(item) for item in batch]
        results[0].d = results[0].a
        return results


def test_overload_twice_then_success_releases_twice_and_commits_once(
    repository,
    seed,
    scripted_generator,
) -> None:
    seed(5)
    generator = scripted_generator([_overloaded(), _overloaded()])
    worker = _worker(repository, generator)

    outcomes = [worker.run_one_batch() for _ in range(3)]

    assert outcomes == [BatchOutcome.RELEASED, BatchOutcome.RELEASED, BatchOutcome.COMMITTED]
    assert worker.batches_released == 2
    assert worker.batches_committed == 1
    assert worker.items_committed == 2
    assert worker.consecutive_overloads == 0
    assert repository.count_by_status(QuestionStatus.DONE) == 2
    assert repository.count_pending() == 3
    assert repository.count_by_status(QuestionStatus.CLAIMED) == 0


def test_run_drains_queue(repository, seed, scripted_generator) -> None:
    seed(5)
    generator = scripted_generator()

    report = _worker(repository, generator).run()

    assert report.exit_reason == WorkerExit.DRAINED
    assert report.items_committed == 5
    assert report.batches_committed == 3
    assert repository.count_by_status(QuestionStatus.DONE) == 5


def test_overload_beyond_cap_is_fatal_and_stops_pool(repository, seed, scripted_generator) -> None:
    seed(5)
    stop_event = threading.Event()
    generator = scripted_generator([_overloaded()] * 3)
    worker = _worker(repository, generator, stop_event=stop_event, overload_retry_cap=2)

    report = worker.run()

    assert report.exit_reason == WorkerExit.FATAL
    assert "overload_retries_exhausted" in (report.fatal_reason or "")
    assert stop_event.is_set()
    assert len(generator.calls) == 3
    assert report.batches_released == 3
    assert repository.count_pending() == 5
    assert worker.state == WorkerState.STOPPED


def test_malformed_output_between_overloads_does_not_reset_retry_count(
    repository,
    seed,
    scripted_generator,
) -> None:
    seed(5)
    stop_event = threading.Event()
    malformed = ResponseFormatError("Failed to parse JSON response")
    generator = scripted_generator(
        [_overloaded(), malformed, _overloaded(), malformed, _overloaded()],
    )
    worker = _worker(repository, generator, stop_event=stop_event, overload_retry_cap=2)

    report = worker.run()

    assert report.exit_reason == WorkerExit.FATAL
    assert "overload_retries_exhausted" in (report.fatal_reason or "")
    assert len(generator.calls) == 5
    assert worker.consecutive_overloads == 2
    assert stop_event.is_set()
    assert repository.count_by_status(QuestionStatus.DONE) == 0
    assert repository.count_by_status(QuestionStatus.CLAIMED) == 0


def test_quota_rotates_credentials_and_continues(repository, seed, scripted_generator) -> None:
    seed(2)
    generator = scripted_generator([_quota(), _quota()])
    credentials = CredentialPool(["k1", "k2", "k3"])

    report = _worker(repository, generator, credentials=credentials).run()

    assert report.exit_reason == WorkerExit.DRAINED
    assert [index for _, index in generator.calls] == [0, 1, 2]
    assert credentials.available_count == 1
    assert repository.count_by_status(QuestionStatus.DONE) == 2


def test_quota_on_last_key_is_fatal(repository, seed, scripted_generator) -> None:
    seed(4)
    stop_event = threading.Event()
    generator = scripted_generator([_quota(), _quota()])
    credentials = CredentialPool(["k1", "k2"])

    report = _worker(
        repository,
        generator,
        credentials=credentials,
        stop_event=stop_event,
    ).run()

    assert report.exit_reason == WorkerExit.FATAL
    assert "API keys exhausted" in (report.fatal_reason or "")
    assert stop_event.is_set()
    assert credentials.is_dead
    assert repository.count_pending() == 4


def test_server_error_is_fatal_and_releases_batch(repository, seed, scripted_generator) -> None:
    seed(3)
    generator = scripted_generator([GenerationServiceError("boom (500)", status_code=500)])

    report = _worker(repository, generator).run()

    assert report.exit_reason == WorkerExit.FATAL
    assert report.batches_released == 1
    assert repository.count_by_status(QuestionStatus.CLAIMED) == 0
    assert repository.count_by_status(QuestionStatus.FAILED_RETRYABLE) == 2


def test_count_mismatch_is_released_and_worker_continues(repository, seed, rewrite_clue) -> None:
    seed(2)
    generator = _ShortGenerator(rewrite_clue)

    report = _worker(repository, generator).run()

    assert report.exit_reason == WorkerExit.DRAINED
    assert report.batches_released == 1
    assert report.items_committed == 2


def test_invalid_payload_is_logged_with_ids(repository, seed, caplog, rewrite_clue) -> None:
    seed(2)
    worker = _worker(repository, _DuplicateOptionsGenerator(rewrite_clue))

    with caplog.at_level(logging.ERROR, logger="trivia_refiner.failures"):
        outcome = worker.run_one_batch()

    assert outcome == BatchOutcome.RELEASED
    assert repository.count_by_status(QuestionStatus.FAILED_RETRYABLE) == 2
    messages = [record.getMessage() for record in caplog.records]
    assert any("validation_failed" in message and "q001" in message for message in messages)
    assert any("Options not unique" in message for message in messages)
    assert any(re.search(r"item: q00[12] ", message) for message in messages)
    assert any('"matched_rule": "batch_validation"' in message for message in messages)


def test_unexpected_dispatch_exception_is_non_fatal(repository, seed, scripted_generator) -> None:
    seed(2)
    generator = scripted_generator([KeyError("surprise")])

    report = _worker(repository, generator).run()

    assert report.exit_reason == WorkerExit.DRAINED
    assert report.batches_released == 1
    assert report.items_committed == 2


def test_stop_requested_before_claiming(repository, seed, scripted_generator) -> None:
    seed(2)
    stop_event = threading.Event()
    stop_event.set()
    generator = scripted_generator()

    report = _worker(repository, generator, stop_event=stop_event).run()

    assert report.exit_reason == WorkerExit.STOP_REQUESTED
    assert generator.calls == []
    assert repository.count_pending() == 2


def test_batch_limit_stops_after_n_batches(repository, seed, scripted_generator) -> None:
    seed(6)

    report = _worker(repository, scripted_generator(), batch_limit=2).run()

    assert report.exit_reason == WorkerExit.BATCH_LIMIT
    assert report.items_committed == 4
    assert repository.count_pending() == 2


def test_store_failure_on_commit_releases_and_propagates(
    repository,
    seed,
    monkeypatch,
    scripted_generator,
) -> None:
    seed(2)

    def _broken_commit(batch, results):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(repository, "commit_batch", _broken_commit)
    worker = _worker(repository, scripted_generator())

    with pytest.raises(RuntimeError, match="disk I/O error"):
        worker.run()

    assert repository.count_by_status(QuestionStatus.CLAIMED) == 0
    assert repository.count_by_status(QuestionStatus.FAILED_RETRYABLE) == 2
    assert worker.batches_released == 1
    assert worker.progress.snapshot().failed_batches == 1
