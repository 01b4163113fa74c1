from __future__ import annotations

import allure

from trivia_refiner.pool.progress import ProgressTracker, format_duration

pytestmark = [
    allure.epic("Batch Rewriting"),
    allure.feature("Progress Reporting"),
]


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _tracker(clock: _Clock) -> ProgressTracker:
    return ProgressTracker(
        total_items=1_000,
        unprocessed_items=250,
        batch_size=100,
        worker_ids=["1", "2"],
        clock=clock,
    )


def test_format_duration() -> None:
    assert format_duration(5.9) == "5s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3_725) == "1h 2m"
    assert format_duration(-3) == "0s"


def test_counters_start_from_already_done_items() -> None:
    snapshot = _tracker(_Clock()).snapshot()

    assert snapshot.total_batches == 3
    assert snapshot.items_processed == 750
    assert snapshot.items_processed_this_run == 0


def test_batch_outcomes_update_per_worker_tallies() -> None:
    tracker = _tracker(_Clock())

    assert tracker.start_batch("1") == 1
    assert tracker.start_batch("2") == 2
    tracker.complete_batch("1", 100)
    tracker.fail_batch("2")

    snapshot = tracker.snapshot()
    assert snapshot.items_processed == 850
    assert snapshot.failed_batches == 1
    assert snapshot.workers["1"].completed == 1
    assert snapshot.workers["1"].items_processed == 100
    assert snapshot.workers["2"].failed == 1
    assert snapshot.items_processed_this_run == 100


def test_progress_display_is_throttled() -> None:
    clock = _Clock()
    tracker = _tracker(clock)
    tracker.start_batch("1")

    first = tracker.render_progress()
    clock.now += 0.5
    throttled = tracker.render_progress()
    clock.now += 0.6
    later = tracker.render_progress()

    assert first is not None
    assert first[0].startswith("Progress: 750/1,000 (33%) | Batches: 1/3 | Failed: 0")
    assert throttled is None
    assert later is not None
    assert tracker.render_progress(force=True) is not None


def test_summary_lists_workers() -> None:
    clock = _Clock()
    tracker = _tracker(clock)
    tracker.start_batch("1")
    tracker.complete_batch("1", 100)
    clock.now += 65

    lines = tracker.render_summary()

    assert lines[0] == "Processing complete!"
    assert "Processed: 850 questions" in lines
    assert "Failed batches: 0" in lines
    assert "Time: 1m 5s" in lines
    assert "  Worker 1: 100 questions (1 batches, 0 failed)" in lines
    assert "  Worker 2: 0 questions (0 batches, 0 failed)" in lines
