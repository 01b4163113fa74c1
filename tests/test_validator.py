from __future__ import annotations

import allure

from trivia_refiner.generation.validator import sanitize_batch, validate_batch, validate_result
from trivia_refiner.queue.models import ProcessedQuestion

pytestmark = [
    allure.epic("Batch Rewriting"),
    allure.feature("Response Validation"),
]


def _result(item_id: str = "q1", **overrides) -> ProcessedQuestion:
    values = {
        "question": "What is the capital of France?",
        "a": "Paris",
        "b": "Lyon",
        "c": "Marseille",
        "d": "Nice",
        "metadata": None,
    }
    values.update(overrides)
    return ProcessedQuestion(id=item_id, **values)


def test_valid_result_passes() -> None:
    outcome = validate_result(_result(metadata='{"issue": "renamed"}'))

    assert outcome.is_valid
    assert outcome.reason is None


def test_duplicate_options_fail() -> None:
    outcome = validate_result(_result(d="Paris"))

    assert not outcome.is_valid
    assert outcome.reason == "Options not unique for question q1"
    assert outcome.item_id == "q1"


def test_blank_option_fails() -> None:
    outcome = validate_result(_result(c="   "))

    assert not outcome.is_valid
    assert outcome.reason == "Empty option found for question q1"


def test_invalid_metadata_fails_without_sanitizing() -> None:
    outcome = validate_result(_result(metadata="{not json"))

    assert not outcome.is_valid
    assert "Invalid JSON metadata" in (outcome.reason or "")


def test_sanitize_strips_only_invalid_metadata() -> None:
    sanitized = sanitize_batch(
        [
            _result("q1", metadata="{not json"),
            _result("q2", metadata='{"ambiguous": "two answers"}'),
            _result("q3"),
        ],
    )

    assert [item.metadata for item in sanitized] == [None, '{"ambiguous": "two answers"}', None]
    assert validate_batch(sanitized).is_valid


def test_validate_batch_reports_first_failure() -> None:
    outcome = validate_batch([_result("q1"), _result("q2", b="Paris"), _result("q3", c="")])

    assert not outcome.is_valid
    assert outcome.reason == "Options not unique for question q2"
    assert outcome.item_id == "q2"
