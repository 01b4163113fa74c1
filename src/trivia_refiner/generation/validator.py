"""Payload validation for rewritten multiple-choice questions."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, replace

from trivia_refiner.queue.models import ProcessedQuestion

OPTION_COUNT = 4


@dataclass(slots=True)
class ValidationResult:
    """Result of payload validation."""

    is_valid: bool
    reason: str | None = None
    item_id: str | None = None


def sanitize_batch(results: Sequence[ProcessedQuestion]) -> list[ProcessedQuestion]:
    """Strip free-form metadata that is not valid JSON instead of rejecting the item."""

    sanitized: list[ProcessedQuestion] = []
    for result in results:
        if result.metadata and not _is_json(result.metadata):
            sanitized.append(replace(result, metadata=None))
        else:
            sanitized.append(result)
    return sanitized


def validate_result(result: ProcessedQuestion) -> ValidationResult:
    options = [result.a, result.b, result.c, result.d]
    if len(set(options)) != OPTION_COUNT:
        return ValidationResult(
            is_valid=False,
            reason=f"Options not unique for question {result.id}",
            item_id=result.id,
        )
    if any(not option or not option.strip() for option in options):
        return ValidationResult(
            is_valid=False,
            reason=f"Empty option found for question {result.id}",
            item_id=result.id,
        )
    if result.metadata and not _is_json(result.metadata):
        return ValidationResult(
            is_valid=False,
            reason=f"Invalid JSON metadata for question {result.id}",
            item_id=result.id,
        )
    return ValidationResult(is_valid=True)


def validate_batch(results: Sequence[ProcessedQuestion]) -> ValidationResult:
    """Return the first failing item's result, or a passing result."""

    for result in results:
        outcome = validate_result(result)
        if not outcome.is_valid:
            return outcome
    return ValidationResult(is_valid=True)


def _is_json(raw: str) -> bool:
    try:
        json.loads(raw)
    except ValueError:
        return False
    return True
