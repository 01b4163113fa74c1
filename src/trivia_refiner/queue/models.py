"""Domain models for the question work queue."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class QuestionStatus(str, Enum):
    """Durable work item states stored in ``questions.processing_status``."""

    UNPROCESSED = "unprocessed"
    CLAIMED = "claimed"
    DONE = "done"
    FAILED_RETRYABLE = "failed_retryable"


PENDING_STATUSES: tuple[QuestionStatus, ...] = (
    QuestionStatus.UNPROCESSED,
    QuestionStatus.FAILED_RETRYABLE,
)


class FailureKind(str, Enum):
    """Normalized dispatch failure kinds used by the worker state machine."""

    VALIDATION_FAILED = "validation_failed"
    CREDENTIAL_EXHAUSTED = "credential_exhausted"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    NON_FATAL = "non_fatal"


@dataclass(slots=True)
class QuestionCreate:
    """Input payload for importing one clue into the queue."""

    id: str
    question: str
    a: str
    category: str = ""
    air_date: str = ""
    round: int | None = None
    clue_value: int | None = None
    daily_double_value: int | None = None
    comments: str = ""
    notes: str = ""
    original_question: str | None = None


@dataclass(slots=True)
class QuestionView:
    """Readable queue row carrying the payload needed to build a request."""

    id: str
    category: str
    air_date: str
    question: str
    a: str
    b: str
    c: str
    d: str
    metadata: str
    original_question: str
    status: QuestionStatus
    claimed_by: str | None


@dataclass(slots=True)
class ProcessedQuestion:
    """One rewritten question returned by the generation service."""

    id: str
    question: str
    a: str
    b: str
    c: str
    d: str
    metadata: str | None = None


@dataclass(slots=True)
class Batch:
    """Items claimed together in one transaction; lives only between claim and commit."""

    claim_token: str
    worker_id: str
    items: list[QuestionView]

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)
