"""Persistent work queue over the ``questions`` table."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from trivia_refiner.queue.models import (
    PENDING_STATUSES,
    Batch,
    ProcessedQuestion,
    QuestionCreate,
    QuestionStatus,
    QuestionView,
)
from trivia_refiner.storage.alembic_runner import upgrade_head
from trivia_refiner.storage.common import build_sqlite_engine, utc_now
from trivia_refiner.storage.sqlmodel_models import Question


class BatchSizeMismatchError(ValueError):
    """Commit called with a result list whose length differs from the batch."""


class UnknownResultIdError(ValueError):
    """Commit called with a result that does not belong to the batch."""


class ClaimLostError(RuntimeError):
    """Claimed rows changed status underneath the worker holding them."""


class QuestionQueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    The store is the only lock: every status transition happens inside one
    ``BEGIN IMMEDIATE`` transaction, so concurrent claims never overlap.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def add_questions(self, items: Iterable[QuestionCreate]) -> int:
        """Insert clues as unprocessed work items; ids already stored are skipped."""

        now = utc_now()
        inserted = 0
        with Session(self.engine) as session:
            existing = set(session.exec(select(Question.id)).all())
            for item in items:
                if item.id in existing:
                    continue
                existing.add(item.id)
                session.add(
                    Question(
                        id=item.id,
                        round=item.round,
                        clue_value=item.clue_value,
                        daily_double_value=item.daily_double_value,
                        category=item.category,
                        comments=item.comments,
                        question=item.question,
                        a=item.a,
                        air_date=item.air_date,
                        notes=item.notes,
                        original_question=(
                            item.original_question
                            if item.original_question is not None
                            else item.question
                        ),
                        processing_status=QuestionStatus.UNPROCESSED.value,
                        updated_at=now,
                    ),
                )
                inserted += 1
            session.commit()
        return inserted

    def claim_batch(self, size: int, *, worker_id: str) -> Batch:
        """Atomically move up to ``size`` pending items to ``claimed``.

        An empty batch means no work is left; it is not an error.
        """

        if size <= 0:
            raise ValueError(f"Batch size must be positive, got {size}")

        claim_token = uuid4().hex
        pending = [status.value for status in PENDING_STATUSES]
        with Session(self.engine) as session:
            candidate_ids = session.exec(
                select(Question.id)
                .where(col(Question.processing_status).in_(pending))
                .limit(size),
            ).all()
            if not candidate_ids:
                session.rollback()
                return Batch(claim_token=claim_token, worker_id=worker_id, items=[])

            session.exec(
                sa_update(Question)
                .where(
                    col(Question.id).in_(candidate_ids),
                    col(Question.processing_status).in_(pending),
                )
                .values(
                    processing_status=QuestionStatus.CLAIMED.value,
                    claim_token=claim_token,
                    claimed_by=worker_id,
                    updated_at=utc_now(),
                ),
            )
            rows = session.exec(
                select(Question).where(Question.claim_token == claim_token),
            ).all()
            items = [_to_question_view(row) for row in rows]
            session.commit()

        order = {question_id: index for index, question_id in enumerate(candidate_ids)}
        items.sort(key=lambda item: order.get(item.id, len(order)))
        return Batch(claim_token=claim_token, worker_id=worker_id, items=items)

    def commit_batch(self, batch: Batch, results: Sequence[ProcessedQuestion]) -> int:
        """Write rewritten fields and mark every item in ``batch`` as done."""

        if len(results) != len(batch):
            raise BatchSizeMismatchError(
                f"Expected {len(batch)} results for batch, got {len(results)}",
            )
        batch_ids = set(batch.ids)
        unknown = [result.id for result in results if result.id not in batch_ids]
        if unknown or len({result.id for result in results}) != len(batch_ids):
            raise UnknownResultIdError(
                f"Results do not match claimed ids: unknown={unknown}",
            )
        if not results:
            return 0

        now = utc_now()
        updated = 0
        with Session(self.engine) as session:
            for result in results:
                outcome = session.exec(
                    sa_update(Question)
                    .where(
                        col(Question.id) == result.id,
                        col(Question.claim_token) == batch.claim_token,
                        col(Question.processing_status) == QuestionStatus.CLAIMED.value,
                    )
                    .values(
                        {
                            Question.question: result.question,
                            Question.a: result.a,
                            Question.b: result.b,
                            Question.c: result.c,
                            Question.d: result.d,
                            Question.metadata_json: result.metadata or "",
                            Question.processing_status: QuestionStatus.DONE.value,
                            Question.claim_token: None,
                            Question.claimed_by: None,
                            Question.updated_at: now,
                        },
                    ),
                )
                updated += outcome.rowcount
            if updated != len(results):
                session.rollback()
                raise ClaimLostError(
                    "Claimed items changed state concurrently while committing; "
                    f"updated={updated} expected={len(results)} ids={batch.ids}",
                )
            session.commit()
        return updated

    def release_batch(self, batch: Batch) -> int:
        """Return claimed items to the schedulable pool as ``failed_retryable``."""

        if not batch:
            return 0
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(Question)
                .where(
                    col(Question.id).in_(batch.ids),
                    col(Question.claim_token) == batch.claim_token,
                    col(Question.processing_status) == QuestionStatus.CLAIMED.value,
                )
                .values(
                    processing_status=QuestionStatus.FAILED_RETRYABLE.value,
                    claim_token=None,
                    claimed_by=None,
                    updated_at=utc_now(),
                ),
            )
            session.commit()
            return outcome.rowcount

    def reset_stuck_items(self) -> int:
        """Flip items left ``claimed`` by a crashed run back to ``unprocessed``."""

        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(Question)
                .where(col(Question.processing_status) == QuestionStatus.CLAIMED.value)
                .values(
                    processing_status=QuestionStatus.UNPROCESSED.value,
                    claim_token=None,
                    claimed_by=None,
                    updated_at=utc_now(),
                ),
            )
            session.commit()
            return outcome.rowcount

    def count_total(self) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.count()).select_from(Question)).one()

    def count_by_status(self, status: QuestionStatus) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(Question)
                .where(col(Question.processing_status) == status.value),
            ).one()

    def count_pending(self) -> int:
        """Items a claim can still pick up: unprocessed plus failed_retryable."""

        pending = [status.value for status in PENDING_STATUSES]
        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(Question)
                .where(col(Question.processing_status).in_(pending)),
            ).one()

    def status_counts(self) -> dict[str, int]:
        """Point-in-time row counts grouped by raw status value."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Question.processing_status, func.count()).group_by(
                    col(Question.processing_status),
                ),
            ).all()
        return {str(status): int(count) for status, count in rows}

    def get_question(self, question_id: str) -> QuestionView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Question).where(Question.id == question_id),
            ).one_or_none()
            if row is None:
                return None
            return _to_question_view(row)


def _to_question_view(row: Question) -> QuestionView:
    return QuestionView(
        id=row.id,
        category=row.category or "",
        air_date=row.air_date or "",
        question=row.question or "",
        a=row.a or "",
        b=row.b or "",
        c=row.c or "",
        d=row.d or "",
        metadata=row.metadata_json or "",
        original_question=row.original_question or "",
        status=QuestionStatus(row.processing_status),
        claimed_by=row.claimed_by,
    )
