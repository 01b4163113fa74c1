"""Controllers for trivia-refiner CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from trivia_refiner.config import Settings
from trivia_refiner.generation.base import BatchGenerator
from trivia_refiner.generation.gemini import GeminiClient
from trivia_refiner.logging_setup import configure_logging
from trivia_refiner.pool.coordinator import WorkerPool
from trivia_refiner.pool.credentials import CredentialPool
from trivia_refiner.queue.models import PENDING_STATUSES, QuestionCreate, QuestionStatus
from trivia_refiner.queue.repository import QuestionQueueRepository

GeneratorFactory = Callable[[Settings], BatchGenerator]


@dataclass(slots=True)
class RunCommand:
    """CLI input for a full pool run; ``None`` keeps the environment value."""

    db_path: Path | None
    workers: int | None = None
    batch_size: int | None = None
    batch_limit: int | None = None
    delay_seconds: float | None = None


@dataclass(slots=True)
class StatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class ResetStuckCommand:
    db_path: Path | None


@dataclass(slots=True)
class ImportCommand:
    """CLI input for loading clue rows from a JSON array file."""

    db_path: Path | None
    source_path: Path


@dataclass(slots=True)
class CommandResult:
    lines: list[str] = field(default_factory=list)
    exit_code: int = 0


class RefinerCliController:
    """Coordinates queue inspection, import, and pool runs for the CLI."""

    def __init__(
        self,
        *,
        generator_factory: GeneratorFactory | None = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.generator_factory = generator_factory or _gemini_generator
        self.echo = echo

    def run(self, command: RunCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        pool_settings = settings.pool
        if command.workers is not None:
            pool_settings.workers = command.workers
        if command.batch_size is not None:
            pool_settings.batch_size = command.batch_size
        if command.batch_limit is not None:
            pool_settings.batch_limit = command.batch_limit
        if command.delay_seconds is not None:
            pool_settings.delay_seconds = command.delay_seconds
        settings.validate_for_run()
        configure_logging(settings.logs)

        self._emit("Initializing database...")
        generator = self.generator_factory(settings)
        try:
            with _repository(settings) as repository:
                pool = WorkerPool(
                    repository=repository,
                    generator=generator,
                    credentials=CredentialPool(settings.gemini.api_keys),
                    settings=pool_settings,
                    echo=self.echo,
                )
                with pool.signal_handlers():
                    summary = pool.run(pool_settings.workers)
        except SQLAlchemyError as error:
            return CommandResult(
                lines=[f"FATAL ERROR: database failure: {error}"],
                exit_code=1,
            )
        finally:
            _close(generator)

        lines = list(summary.summary_lines)
        if summary.stop_requested and summary.fatal_reason is None:
            lines.append("Stopped on request; unfinished questions stay queued.")
        if summary.fatal_reason is not None:
            lines.append(f"FATAL ERROR: {summary.fatal_reason}")
        return CommandResult(lines=lines, exit_code=summary.exit_code)

    def stats(self, command: StatsCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            counts = repository.status_counts()
        total = sum(counts.values())
        pending = sum(counts.get(status.value, 0) for status in PENDING_STATUSES)
        lines = [
            f"Database: {settings.db_path}",
            f"Total questions: {total:,}",
        ]
        known = [status.value for status in QuestionStatus]
        lines.extend(f"  {status}: {counts.get(status, 0):,}" for status in known)
        lines.extend(
            f"  {status} (unknown): {count:,}"
            for status, count in sorted(counts.items())
            if status not in known
        )
        lines.append(f"Pending: {pending:,}")
        return CommandResult(lines=lines)

    def reset_stuck(self, command: ResetStuckCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            reset = repository.reset_stuck_items()
        return CommandResult(lines=[f"Reset {reset} stuck questions to unprocessed"])

    def import_questions(self, command: ImportCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        items = load_question_rows(command.source_path)
        with _repository(settings) as repository:
            inserted = repository.add_questions(items)
        return CommandResult(
            lines=[
                f"Imported {inserted} questions from {command.source_path} "
                f"({len(items) - inserted} already present)",
            ],
        )

    def _emit(self, line: str) -> None:
        if self.echo is not None:
            self.echo(line)


def load_question_rows(path: Path) -> list[QuestionCreate]:
    """Parse a JSON array of clue rows; raises ``ValueError`` on bad input."""

    try:
        raw = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"{path} is not valid JSON: {error}") from error
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON array of question objects.")
    return [_to_question_create(row, position) for position, row in enumerate(raw)]


def _to_question_create(row: Any, position: int) -> QuestionCreate:
    if not isinstance(row, dict):
        raise ValueError(f"Row #{position} is not a JSON object.")
    for name in ("id", "question", "a"):
        if row.get(name) in (None, ""):
            raise ValueError(f"Row #{position} is missing required field {name!r}.")
    return QuestionCreate(
        id=str(row["id"]),
        question=str(row["question"]),
        a=str(row["a"]),
        category=str(row.get("category") or ""),
        air_date=str(row.get("air_date") or ""),
        round=_optional_int(row.get("round")),
        clue_value=_optional_int(row.get("clue_value")),
        daily_double_value=_optional_int(row.get("daily_double_value")),
        comments=str(row.get("comments") or ""),
        notes=str(row.get("notes") or ""),
        original_question=row.get("original_question"),
    )


def _optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def _gemini_generator(settings: Settings) -> BatchGenerator:
    return GeminiClient.from_settings(settings.gemini)


def _close(generator: BatchGenerator) -> None:
    close = getattr(generator, "close", None)
    if callable(close):
        close()


@contextmanager
def _repository(settings: Settings) -> Iterator[QuestionQueueRepository]:
    repository = QuestionQueueRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.pool.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
