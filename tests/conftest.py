"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest

from trivia_refiner.pool.credentials import Credential
from trivia_refiner.queue.models import ProcessedQuestion, QuestionCreate, QuestionView
from trivia_refiner.queue.repository import QuestionQueueRepository


def _rewrite(item: QuestionView) -> ProcessedQuestion:
    """Deterministic valid rewrite of one clue."""

    return ProcessedQuestion(
        id=item.id,
        question=f"Which answer fits: {item.question}?",
        a=item.a,
        b=f"{item.a} (wrong 1)",
        c=f"{item.a} (wrong 2)",
        d=f"{item.a} (wrong 3)",
        metadata=None,
    )


class _ScriptedGenerator:
    """Generator that raises scripted errors in call order, then echoes valid rewrites."""

    def __init__(self, script: Sequence[BaseException | None] = ()) -> None:
        self.script = list(script)
        self.calls: list[tuple[list[str], int]] = []
        self._lock = threading.Lock()

    def generate(
        self,
        batch: Sequence[QuestionView],
        credential: Credential,
    ) -> list[ProcessedQuestion]:
        with self._lock:
            self.calls.append(([item.id for item in batch], credential.index))
            step = self.script.pop(0) if self.script else None
        if step is not None:
            raise step
        return [_rewrite(item) for item in batch]


def _make_questions(count: int, *, prefix: str = "q") -> list[QuestionCreate]:
    return [
        QuestionCreate(
            id=f"{prefix}{index:03d}",
            question=f"This river flows through city number {index}",
            a=f"River {index}",
            category="GEOGRAPHY",
            air_date="1999-09-10",
            round=1,
            clue_value=200,
        )
        for index in range(1, count + 1)
    ]


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[QuestionQueueRepository]:
    repo = QuestionQueueRepository(tmp_path / "queue.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def seed(repository: QuestionQueueRepository) -> Callable[[int], list[str]]:
    def _seed(count: int) -> list[str]:
        items = _make_questions(count)
        repository.add_questions(items)
        return [item.id for item in items]

    return _seed


@pytest.fixture()
def scripted_generator() -> type[_ScriptedGenerator]:
    return _ScriptedGenerator


@pytest.fixture()
def rewrite_clue() -> Callable[[QuestionView], ProcessedQuestion]:
    return _rewrite


@pytest.fixture()
def question_factory() -> Callable[..., list[QuestionCreate]]:
    return _make_questions
