"""Generation backend interface consumed by pool workers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from trivia_refiner.pool.credentials import Credential
from trivia_refiner.queue.models import ProcessedQuestion, QuestionView


class BatchGenerator(Protocol):
    """Protocol implemented by generation service clients."""

    def generate(
        self,
        batch: Sequence[QuestionView],
        credential: Credential,
    ) -> list[ProcessedQuestion]:
        """Rewrite one batch of clues using the given access credential."""
