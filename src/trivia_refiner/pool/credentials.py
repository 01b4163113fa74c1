"""Shared API key pool with linearized exhaustion and rotation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Credential:
    """One access key and its position in the pool."""

    index: int
    key: str

    @property
    def label(self) -> str:
        """Human-readable 1-based label; the key itself is never logged."""

        return f"key {self.index + 1}"

    def __repr__(self) -> str:
        return f"Credential(index={self.index}, key='***')"


@dataclass(frozen=True, slots=True)
class RotationResult:
    """State of the pool after one exhaustion report."""

    rotated: bool
    exhausted_all: bool
    current_index: int
    available: int


class CredentialPool:
    """Ordered list of interchangeable keys; exactly one is current at a time."""

    def __init__(self, keys: Sequence[str]) -> None:
        if not keys:
            raise ValueError("Credential pool needs at least one key.")
        self._keys = tuple(keys)
        self._exhausted: set[int] = set()
        self._current = 0
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._keys)

    @property
    def available_count(self) -> int:
        with self._lock:
            return len(self._keys) - len(self._exhausted)

    @property
    def is_dead(self) -> bool:
        with self._lock:
            return len(self._exhausted) >= len(self._keys)

    def current(self) -> Credential:
        with self._lock:
            return Credential(index=self._current, key=self._keys[self._current])

    def report_exhausted(self, credential: Credential) -> RotationResult:
        """Mark ``credential`` exhausted and advance past it if it is still current.

        Reports are serialized. A worker whose credential was already rotated
        away by another worker does not advance the pool a second time.
        """

        with self._lock:
            newly_exhausted = credential.index not in self._exhausted
            self._exhausted.add(credential.index)
            available = len(self._keys) - len(self._exhausted)
            if newly_exhausted:
                logger.warning(
                    "API %s marked as exhausted (quota exceeded); remaining keys: %d/%d",
                    credential.label,
                    available,
                    len(self._keys),
                )
            if available == 0:
                return RotationResult(
                    rotated=False,
                    exhausted_all=True,
                    current_index=self._current,
                    available=0,
                )
            if self._current != credential.index:
                return RotationResult(
                    rotated=False,
                    exhausted_all=False,
                    current_index=self._current,
                    available=available,
                )

            previous = self._current
            candidate = previous
            for _ in range(len(self._keys)):
                candidate = (candidate + 1) % len(self._keys)
                if candidate not in self._exhausted:
                    break
            self._current = candidate
            logger.info(
                "Rotating API key: %d -> %d (of %d)",
                previous + 1,
                candidate + 1,
                len(self._keys),
            )
            return RotationResult(
                rotated=True,
                exhausted_all=False,
                current_index=candidate,
                available=available,
            )
