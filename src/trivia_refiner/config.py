"""Runtime configuration for the question rewriting pool."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(slots=True)
class PoolSettings:
    """Worker pool, pacing and retry settings."""

    workers: int = 1
    batch_size: int = 100
    batch_limit: int | None = None
    delay_seconds: float = 2.0
    overload_retry_cap: int = 10
    overload_retry_delay_seconds: float = 30.0
    key_rotation_delay_seconds: float = 5.0
    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class GeminiSettings:
    """Generation service settings."""

    api_keys: tuple[str, ...] = ()
    model: str = "gemini-2.5-flash"
    base_url: str = DEFAULT_GEMINI_BASE_URL
    request_timeout_seconds: float = 300.0
    temperature: float = 0.7
    max_output_tokens: int = 65_536


@dataclass(slots=True)
class LogSettings:
    """Log file locations."""

    processing_log: Path | None = Path("processing.log")
    failed_log: Path | None = Path("failed-batches.log")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path("jeopardy.db")
    pool: PoolSettings = field(default_factory=PoolSettings)
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    logs: LogSettings = field(default_factory=LogSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment variables, falling back to defaults."""

        return cls(
            db_path=db_path or Path(os.getenv("TRIVIA_REFINER_DB_PATH", "jeopardy.db")),
            pool=PoolSettings(
                workers=int(os.getenv("TRIVIA_REFINER_WORKERS", "1")),
                batch_size=int(os.getenv("TRIVIA_REFINER_BATCH_SIZE", "100")),
                batch_limit=_env_optional_int("TRIVIA_REFINER_BATCH_LIMIT"),
                delay_seconds=float(os.getenv("TRIVIA_REFINER_DELAY_SECONDS", "2.0")),
                overload_retry_cap=int(os.getenv("TRIVIA_REFINER_OVERLOAD_RETRY_CAP", "10")),
                overload_retry_delay_seconds=float(
                    os.getenv("TRIVIA_REFINER_OVERLOAD_RETRY_DELAY_SECONDS", "30.0"),
                ),
                key_rotation_delay_seconds=float(
                    os.getenv("TRIVIA_REFINER_KEY_ROTATION_DELAY_SECONDS", "5.0"),
                ),
                sqlite_busy_timeout_ms=int(
                    os.getenv("TRIVIA_REFINER_SQLITE_BUSY_TIMEOUT_MS", "5000"),
                ),
            ),
            gemini=GeminiSettings(
                api_keys=_collect_api_keys(),
                model=os.getenv("TRIVIA_REFINER_GEMINI_MODEL", "gemini-2.5-flash"),
                base_url=os.getenv("TRIVIA_REFINER_GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
                request_timeout_seconds=float(
                    os.getenv("TRIVIA_REFINER_GEMINI_TIMEOUT_SECONDS", "300.0"),
                ),
                temperature=float(os.getenv("TRIVIA_REFINER_GEMINI_TEMPERATURE", "0.7")),
                max_output_tokens=int(
                    os.getenv("TRIVIA_REFINER_GEMINI_MAX_OUTPUT_TOKENS", "65536"),
                ),
            ),
            logs=LogSettings(
                processing_log=_env_optional_path(
                    "TRIVIA_REFINER_PROCESSING_LOG", "processing.log",
                ),
                failed_log=_env_optional_path("TRIVIA_REFINER_FAILED_LOG", "failed-batches.log"),
            ),
        )

    def validate_for_run(self) -> None:
        """Raise configuration error if the pool cannot be started with these settings."""

        if not str(self.db_path).strip():
            raise ValueError("Database path cannot be empty (TRIVIA_REFINER_DB_PATH / --db).")
        if not self.gemini.api_keys:
            raise ValueError(
                "At least one API key is required. Set GEMINI_API_KEYS or GEMINI_API_KEY.",
            )
        pool = self.pool
        if pool.workers <= 0:
            raise ValueError("TRIVIA_REFINER_WORKERS must be a positive integer.")
        if pool.batch_size <= 0:
            raise ValueError("TRIVIA_REFINER_BATCH_SIZE must be a positive integer.")
        if pool.batch_limit is not None and pool.batch_limit <= 0:
            raise ValueError("TRIVIA_REFINER_BATCH_LIMIT must be a positive integer.")
        if pool.delay_seconds < 0:
            raise ValueError("TRIVIA_REFINER_DELAY_SECONDS must be >= 0.")
        if pool.overload_retry_cap < 0:
            raise ValueError("TRIVIA_REFINER_OVERLOAD_RETRY_CAP must be >= 0.")
        if pool.overload_retry_delay_seconds < 0:
            raise ValueError("TRIVIA_REFINER_OVERLOAD_RETRY_DELAY_SECONDS must be >= 0.")
        if pool.key_rotation_delay_seconds < 0:
            raise ValueError("TRIVIA_REFINER_KEY_ROTATION_DELAY_SECONDS must be >= 0.")
        if self.gemini.request_timeout_seconds <= 0:
            raise ValueError("TRIVIA_REFINER_GEMINI_TIMEOUT_SECONDS must be > 0.")


def _collect_api_keys() -> tuple[str, ...]:
    values: list[str] = []
    csv_list = os.getenv("GEMINI_API_KEYS", "").strip()
    if csv_list:
        values.extend(part.strip() for part in csv_list.split(","))
    single = os.getenv("GEMINI_API_KEY", "").strip()
    if single:
        values.append(single)
    return normalize_api_keys(values)


def normalize_api_keys(values: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """Drop blanks and duplicates while preserving rotation order."""

    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_optional_path(name: str, default: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None:
        return Path(default)
    normalized = raw.strip()
    if not normalized or normalized.lower() in {"0", "off", "none"}:
        return None
    return Path(normalized)
