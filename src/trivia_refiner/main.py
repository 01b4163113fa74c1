"""CLI entrypoint for trivia-refiner."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from trivia_refiner import __version__
from trivia_refiner.controllers import (
    CommandResult,
    ImportCommand,
    RefinerCliController,
    ResetStuckCommand,
    RunCommand,
    StatsCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RefinerCliController(echo=click.echo)

DB_OPTION_HELP = "SQLite DB path (default: TRIVIA_REFINER_DB_PATH or ./jeopardy.db)."


@click.group()
@click.version_option(version=__version__, prog_name="trivia-refiner")
def trivia_refiner() -> None:
    """Rewrite trivia clues into multiple-choice questions with a worker pool."""


@trivia_refiner.command("run")
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Concurrent workers.")
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Questions per request (default 100).",
)
@click.option(
    "--limit",
    "batch_limit",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum batches per worker.",
)
@click.option(
    "--delay",
    "delay_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait between batches (default 2).",
)
def run(  # noqa: PLR0913
    db_path: Path | None,
    workers: int | None,
    batch_size: int | None,
    batch_limit: int | None,
    delay_seconds: float | None,
) -> None:
    """Process every pending question until the queue drains.

    API keys come from `GEMINI_API_KEYS` (comma separated) or `GEMINI_API_KEY`.
    """

    _finish(
        _guarded(
            lambda: CONTROLLER.run(
                RunCommand(
                    db_path=db_path,
                    workers=workers,
                    batch_size=batch_size,
                    batch_limit=batch_limit,
                    delay_seconds=delay_seconds,
                ),
            ),
        ),
    )


@trivia_refiner.command("stats")
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
def stats(db_path: Path | None) -> None:
    """Show question counts per processing status."""

    _finish(_guarded(lambda: CONTROLLER.stats(StatsCommand(db_path=db_path))))


@trivia_refiner.command("reset-stuck")
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
def reset_stuck(db_path: Path | None) -> None:
    """Return questions left `claimed` by a crashed run to the queue."""

    _finish(_guarded(lambda: CONTROLLER.reset_stuck(ResetStuckCommand(db_path=db_path))))


@trivia_refiner.command("import")
@click.argument("source_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
def import_questions(source_path: Path, db_path: Path | None) -> None:
    """Load a JSON array of clue rows as unprocessed questions."""

    _finish(
        _guarded(
            lambda: CONTROLLER.import_questions(
                ImportCommand(db_path=db_path, source_path=source_path),
            ),
        ),
    )


def _guarded(action: Callable[[], CommandResult]) -> CommandResult:
    try:
        return action()
    except ValueError as error:
        return CommandResult(lines=[f"Error: {error}"], exit_code=1)


def _finish(result: CommandResult) -> None:
    for line in result.lines:
        click.echo(line, err=result.exit_code != 0 and line.startswith(("Error:", "FATAL")))
    if result.exit_code != 0:
        raise SystemExit(result.exit_code)


if __name__ == "__main__":  # pragma: no cover
    trivia_refiner()
