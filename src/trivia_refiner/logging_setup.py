"""Package logging: console plus the processing and failed-batches log files."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from trivia_refiner.config import LogSettings

PACKAGE_LOGGER = "trivia_refiner"
FAILURES_LOGGER = "trivia_refiner.failures"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

_HANDLER_MARKER = "_trivia_refiner_handler"


def configure_logging(
    settings: LogSettings,
    *,
    console_level: int = logging.WARNING,
) -> list[logging.Handler]:
    """Attach package handlers, replacing any installed by a previous call."""

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    failures_logger = logging.getLogger(FAILURES_LOGGER)
    remove_handlers()
    package_logger.setLevel(logging.INFO)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    installed: list[logging.Handler] = [console]
    package_logger.addHandler(console)

    if settings.processing_log is not None:
        processing = _file_handler(settings.processing_log)
        package_logger.addHandler(processing)
        installed.append(processing)

    if settings.failed_log is not None:
        failed = _file_handler(settings.failed_log)
        failures_logger.addHandler(failed)
        installed.append(failed)

    for handler in installed:
        setattr(handler, _HANDLER_MARKER, True)
    return installed


def remove_handlers() -> None:
    """Detach and close handlers installed by ``configure_logging``."""

    for name in (PACKAGE_LOGGER, FAILURES_LOGGER):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            if getattr(handler, _HANDLER_MARKER, False):
                logger.removeHandler(handler)
                handler.close()


def _file_handler(path: Path) -> logging.FileHandler:
    if path.parent != Path():
        path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler
