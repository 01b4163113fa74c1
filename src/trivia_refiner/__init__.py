"""Batch rewriting of trivia clues through a crash-safe SQLite work queue."""

__version__ = "0.1.0"
