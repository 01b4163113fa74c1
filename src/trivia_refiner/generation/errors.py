"""Errors raised by generation service clients."""

from __future__ import annotations


class GenerationError(RuntimeError):
    """Base error for a failed batch dispatch."""


class GenerationServiceError(GenerationError):
    """Service answered with a non-success HTTP status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationTransportError(GenerationError):
    """Request never produced a response: connectivity failure or timeout."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class ResponseFormatError(GenerationError):
    """Response arrived but its envelope or JSON payload is unusable."""

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response
