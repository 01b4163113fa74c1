"""Deterministic dispatch failure classification for the worker retry policy."""

from __future__ import annotations

import re
from dataclasses import dataclass

from trivia_refiner.generation.errors import (
    GenerationServiceError,
    GenerationTransportError,
    ResponseFormatError,
)
from trivia_refiner.queue.models import FailureKind

FAILURE_CLASSIFIER_VERSION = 1

HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503
HTTP_SERVER_ERROR_MIN = 500
HTTP_SERVER_ERROR_MAX = 599

_QUOTA_PATTERNS: tuple[str, ...] = (
    "429",
    "quota",
    "resource_exhausted",
)
_OVERLOAD_PATTERNS: tuple[str, ...] = (
    "503",
    "overloaded",
    "unavailable",
)
_TRANSPORT_PATTERNS: tuple[str, ...] = (
    "network",
    "econnrefused",
    "enotfound",
    "timed out",
)
_SERVER_ERROR_RE = re.compile(r"status\D{0,20}5\d\d")


class BatchValidationError(ValueError):
    """Generated results are unusable for the claimed batch."""

    def __init__(self, message: str, *, item_id: str | None = None) -> None:
        super().__init__(message)
        self.item_id = item_id


@dataclass(slots=True)
class DispatchFailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    delay_seconds: float
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def stops_pool(self) -> bool:
        return self.kind == FailureKind.FATAL

    def to_log_details(self) -> dict[str, object]:
        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "kind": self.kind.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_dispatch_failure(  # noqa: PLR0911
    error: BaseException,
    *,
    consecutive_overloads: int,
    overload_retry_cap: int,
    overload_retry_delay_seconds: float,
) -> DispatchFailureClassification:
    """Classify one failed dispatch.

    ``consecutive_overloads`` is the number of overloads seen in a row before
    this failure; the ``overload_retry_cap + 1``-th consecutive overload is fatal.
    """

    if isinstance(error, BatchValidationError):
        return DispatchFailureClassification(
            kind=FailureKind.VALIDATION_FAILED,
            delay_seconds=0.0,
            reason_code="validation_failed",
            matched_rule="batch_validation",
            matched_pattern=None,
        )

    if isinstance(error, GenerationServiceError):
        status = error.status_code
        if status == HTTP_TOO_MANY_REQUESTS:
            return _credential_exhausted(matched_rule="status_429", pattern=None)
        if status == HTTP_SERVICE_UNAVAILABLE:
            return _overload(
                matched_rule="status_503",
                pattern=None,
                consecutive_overloads=consecutive_overloads,
                overload_retry_cap=overload_retry_cap,
                overload_retry_delay_seconds=overload_retry_delay_seconds,
            )
        if HTTP_SERVER_ERROR_MIN <= status <= HTTP_SERVER_ERROR_MAX:
            return DispatchFailureClassification(
                kind=FailureKind.FATAL,
                delay_seconds=0.0,
                reason_code="server_error",
                matched_rule="status_5xx",
                matched_pattern=None,
            )

    if isinstance(error, GenerationTransportError):
        return DispatchFailureClassification(
            kind=FailureKind.FATAL,
            delay_seconds=0.0,
            reason_code="transport_timeout" if error.timed_out else "transport_failure",
            matched_rule="transport",
            matched_pattern=None,
        )

    if isinstance(error, ResponseFormatError):
        return DispatchFailureClassification(
            kind=FailureKind.NON_FATAL,
            delay_seconds=0.0,
            reason_code="malformed_response",
            matched_rule="response_format",
            matched_pattern=None,
        )

    haystack = str(error).lower()

    pattern = _first_match(haystack, _QUOTA_PATTERNS)
    if pattern is not None:
        return _credential_exhausted(matched_rule="quota_message", pattern=pattern)

    pattern = _first_match(haystack, _OVERLOAD_PATTERNS)
    if pattern is not None:
        return _overload(
            matched_rule="overload_message",
            pattern=pattern,
            consecutive_overloads=consecutive_overloads,
            overload_retry_cap=overload_retry_cap,
            overload_retry_delay_seconds=overload_retry_delay_seconds,
        )

    server_error = _SERVER_ERROR_RE.search(haystack)
    if server_error is not None:
        return DispatchFailureClassification(
            kind=FailureKind.FATAL,
            delay_seconds=0.0,
            reason_code="server_error",
            matched_rule="server_error_message",
            matched_pattern=server_error.group(0),
        )

    pattern = _first_match(haystack, _TRANSPORT_PATTERNS)
    if pattern is not None:
        return DispatchFailureClassification(
            kind=FailureKind.FATAL,
            delay_seconds=0.0,
            reason_code="transport_failure",
            matched_rule="transport_message",
            matched_pattern=pattern,
        )

    return DispatchFailureClassification(
        kind=FailureKind.NON_FATAL,
        delay_seconds=0.0,
        reason_code="unclassified",
        matched_rule="fallback_non_fatal",
        matched_pattern=None,
    )


def _credential_exhausted(
    *, matched_rule: str, pattern: str | None,
) -> DispatchFailureClassification:
    return DispatchFailureClassification(
        kind=FailureKind.CREDENTIAL_EXHAUSTED,
        delay_seconds=0.0,
        reason_code="quota_exceeded",
        matched_rule=matched_rule,
        matched_pattern=pattern,
    )


def _overload(
    *,
    matched_rule: str,
    pattern: str | None,
    consecutive_overloads: int,
    overload_retry_cap: int,
    overload_retry_delay_seconds: float,
) -> DispatchFailureClassification:
    if consecutive_overloads + 1 > overload_retry_cap:
        return DispatchFailureClassification(
            kind=FailureKind.FATAL,
            delay_seconds=0.0,
            reason_code="overload_retries_exhausted",
            matched_rule=matched_rule,
            matched_pattern=pattern,
        )
    return DispatchFailureClassification(
        kind=FailureKind.RETRYABLE,
        delay_seconds=overload_retry_delay_seconds,
        reason_code="service_overloaded",
        matched_rule=matched_rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
