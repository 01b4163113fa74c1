"""Gemini ``generateContent`` client that rewrites clues into multiple-choice questions."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from trivia_refiner.config import DEFAULT_GEMINI_BASE_URL, GeminiSettings
from trivia_refiner.generation.errors import (
    GenerationServiceError,
    GenerationTransportError,
    ResponseFormatError,
)
from trivia_refiner.pool.credentials import Credential
from trivia_refiner.queue.models import ProcessedQuestion, QuestionView

logger = logging.getLogger(__name__)

FINISH_REASON_STOP = "STOP"
_ERROR_BODY_LIMIT = 2_000
_REQUIRED_FIELDS = ("question", "a", "b", "c", "d")

SYSTEM_PROMPT = """You are a quiz question formatter. Convert Jeopardy-style clues into proper multiple-choice questions.

REQUIREMENTS:
1. Reword the question to be in question form (not answer form)
2. Keep the answer in field 'a' correct
3. If the answer is outdated or incorrect (time has passed), update field 'a' and add metadata: {"issue": "explanation"}
4. Generate 3 plausible but clearly incorrect distractors for b, c, d
5. If question is ambiguous, unclear, or problematic, add metadata: {"ambiguous": "reason"}
6. Return ONLY a JSON array, no additional text

OUTPUT FORMAT:
[
  {
    "id": "question_id",
    "question": "Properly formatted question?",
    "a": "Correct answer",
    "b": "Plausible distractor 1",
    "c": "Plausible distractor 2",
    "d": "Plausible distractor 3",
    "metadata": "Optional JSON string if issues found"
  }
]

QUESTIONS:
"""  # noqa: E501


class GeminiClient:
    """Batch generator backed by the Gemini REST API."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        model: str = "gemini-2.5-flash",
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout_seconds: float = 300.0,
        temperature: float = 0.7,
        max_output_tokens: int = 65_536,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._endpoint = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: GeminiSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> GeminiClient:
        return cls(
            model=settings.model,
            base_url=settings.base_url,
            timeout_seconds=settings.request_timeout_seconds,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GeminiClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def generate(
        self,
        batch: Sequence[QuestionView],
        credential: Credential,
    ) -> list[ProcessedQuestion]:
        """Send one batch and return the parsed, unvalidated results."""

        payload = {
            "contents": [{"parts": [{"text": build_prompt(batch)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        try:
            response = self._client.post(
                self._endpoint,
                params={"key": credential.key},
                json=payload,
            )
        except httpx.TimeoutException as error:
            raise GenerationTransportError(
                f"Request to Gemini timed out using {credential.label}",
                timed_out=True,
            ) from error
        except httpx.HTTPError as error:
            raise GenerationTransportError(
                f"Network error calling Gemini: {type(error).__name__}: {error}",
            ) from error

        if not response.is_success:
            raise GenerationServiceError(
                f"Gemini API error ({response.status_code}): {response.text[:_ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
            )

        try:
            envelope = response.json()
        except ValueError as error:
            raise ResponseFormatError(
                "Gemini API returned a non-JSON body",
                raw_response=response.text[:_ERROR_BODY_LIMIT],
            ) from error
        return parse_response(extract_text(envelope))


def build_prompt(batch: Sequence[QuestionView]) -> str:
    questions_text = "\n\n".join(
        f"ID: {item.id}\n"
        f"Category: {item.category}\n"
        f"Air Date: {item.air_date}\n"
        f"Clue: {item.question}\n"
        f"Answer: {item.a}"
        for item in batch
    )
    return SYSTEM_PROMPT + questions_text


def extract_text(envelope: Any) -> str:
    """Pull the first candidate's text out of a ``generateContent`` response."""

    candidates = envelope.get("candidates") if isinstance(envelope, dict) else None
    if not candidates or not isinstance(candidates[0], dict) or not candidates[0].get("content"):
        raise ResponseFormatError(
            "Invalid response structure from Gemini API",
            raw_response=json.dumps(envelope)[:_ERROR_BODY_LIMIT],
        )
    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason and finish_reason != FINISH_REASON_STOP:
        raise ResponseFormatError(
            f"Gemini API blocked response. Reason: {finish_reason}",
            raw_response=json.dumps(candidate)[:_ERROR_BODY_LIMIT],
        )
    parts = candidate["content"].get("parts") if isinstance(candidate["content"], dict) else None
    text = parts[0].get("text") if parts and isinstance(parts[0], dict) else None
    if not isinstance(text, str) or not text:
        raise ResponseFormatError(
            "Invalid content structure from Gemini API",
            raw_response=json.dumps(envelope)[:_ERROR_BODY_LIMIT],
        )
    return text


def parse_response(text: str) -> list[ProcessedQuestion]:
    """Parse model output into results, tolerating a markdown code fence."""

    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json") :]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except ValueError as error:
        raise ResponseFormatError(
            f"Gemini output is not valid JSON: {error}",
            raw_response=text[:_ERROR_BODY_LIMIT],
        ) from error
    if not isinstance(parsed, list):
        raise ResponseFormatError(
            f"Expected JSON array from Gemini, got: {type(parsed).__name__}",
            raw_response=text[:_ERROR_BODY_LIMIT],
        )
    return [_to_processed_question(raw, position) for position, raw in enumerate(parsed)]


def _to_processed_question(raw: Any, position: int) -> ProcessedQuestion:
    if not isinstance(raw, dict):
        raise ResponseFormatError(f"Result #{position} is not a JSON object")
    raw_id = raw.get("id")
    if not isinstance(raw_id, (str, int)) or isinstance(raw_id, bool):
        raise ResponseFormatError(f"Result #{position} has no usable id")
    values: dict[str, str] = {}
    for name in _REQUIRED_FIELDS:
        value = raw.get(name)
        if not isinstance(value, str):
            raise ResponseFormatError(f"Result {raw_id} field {name!r} must be a string")
        values[name] = value

    metadata = raw.get("metadata")
    if metadata is not None and not isinstance(metadata, str):
        metadata = json.dumps(metadata)
    return ProcessedQuestion(id=str(raw_id), metadata=metadata or None, **values)
