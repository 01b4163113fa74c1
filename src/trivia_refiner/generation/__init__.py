"""Generation service clients and response validation."""

from trivia_refiner.generation.base import BatchGenerator
from trivia_refiner.generation.errors import (
    GenerationError,
    GenerationServiceError,
    GenerationTransportError,
    ResponseFormatError,
)
from trivia_refiner.generation.gemini import GeminiClient

__all__ = [
    "BatchGenerator",
    "GeminiClient",
    "GenerationError",
    "GenerationServiceError",
    "GenerationTransportError",
    "ResponseFormatError",
]
