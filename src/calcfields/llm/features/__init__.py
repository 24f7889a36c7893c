"""LLM-powered features."""

from calcfields.llm.features._base import LLMFeature
from calcfields.llm.features.expression import (
    ExpressionGenerator,
    GenerationError,
    GenerationErrorKind,
    GenerationOutcome,
    parse_generator_output,
)

__all__ = [
    "LLMFeature",
    "ExpressionGenerator",
    "GenerationError",
    "GenerationErrorKind",
    "GenerationOutcome",
    "parse_generator_output",
]
