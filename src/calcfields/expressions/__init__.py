"""Restricted expression grammar, type inference and validation."""

from calcfields.expressions.functions import FUNCTIONS, FunctionSignature, allowed_function_names
from calcfields.expressions.lexer import ExpressionSyntaxError, extract_identifiers
from calcfields.expressions.models import (
    FieldCandidate,
    ValidationErrorCode,
    ValidationIssue,
    ValidationResult,
    is_valid_field_name,
    normalize_field_name,
)
from calcfields.expressions.parser import parse_expression, render_sql
from calcfields.expressions.probe import (
    DuckDBProbe,
    EngineProbe,
    ProbeOutcome,
    ProbeUnavailableError,
    build_probe_query,
)
from calcfields.expressions.validator import ExpressionValidator

__all__ = [
    "FUNCTIONS",
    "FunctionSignature",
    "allowed_function_names",
    "ExpressionSyntaxError",
    "extract_identifiers",
    "FieldCandidate",
    "ValidationErrorCode",
    "ValidationIssue",
    "ValidationResult",
    "is_valid_field_name",
    "normalize_field_name",
    "parse_expression",
    "render_sql",
    "DuckDBProbe",
    "EngineProbe",
    "ProbeOutcome",
    "ProbeUnavailableError",
    "build_probe_query",
    "ExpressionValidator",
]
