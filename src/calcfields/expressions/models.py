"""Expression candidate and validation result models."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from calcfields.catalog.models import DataType

MAX_NAME_LENGTH = 128
FIELD_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")


def normalize_field_name(name: str) -> str:
    """Case-normalize a field name: trimmed, upper-cased, blanks as '_'."""
    return re.sub(r"[\s\-]+", "_", name.strip()).upper()


def is_valid_field_name(name: str) -> bool:
    """Check an already-normalized name."""
    return len(name) <= MAX_NAME_LENGTH and FIELD_NAME_PATTERN.match(name) is not None


class FieldCandidate(BaseModel):
    """A proposed calculated field, not yet validated.

    Produced by the expression generator or typed by an operator. Nothing
    about a candidate is trusted until it passes the validator.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    expression: str
    result_type: DataType

    @property
    def normalized_name(self) -> str:
        return normalize_field_name(self.name)


class ValidationErrorCode(str, Enum):
    """Validation issue codes, grouped by the step that produces them."""

    # Grammar
    SYNTAX_ERROR = "SYNTAX_ERROR"
    FORBIDDEN_CONSTRUCT = "FORBIDDEN_CONSTRUCT"
    INVALID_NAME = "INVALID_NAME"
    # References
    UNKNOWN_COLUMN = "UNKNOWN_COLUMN"
    AMBIGUOUS_COLUMN = "AMBIGUOUS_COLUMN"
    NAME_SHADOWS_COLUMN = "NAME_SHADOWS_COLUMN"
    # Types
    TYPE_MISMATCH = "TYPE_MISMATCH"
    # Engine probe
    ENGINE_REJECTED = "ENGINE_REJECTED"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"


class ValidationIssue(BaseModel):
    """One validation error with enough context to render a message."""

    model_config = ConfigDict(frozen=True)

    code: ValidationErrorCode
    message: str
    position: int | None = None  # 0-based offset into the expression text

    def render(self) -> str:
        if self.position is None:
            return f"{self.code.value}: {self.message}"
        return f"{self.code.value} at {self.position}: {self.message}"


class ValidationResult(BaseModel):
    """Outcome of one validation attempt.

    Attributes:
        ok: True only when every step passed
        errors: Issues in the order they were found
        inferred_type: Result type from type inference (set when inference ran)
        referenced_columns: Canonical names of the referenced catalog columns
        canonical_sql: Expression rendered with canonical, quoted column names
        catalog_version: Version of the catalog snapshot validated against
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    errors: tuple[ValidationIssue, ...] = ()
    inferred_type: DataType | None = None
    referenced_columns: tuple[str, ...] = ()
    canonical_sql: str | None = None
    catalog_version: int | None = None
    validated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def codes(self) -> list[ValidationErrorCode]:
        return [e.code for e in self.errors]

    @property
    def retryable(self) -> bool:
        """True when the only failure is an unreachable engine."""
        return bool(self.errors) and all(
            e.code == ValidationErrorCode.ENGINE_UNAVAILABLE for e in self.errors
        )

    def has(self, code: ValidationErrorCode) -> bool:
        return any(e.code == code for e in self.errors)
