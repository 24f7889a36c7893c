"""Calculated field models.

A CalculatedFieldDefinition moves through a fixed lifecycle:

    DRAFT -> VALIDATED -> PERSISTED -> DEPRECATED
          -> REJECTED

Transitions return new objects; a definition can only be persisted from
VALIDATED, so nothing reaches the store without passing the validator in
the same attempt.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from calcfields.catalog.models import DataType
from calcfields.expressions.models import (
    FieldCandidate,
    ValidationResult,
    normalize_field_name,
)


class FieldStatus(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    REJECTED = "rejected"
    PERSISTED = "persisted"
    DEPRECATED = "deprecated"


ALLOWED_TRANSITIONS: dict[FieldStatus, frozenset[FieldStatus]] = {
    FieldStatus.DRAFT: frozenset({FieldStatus.VALIDATED, FieldStatus.REJECTED}),
    FieldStatus.VALIDATED: frozenset({FieldStatus.PERSISTED}),
    FieldStatus.REJECTED: frozenset(),
    FieldStatus.PERSISTED: frozenset({FieldStatus.DEPRECATED}),
    FieldStatus.DEPRECATED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised on a lifecycle transition that is not allowed."""

    def __init__(self, current: FieldStatus, target: FieldStatus):
        super().__init__(f"Cannot move a field from {current.value} to {target.value}")
        self.current = current
        self.target = target


def _now() -> datetime:
    return datetime.now(UTC)


class CalculatedFieldDefinition(BaseModel):
    """A derived column defined by an expression over catalog columns.

    Attributes:
        scope_id: Semantic model the field belongs to
        name: Case-normalized name, unique within the scope
        expression_text: Expression as generated or typed
        canonical_sql: Expression rendered with canonical column names;
            this is what the semantic view embeds
        referenced_columns: Catalog columns the expression reads
        version: Optimistic-concurrency version, 1 for a new field
        expected_version: Version the writer last saw (None: create)
        catalog_version: Catalog version the field was validated against
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str
    name: str
    display_name: str
    expression_text: str
    canonical_sql: str | None = None
    referenced_columns: tuple[str, ...] = ()
    result_type: DataType
    status: FieldStatus = FieldStatus.DRAFT
    version: int = 1
    expected_version: int | None = None
    catalog_version: int | None = None
    description: str | None = None
    created_by: str
    created_at: datetime = Field(default_factory=_now)
    last_validated_at: datetime | None = None
    deprecated_at: datetime | None = None

    @classmethod
    def draft(
        cls,
        scope_id: str,
        candidate: FieldCandidate,
        created_by: str,
        expected_version: int | None = None,
        description: str | None = None,
    ) -> CalculatedFieldDefinition:
        """Create a DRAFT definition from an untrusted candidate."""
        return cls(
            scope_id=scope_id,
            name=normalize_field_name(candidate.name),
            display_name=candidate.display_name.strip() or candidate.name,
            expression_text=candidate.expression,
            result_type=candidate.result_type,
            expected_version=expected_version,
            description=description,
            created_by=created_by,
        )

    def _transition(self, target: FieldStatus, **changes: Any) -> CalculatedFieldDefinition:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, target)
        return self.model_copy(update={"status": target, **changes})

    def mark_validated(self, result: ValidationResult) -> CalculatedFieldDefinition:
        if not result.ok:
            raise ValueError("Cannot mark a field validated with a failing result")
        return self._transition(
            FieldStatus.VALIDATED,
            canonical_sql=result.canonical_sql,
            referenced_columns=result.referenced_columns,
            catalog_version=result.catalog_version,
            last_validated_at=result.validated_at,
        )

    def mark_rejected(self, result: ValidationResult) -> CalculatedFieldDefinition:
        return self._transition(
            FieldStatus.REJECTED,
            referenced_columns=result.referenced_columns,
            last_validated_at=result.validated_at,
        )

    def mark_persisted(self, version: int) -> CalculatedFieldDefinition:
        return self._transition(FieldStatus.PERSISTED, version=version)

    def mark_deprecated(self, at: datetime | None = None) -> CalculatedFieldDefinition:
        return self._transition(FieldStatus.DEPRECATED, deprecated_at=at or _now())

    @property
    def fingerprint(self) -> tuple[str, str, str]:
        """Content identity used to detect an idempotent replay.

        Validated definitions compare by canonical SQL, so spacing and synonym
        spelling do not matter.
        """
        content = self.canonical_sql or self.expression_text.strip()
        return (content, self.display_name, self.result_type.value)

    @property
    def is_active(self) -> bool:
        return self.status == FieldStatus.PERSISTED


class ConflictKind(str, Enum):
    NAME_ALREADY_EXISTS = "NAME_ALREADY_EXISTS"
    STALE_VERSION = "STALE_VERSION"
    NOT_FOUND = "NOT_FOUND"


class PersistenceConflict(BaseModel):
    """A store write that was refused without changing anything.

    Conflicts are user-facing decisions (choose another name, or re-read the
    current version), never transient failures.
    """

    model_config = ConfigDict(frozen=True)

    kind: ConflictKind
    scope_id: str
    name: str
    expected_version: int | None = None
    current_version: int | None = None

    @property
    def message(self) -> str:
        if self.kind == ConflictKind.NAME_ALREADY_EXISTS:
            return f"Field '{self.name}' already exists in scope '{self.scope_id}'"
        if self.kind == ConflictKind.STALE_VERSION:
            return (
                f"Field '{self.name}' is at version {self.current_version}, "
                f"not {self.expected_version}; re-read it and retry"
            )
        return f"Field '{self.name}' does not exist in scope '{self.scope_id}'"


class Persisted(BaseModel):
    """A successful store write.

    ``replayed`` is True when the write matched an already-persisted record
    and nothing was changed.
    """

    model_config = ConfigDict(frozen=True)

    definition: CalculatedFieldDefinition
    replayed: bool = False


class StoreSnapshot(BaseModel):
    """Active fields of a scope read in one transaction."""

    model_config = ConfigDict(frozen=True)

    scope_id: str
    revision: int
    fields: tuple[CalculatedFieldDefinition, ...] = ()


class AttemptOutcome(str, Enum):
    PERSISTED = "persisted"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    GENERATION_FAILED = "generation_failed"


class FieldAttempt(BaseModel):
    """Audit record of one finished pipeline attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    scope_id: str
    name: str | None = None
    request_text: str | None = None
    expression_text: str | None = None
    outcome: AttemptOutcome
    errors: list[str] = Field(default_factory=list)
    version: int | None = None
    requested_by: str
    created_at: datetime = Field(default_factory=_now)
