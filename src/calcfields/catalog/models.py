"""Catalog data models.

A catalog snapshot is the explicitly passed, versioned description of the
columns known to one semantic scope. Validation and regeneration are pure
functions of a snapshot (plus the field store), never of ambient state.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataType(str, Enum):
    """Column and expression result types."""

    NUMBER = "NUMBER"
    VARCHAR = "VARCHAR"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"


class ColumnRole(str, Enum):
    """Role of a base column in the semantic view."""

    DIMENSION = "dimension"
    MEASURE = "measure"


class ColumnDescriptor(BaseModel):
    """Immutable description of one source column."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    data_type: DataType
    synonyms: frozenset[str] = Field(default_factory=frozenset)
    role: ColumnRole | None = None  # None: derived from data_type

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("column name must not be blank")
        return value.strip()

    @property
    def effective_role(self) -> ColumnRole:
        """Declared role, or MEASURE for numbers and DIMENSION otherwise."""
        if self.role is not None:
            return self.role
        return ColumnRole.MEASURE if self.data_type == DataType.NUMBER else ColumnRole.DIMENSION


class ColumnResolution(BaseModel):
    """Outcome of resolving an identifier against a catalog."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    column: ColumnDescriptor | None = None
    candidates: tuple[str, ...] = ()  # Populated when a synonym is ambiguous

    @property
    def resolved(self) -> bool:
        return self.column is not None

    @property
    def ambiguous(self) -> bool:
        return self.column is None and len(self.candidates) > 1


class CatalogSnapshot(BaseModel):
    """Versioned set of columns known to a scope.

    Attributes:
        scope_id: Semantic-model boundary this catalog belongs to
        relation: Table or view in the relational engine holding the columns
        version: Monotonic catalog version, folded into view generations
        columns: Ordered column descriptors
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str
    relation: str
    version: int = 1
    columns: tuple[ColumnDescriptor, ...] = ()

    @property
    def column_names(self) -> frozenset[str]:
        """Upper-cased names of all base columns."""
        return frozenset(c.name.upper() for c in self.columns)

    def get(self, name: str) -> ColumnDescriptor | None:
        """Get a column by name (case-insensitive)."""
        target = name.upper()
        for column in self.columns:
            if column.name.upper() == target:
                return column
        return None

    def resolve(self, identifier: str) -> ColumnResolution:
        """Resolve an identifier by exact name, then by synonym.

        Name matches always win. A synonym claimed by more than one column
        is ambiguous and does not resolve.
        """
        column = self.get(identifier)
        if column is not None:
            return ColumnResolution(identifier=identifier, column=column)

        target = identifier.upper()
        matches = [
            c for c in self.columns if any(s.upper() == target for s in c.synonyms)
        ]
        if len(matches) == 1:
            return ColumnResolution(identifier=identifier, column=matches[0])
        return ColumnResolution(
            identifier=identifier,
            candidates=tuple(c.name for c in matches),
        )

    def dimensions(self) -> list[ColumnDescriptor]:
        return [c for c in self.columns if c.effective_role == ColumnRole.DIMENSION]

    def measures(self) -> list[ColumnDescriptor]:
        return [c for c in self.columns if c.effective_role == ColumnRole.MEASURE]
