"""Semantic view models.

A SemanticViewDefinition is the artifact downstream consumers query
against: the base dimensions and measures of a scope plus every active
calculated field, each with its resolved expression and type. Views are
frozen; a new generation is always a new object.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from calcfields.catalog.models import ColumnRole, DataType
from calcfields.expressions.parser import quote_identifier
from calcfields.expressions.probe import quote_relation


class ViewColumn(BaseModel):
    """A base column exposed by the view."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    data_type: DataType
    role: ColumnRole
    synonyms: tuple[str, ...] = ()


class ViewCalculatedField(BaseModel):
    """A calculated field folded into the view."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    expression: str  # canonical SQL over base columns
    result_type: DataType
    role: ColumnRole
    version: int
    referenced_columns: tuple[str, ...] = ()
    description: str | None = None


class SemanticViewDefinition(BaseModel):
    """One generation of a scope's semantic view.

    Attributes:
        generation_version: Highest component version folded in (catalog
            version or any field version)
        store_revision: Field store revision the fold was computed from
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str
    relation: str
    dimensions: tuple[ViewColumn, ...] = ()
    measures: tuple[ViewColumn, ...] = ()
    calculated_fields: tuple[ViewCalculatedField, ...] = ()
    catalog_version: int
    store_revision: int
    generation_version: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def base_columns(self) -> tuple[ViewColumn, ...]:
        return self.dimensions + self.measures

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.calculated_fields]

    def get_field(self, name: str) -> ViewCalculatedField | None:
        target = name.upper()
        return next((f for f in self.calculated_fields if f.name == target), None)

    def projections(self) -> list[tuple[str, str]]:
        """(alias, SQL) for every column of the view, base columns first."""
        pairs = [(c.name, quote_identifier(c.name)) for c in self.base_columns]
        pairs.extend((f.name, f.expression) for f in self.calculated_fields)
        return pairs

    def select_sql(self) -> str:
        """The view body as a single SELECT over the base relation."""
        select_list = ",\n  ".join(
            f"{sql} AS {quote_identifier(alias)}" for alias, sql in self.projections()
        )
        return f"SELECT\n  {select_list}\nFROM {quote_relation(self.relation)}"
