"""API request and response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from calcfields.catalog.models import DataType
from calcfields.fields.models import CalculatedFieldDefinition, FieldAttempt
from calcfields.pipeline.coordinator import FieldRequestResult


class FieldRequestBody(BaseModel):
    """Natural-language request for a new calculated field."""

    request: str = Field(min_length=1)
    requested_by: str = Field(min_length=1)
    expected_version: int | None = Field(default=None, ge=1)


class FieldDefinitionBody(BaseModel):
    """Operator-written field definition."""

    name: str
    display_name: str
    expression: str
    result_type: DataType
    requested_by: str = Field(min_length=1)
    expected_version: int | None = Field(default=None, ge=1)
    description: str | None = None


class FieldResponse(BaseModel):
    name: str
    display_name: str
    expression: str
    canonical_sql: str | None
    result_type: DataType
    status: str
    version: int
    referenced_columns: list[str]
    description: str | None
    created_by: str
    created_at: datetime
    deprecated_at: datetime | None

    @classmethod
    def from_definition(cls, d: CalculatedFieldDefinition) -> "FieldResponse":
        return cls(
            name=d.name,
            display_name=d.display_name,
            expression=d.expression_text,
            canonical_sql=d.canonical_sql,
            result_type=d.result_type,
            status=d.status.value,
            version=d.version,
            referenced_columns=list(d.referenced_columns),
            description=d.description,
            created_by=d.created_by,
            created_at=d.created_at,
            deprecated_at=d.deprecated_at,
        )


class FieldListResponse(BaseModel):
    scope_id: str
    fields: list[FieldResponse]
    total: int


class FieldRequestResponse(BaseModel):
    """Outcome of a pipeline run."""

    request_id: str
    scope_id: str
    status: str
    success: bool
    retryable: bool
    field: FieldResponse | None = None
    errors: list[str] = Field(default_factory=list)
    replayed: bool = False
    view_published: bool = False
    generation_version: int | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: FieldRequestResult) -> "FieldRequestResponse":
        return cls(
            request_id=result.request_id,
            scope_id=result.scope_id,
            status=result.status.value,
            success=result.success,
            retryable=result.retryable,
            field=(
                FieldResponse.from_definition(result.definition)
                if result.success and result.definition is not None
                else None
            ),
            errors=result.error_messages,
            replayed=result.replayed,
            view_published=result.view_published,
            generation_version=result.generation_version,
            warnings=result.warnings,
        )


class AttemptListResponse(BaseModel):
    scope_id: str
    attempts: list[FieldAttempt]


class ScopeListResponse(BaseModel):
    scopes: list[str]


class ViewResponse(BaseModel):
    """Semantic view artifact, in its serialized form."""

    scope_id: str
    view: dict[str, Any]
