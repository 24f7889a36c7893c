"""Calculated field endpoints.

Every mutation goes through the pipeline coordinator; there is no endpoint
that writes to the store directly.
"""

from fastapi import APIRouter, HTTPException, Query, Response

from calcfields.api.deps import CatalogDep, ContextDep
from calcfields.api.schemas import (
    AttemptListResponse,
    FieldDefinitionBody,
    FieldListResponse,
    FieldRequestBody,
    FieldRequestResponse,
    FieldResponse,
)
from calcfields.expressions.models import FieldCandidate
from calcfields.fields.models import AttemptOutcome, ConflictKind
from calcfields.llm.features.expression import GenerationErrorKind
from calcfields.pipeline.coordinator import FieldRequestResult, PipelineStatus

router = APIRouter()


def _status_code(result: FieldRequestResult) -> int:
    """HTTP status for a pipeline outcome."""
    if result.status == PipelineStatus.PERSISTED:
        return 200 if result.replayed else 201
    if result.status == PipelineStatus.DEPRECATED:
        return 200
    if result.status == PipelineStatus.REJECTED:
        return 503 if result.retryable else 422
    if result.status == PipelineStatus.CONFLICT:
        assert result.conflict is not None
        return 404 if result.conflict.kind == ConflictKind.NOT_FOUND else 409

    error = result.generation_error
    assert error is not None
    if error.retryable or error.kind == GenerationErrorKind.DISABLED:
        return 503
    if error.kind == GenerationErrorKind.INVALID_REQUEST:
        return 400
    return 502


def _respond(result: FieldRequestResult, response: Response) -> FieldRequestResponse:
    response.status_code = _status_code(result)
    return FieldRequestResponse.from_result(result)


@router.get("/scopes/{scope_id}/fields", response_model=FieldListResponse)
async def list_fields(
    scope_id: str,
    catalog: CatalogDep,
    context: ContextDep,
    include_deprecated: bool = Query(default=False),
) -> FieldListResponse:
    """List the calculated fields of a scope."""
    if include_deprecated:
        fields = await context.store.list_fields(scope_id, include_deprecated=True)
    else:
        fields = await context.store.list_active(scope_id)
    return FieldListResponse(
        scope_id=scope_id,
        fields=[FieldResponse.from_definition(f) for f in fields],
        total=len(fields),
    )


@router.post("/scopes/{scope_id}/fields", response_model=FieldRequestResponse)
async def request_field(
    scope_id: str,
    body: FieldRequestBody,
    catalog: CatalogDep,
    context: ContextDep,
    response: Response,
) -> FieldRequestResponse:
    """Run the pipeline for a natural-language field request."""
    if context.coordinator.generator is None:
        raise HTTPException(status_code=503, detail="Expression generation is not configured")

    result = await context.coordinator.request_field(
        scope_id,
        body.request,
        requested_by=body.requested_by,
        expected_version=body.expected_version,
    )
    return _respond(result, response)


@router.post("/scopes/{scope_id}/definitions", response_model=FieldRequestResponse)
async def submit_definition(
    scope_id: str,
    body: FieldDefinitionBody,
    catalog: CatalogDep,
    context: ContextDep,
    response: Response,
) -> FieldRequestResponse:
    """Validate and persist an operator-written definition."""
    candidate = FieldCandidate(
        name=body.name,
        display_name=body.display_name,
        expression=body.expression,
        result_type=body.result_type,
    )
    result = await context.coordinator.submit_definition(
        scope_id,
        candidate,
        requested_by=body.requested_by,
        expected_version=body.expected_version,
        description=body.description,
    )
    return _respond(result, response)


@router.delete("/scopes/{scope_id}/fields/{name}", response_model=FieldRequestResponse)
async def deprecate_field(
    scope_id: str,
    name: str,
    catalog: CatalogDep,
    context: ContextDep,
    response: Response,
    expected_version: int = Query(ge=1),
    requested_by: str = Query(min_length=1),
) -> FieldRequestResponse:
    """Deprecate a field; it disappears from the next view generation."""
    result = await context.coordinator.deprecate(scope_id, name, expected_version, requested_by)
    return _respond(result, response)


@router.get("/scopes/{scope_id}/attempts", response_model=AttemptListResponse)
async def list_attempts(
    scope_id: str,
    catalog: CatalogDep,
    context: ContextDep,
    outcome: AttemptOutcome | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
) -> AttemptListResponse:
    """Audit trail of pipeline attempts, newest first."""
    attempts = await context.store.list_attempts(scope_id, outcome=outcome, limit=limit)
    return AttemptListResponse(scope_id=scope_id, attempts=attempts)
