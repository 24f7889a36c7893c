"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from calcfields.catalog.models import CatalogSnapshot
from calcfields.catalog.provider import CatalogNotFoundError
from calcfields.context import FieldsContext


def get_context(request: Request) -> FieldsContext:
    """The FieldsContext opened by the application lifespan."""
    context: FieldsContext | None = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Pipeline is not initialized")
    return context


ContextDep = Annotated[FieldsContext, Depends(get_context)]


def get_catalog(scope_id: str, context: ContextDep) -> CatalogSnapshot:
    """Resolve the catalog of the path's scope, 404 when unknown."""
    try:
        return context.catalogs.get_snapshot(scope_id)
    except CatalogNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


CatalogDep = Annotated[CatalogSnapshot, Depends(get_catalog)]
