"""Semantic view and tool descriptor endpoints (read-only)."""

from fastapi import APIRouter, HTTPException

from calcfields.api.deps import CatalogDep, ContextDep
from calcfields.api.schemas import ScopeListResponse, ViewResponse
from calcfields.tools.models import ToolDescriptorSet
from calcfields.views.export import view_to_dict

router = APIRouter()


@router.get("/scopes", response_model=ScopeListResponse)
async def list_scopes(context: ContextDep) -> ScopeListResponse:
    """List the scopes with a catalog."""
    return ScopeListResponse(scopes=context.catalogs.list_scopes())


@router.get("/scopes/{scope_id}/view", response_model=ViewResponse)
async def get_view(scope_id: str, catalog: CatalogDep, context: ContextDep) -> ViewResponse:
    """Get the currently published semantic view."""
    view = context.registry.current(scope_id)
    if view is None:
        raise HTTPException(status_code=404, detail=f"No view published for scope '{scope_id}'")
    return ViewResponse(scope_id=scope_id, view=view_to_dict(view))


@router.get("/scopes/{scope_id}/tools", response_model=ToolDescriptorSet)
async def get_tools(scope_id: str, catalog: CatalogDep, context: ContextDep) -> ToolDescriptorSet:
    """Get the exported tool descriptors of a scope."""
    return context.exporter.export(scope_id)
