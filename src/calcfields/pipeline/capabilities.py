"""Capability boundaries.

The orchestration layer (and anything it delegates to, such as the
expression generator) only ever holds an ``OrchestratorCapabilities``: it
can read catalogs, views and tool descriptors and ask for a new field, but
it has no handle on the metadata store or any other write path. Every
mutation flows through the coordinator's validated, versioned write.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from calcfields.catalog.models import ColumnDescriptor
from calcfields.catalog.provider import CatalogProvider
from calcfields.llm.features.expression import GenerationOutcome
from calcfields.views.models import SemanticViewDefinition
from calcfields.views.registry import ViewRegistry

if TYPE_CHECKING:
    from calcfields.pipeline.coordinator import FieldPipelineCoordinator, FieldRequestResult
    from calcfields.tools.exporter import ToolRegistrationExporter
    from calcfields.tools.models import ToolDescriptorSet


class CandidateGenerator(Protocol):
    """Anything that turns a request into a draft candidate."""

    async def generate(
        self,
        scope_id: str,
        request_text: str,
        columns: Sequence[ColumnDescriptor],
    ) -> GenerationOutcome: ...


class OrchestratorCapabilities(Protocol):
    """Read and request operations; no write access."""

    def list_scopes(self) -> list[str]: ...

    def get_columns(self, scope_id: str) -> list[ColumnDescriptor]: ...

    def get_view(self, scope_id: str) -> SemanticViewDefinition | None: ...

    def export_tools(self, scope_id: str) -> ToolDescriptorSet: ...

    async def request_field(
        self, scope_id: str, request_text: str, requested_by: str
    ) -> FieldRequestResult: ...


class OrchestratorFacade:
    """The OrchestratorCapabilities handed to the orchestration layer.

    Holds the coordinator privately and forwards only ``request_field``;
    operator operations (definitions, deprecation, purge) are not reachable
    through it.
    """

    __slots__ = ("_catalogs", "_registry", "_exporter", "_request")

    def __init__(
        self,
        coordinator: FieldPipelineCoordinator,
        catalogs: CatalogProvider,
        registry: ViewRegistry,
        exporter: ToolRegistrationExporter,
    ):
        self._catalogs = catalogs
        self._registry = registry
        self._exporter = exporter
        self._request = coordinator.request_field

    def list_scopes(self) -> list[str]:
        return self._catalogs.list_scopes()

    def get_columns(self, scope_id: str) -> list[ColumnDescriptor]:
        return self._catalogs.get_columns(scope_id)

    def get_view(self, scope_id: str) -> SemanticViewDefinition | None:
        return self._registry.current(scope_id)

    def export_tools(self, scope_id: str) -> ToolDescriptorSet:
        return self._exporter.export(scope_id)

    async def request_field(
        self, scope_id: str, request_text: str, requested_by: str
    ) -> FieldRequestResult:
        return await self._request(scope_id, request_text, requested_by)
