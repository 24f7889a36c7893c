"""Application wiring.

Builds the full pipeline (store, validator, regeneration engine, exporter,
coordinator) from Settings, for the CLI, the HTTP API and the MCP server.

Example:
    async with FieldsContext(with_generator=True) as ctx:
        result = await ctx.coordinator.request_field(
            "credit", "multiply LTM EBITDA by Total Leverage", requested_by="analyst"
        )
        view = ctx.registry.current("credit")
"""

from __future__ import annotations

from typing import Any

from calcfields.catalog.provider import CatalogProvider, YamlCatalogProvider
from calcfields.core.config import Settings, get_settings
from calcfields.core.connections import ConnectionConfig, ConnectionManager
from calcfields.core.logging import get_logger
from calcfields.expressions.probe import DuckDBProbe
from calcfields.expressions.validator import ExpressionValidator
from calcfields.fields.store import MetadataStore
from calcfields.llm import LLMService, load_llm_config
from calcfields.llm.providers import LLMProvider
from calcfields.pipeline.alerts import Alert, AlertSink, LoggingAlertSink
from calcfields.pipeline.capabilities import OrchestratorFacade
from calcfields.pipeline.coordinator import FieldPipelineCoordinator
from calcfields.tools.exporter import ToolRegistrationExporter
from calcfields.views.regeneration import RegenerationEngine, RegenerationFailure
from calcfields.views.registry import ViewRegistry

logger = get_logger(__name__)


class FieldsContext:
    """Owns the connections and components of one running pipeline."""

    def __init__(
        self,
        settings: Settings | None = None,
        manager: ConnectionManager | None = None,
        catalogs: CatalogProvider | None = None,
        provider: LLMProvider | None = None,
        alerts: AlertSink | None = None,
        with_generator: bool = False,
    ) -> None:
        """Initialize the context; nothing is opened until ``open()``.

        Args:
            settings: Application settings (default: environment)
            manager: Connection manager (default: files under output_dir)
            catalogs: Catalog provider (default: YAML files under config/catalogs)
            provider: LLM provider override, e.g. a scripted one in tests
            alerts: Operator alert sink (default: structlog)
            with_generator: Build the expression generator; needs LLM credentials
                unless ``provider`` is given
        """
        self.settings = settings or get_settings()
        self.manager = manager or ConnectionManager(
            ConnectionConfig.for_directory(
                self.settings.output_dir,
                duckdb_memory_limit=self.settings.duckdb_memory_limit,
            )
        )
        self.catalogs = catalogs or YamlCatalogProvider(self.settings.config_path / "catalogs")
        self.alerts = alerts or LoggingAlertSink()
        self.registry = ViewRegistry()
        self.exporter = ToolRegistrationExporter(self.settings.config_path / "tools")
        self.registry.add_listener(self.exporter.refresh)

        self._provider = provider
        self._with_generator = with_generator or provider is not None
        self._components: dict[str, Any] = {}

    async def open(self) -> FieldsContext:
        """Open connections, build the pipeline and publish every scope's view."""
        if self._components:
            return self

        self.settings.output_dir.mkdir(parents=True, exist_ok=True)
        await self.manager.initialize()

        probe = DuckDBProbe(self.manager.duckdb_conn)
        store = MetadataStore(self.manager.session_factory)
        validator = ExpressionValidator(probe, self.settings)
        engine = RegenerationEngine(self.catalogs, store, self.registry, probe, self.settings)

        generator = None
        if self._with_generator:
            llm_config = load_llm_config(self.settings.config_path / "llm.yaml")
            service = LLMService(
                llm_config,
                prompts_dir=self.settings.config_path / "prompts",
                settings=self.settings,
                provider=self._provider,
            )
            generator = service.generator

        coordinator = FieldPipelineCoordinator(
            self.catalogs, validator, store, engine, generator=generator, alerts=self.alerts
        )
        self._components = {
            "store": store,
            "validator": validator,
            "engine": engine,
            "coordinator": coordinator,
            "capabilities": OrchestratorFacade(
                coordinator, self.catalogs, self.registry, self.exporter
            ),
        }

        await self.publish_all()
        return self

    async def publish_all(self) -> None:
        """Regenerate the view of every known scope.

        A scope whose view cannot be built is reported to operators and left
        unpublished; the others are still published.
        """
        engine = self.engine
        for scope_id in self.catalogs.list_scopes():
            try:
                await engine.regenerate(scope_id)
            except RegenerationFailure as e:
                self.alerts.alert(Alert(scope_id=scope_id, kind=e.kind.value, message=e.message))

    async def close(self) -> None:
        if self._components:
            await self.coordinator.drain()
            self._components = {}
        await self.manager.close()

    async def __aenter__(self) -> FieldsContext:
        return await self.open()

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _get(self, name: str) -> Any:
        if name not in self._components:
            raise RuntimeError("FieldsContext is not open. Call open() first.")
        return self._components[name]

    @property
    def store(self) -> MetadataStore:
        return self._get("store")  # type: ignore[no-any-return]

    @property
    def validator(self) -> ExpressionValidator:
        return self._get("validator")  # type: ignore[no-any-return]

    @property
    def engine(self) -> RegenerationEngine:
        return self._get("engine")  # type: ignore[no-any-return]

    @property
    def coordinator(self) -> FieldPipelineCoordinator:
        return self._get("coordinator")  # type: ignore[no-any-return]

    @property
    def capabilities(self) -> OrchestratorFacade:
        """The read-and-request surface handed to the orchestration layer."""
        return self._get("capabilities")  # type: ignore[no-any-return]
