"""View regeneration engine.

Regeneration rebuilds a scope's semantic view from scratch: base columns
from the catalog snapshot plus every active field from one consistent store
snapshot. The result is checked and only then published, so a failed
regeneration leaves the previously published view untouched.

Checks, in order:
- no calculated field shares its name with a base column
- every column a field references still exists in the catalog
- the merged view compiles in the engine (zero-row probe of the full
  select list), when an engine probe is configured
"""

from __future__ import annotations

from enum import Enum

from calcfields.catalog.models import CatalogSnapshot, ColumnDescriptor, ColumnRole, DataType
from calcfields.catalog.provider import CatalogProvider
from calcfields.core.config import Settings, get_settings
from calcfields.core.logging import get_logger
from calcfields.core.retry import call_with_retry
from calcfields.expressions.probe import EngineProbe, ProbeUnavailableError
from calcfields.fields.models import StoreSnapshot
from calcfields.fields.store import MetadataStore
from calcfields.views.models import SemanticViewDefinition, ViewCalculatedField, ViewColumn
from calcfields.views.registry import ViewRegistry

logger = get_logger(__name__)


class RegenerationFailureKind(str, Enum):
    NAME_COLLISION_WITH_BASE_COLUMN = "NAME_COLLISION_WITH_BASE_COLUMN"
    MISSING_BASE_COLUMN = "MISSING_BASE_COLUMN"
    ENGINE_COMPILE_FAILURE = "ENGINE_COMPILE_FAILURE"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"


class RegenerationFailure(Exception):
    """A regeneration attempt that must not be published."""

    def __init__(
        self,
        kind: RegenerationFailureKind,
        scope_id: str,
        message: str,
        names: tuple[str, ...] = (),
    ):
        super().__init__(f"[{scope_id}] {kind.value}: {message}")
        self.kind = kind
        self.scope_id = scope_id
        self.message = message
        self.names = names


def fold_view(catalog: CatalogSnapshot, snapshot: StoreSnapshot) -> SemanticViewDefinition:
    """Merge base columns and active fields into a new view.

    Pure function of its inputs.

    Raises:
        RegenerationFailure: On a name collision or a dangling column reference
    """
    base_names = catalog.column_names

    collisions = tuple(f.name for f in snapshot.fields if f.name.upper() in base_names)
    if collisions:
        raise RegenerationFailure(
            RegenerationFailureKind.NAME_COLLISION_WITH_BASE_COLUMN,
            catalog.scope_id,
            f"calculated fields shadow base columns: {', '.join(collisions)}",
            collisions,
        )

    dangling = tuple(
        f.name
        for f in snapshot.fields
        if any(c.upper() not in base_names for c in f.referenced_columns)
    )
    if dangling:
        raise RegenerationFailure(
            RegenerationFailureKind.MISSING_BASE_COLUMN,
            catalog.scope_id,
            f"calculated fields reference columns missing from catalog "
            f"version {catalog.version}: {', '.join(dangling)}",
            dangling,
        )

    def view_column(column: ColumnDescriptor) -> ViewColumn:
        return ViewColumn(
            name=column.name,
            display_name=column.display_name,
            data_type=column.data_type,
            role=column.effective_role,
            synonyms=tuple(sorted(column.synonyms)),
        )

    fields = tuple(
        ViewCalculatedField(
            name=f.name,
            display_name=f.display_name,
            expression=f.canonical_sql or f.expression_text,
            result_type=f.result_type,
            role=ColumnRole.MEASURE if f.result_type == DataType.NUMBER else ColumnRole.DIMENSION,
            version=f.version,
            referenced_columns=f.referenced_columns,
            description=f.description,
        )
        for f in snapshot.fields
    )

    generation_version = max([catalog.version, *(f.version for f in snapshot.fields)])

    return SemanticViewDefinition(
        scope_id=catalog.scope_id,
        relation=catalog.relation,
        dimensions=tuple(view_column(c) for c in catalog.dimensions()),
        measures=tuple(view_column(c) for c in catalog.measures()),
        calculated_fields=fields,
        catalog_version=catalog.version,
        store_revision=snapshot.revision,
        generation_version=generation_version,
    )


class RegenerationEngine:
    """Rebuild and publish semantic views.

    Args:
        catalogs: Catalog provider
        store: Field store (read through ``snapshot``)
        registry: Where finished views are published
        probe: Optional engine probe for the merged-view compile check
        settings: Timeout and retry policy for the probe
    """

    def __init__(
        self,
        catalogs: CatalogProvider,
        store: MetadataStore,
        registry: ViewRegistry,
        probe: EngineProbe | None = None,
        settings: Settings | None = None,
    ):
        self.catalogs = catalogs
        self.store = store
        self.registry = registry
        self.probe = probe
        self.settings = settings or get_settings()

    async def build(self, scope_id: str) -> SemanticViewDefinition:
        """Build and check a new view without publishing it.

        Raises:
            RegenerationFailure: If the view must not be published
            CatalogNotFoundError: If the scope has no catalog
        """
        catalog = self.catalogs.get_snapshot(scope_id)
        snapshot = await self.store.snapshot(scope_id)
        view = fold_view(catalog, snapshot)
        if self.probe is not None:
            await self._check_compiles(view)
        logger.debug(
            "view_built",
            scope_id=scope_id,
            store_revision=snapshot.revision,
            fields=len(view.calculated_fields),
        )
        return view

    async def regenerate(self, scope_id: str) -> SemanticViewDefinition:
        """Build, check and publish a new view for ``scope_id``.

        Raises:
            RegenerationFailure: If the view must not be published; the
                previously published view stays in place

        Returns the published view, or the newer one already in place when
        this build started from an older store state.
        """
        view = await self.build(scope_id)
        return self.registry.publish(view)

    async def _check_compiles(self, view: SemanticViewDefinition) -> None:
        assert self.probe is not None
        probe = self.probe
        projections = view.projections()
        try:
            outcome = await call_with_retry(
                lambda: probe.probe(view.relation, projections),
                operation="view_probe",
                timeout=self.settings.probe_timeout_seconds,
                max_retries=self.settings.max_transient_retries,
                base_delay=self.settings.retry_base_delay_seconds,
                transient=(ProbeUnavailableError,),
            )
        except (TimeoutError, ProbeUnavailableError) as e:
            raise RegenerationFailure(
                RegenerationFailureKind.ENGINE_UNAVAILABLE,
                view.scope_id,
                f"engine did not answer the view compile check: {str(e) or 'timed out'}",
            ) from e

        if not outcome.accepted:
            raise RegenerationFailure(
                RegenerationFailureKind.ENGINE_COMPILE_FAILURE,
                view.scope_id,
                outcome.message or "merged view rejected by the engine",
                tuple(view.field_names),
            )
