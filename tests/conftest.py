"""Shared pytest fixtures for all tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import duckdb
import pytest

from calcfields.catalog.models import CatalogSnapshot, ColumnDescriptor, DataType
from calcfields.catalog.provider import InMemoryCatalogProvider
from calcfields.core.config import Settings
from calcfields.core.connections import ConnectionConfig, ConnectionManager
from calcfields.core.models import Result
from calcfields.expressions.models import FieldCandidate, ValidationResult
from calcfields.expressions.probe import DuckDBProbe
from calcfields.expressions.validator import ExpressionValidator
from calcfields.fields.models import CalculatedFieldDefinition
from calcfields.fields.store import MetadataStore
from calcfields.llm import LLMService, load_llm_config
from calcfields.llm.providers.base import LLMProvider, LLMRequest, LLMResponse
from calcfields.pipeline.alerts import Alert, AlertSink
from calcfields.pipeline.coordinator import FieldPipelineCoordinator
from calcfields.tools.exporter import ToolRegistrationExporter
from calcfields.views.regeneration import RegenerationEngine
from calcfields.views.registry import ViewRegistry

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

CREDIT_TABLE_DDL = """
CREATE TABLE dim_credit (
    BORROWER_NAME VARCHAR,
    SECTOR VARCHAR,
    REPORTING_DATE DATE,
    IS_COVENANT_LITE BOOLEAN,
    LTM_EBITDA DOUBLE,
    TOTAL_LEVERAGE DOUBLE,
    TOTAL_DEBT DOUBLE,
    COMMITMENT_AMOUNT DOUBLE
)
"""

CREDIT_ROWS = """
INSERT INTO dim_credit VALUES
    ('Acme Holdings', 'Industrials', DATE '2024-06-30', TRUE, 120.0, 5.5, 660.0, 700.0),
    ('Borealis Foods', 'Consumer', DATE '2024-06-30', FALSE, 45.0, 3.2, 144.0, 150.0),
    ('Cobalt Software', 'Technology', DATE '2024-06-30', TRUE, 80.0, 7.1, 568.0, 600.0)
"""


def credit_snapshot(version: int = 1, extra: tuple[ColumnDescriptor, ...] = ()) -> CatalogSnapshot:
    """The credit catalog used throughout the tests."""
    columns = (
        ColumnDescriptor(
            name="BORROWER_NAME",
            display_name="Borrower Name",
            data_type=DataType.VARCHAR,
            synonyms=frozenset({"borrower"}),
        ),
        ColumnDescriptor(
            name="SECTOR",
            display_name="Sector",
            data_type=DataType.VARCHAR,
            synonyms=frozenset({"industry"}),
        ),
        ColumnDescriptor(
            name="REPORTING_DATE", display_name="Reporting Date", data_type=DataType.DATE
        ),
        ColumnDescriptor(
            name="IS_COVENANT_LITE", display_name="Covenant Lite", data_type=DataType.BOOLEAN
        ),
        ColumnDescriptor(
            name="LTM_EBITDA",
            display_name="LTM EBITDA",
            data_type=DataType.NUMBER,
            synonyms=frozenset({"ebitda"}),
        ),
        ColumnDescriptor(
            name="TOTAL_LEVERAGE",
            display_name="Total Leverage",
            data_type=DataType.NUMBER,
            synonyms=frozenset({"leverage"}),
        ),
        ColumnDescriptor(
            name="TOTAL_DEBT",
            display_name="Total Debt",
            data_type=DataType.NUMBER,
            synonyms=frozenset({"debt", "exposure"}),
        ),
        ColumnDescriptor(
            name="COMMITMENT_AMOUNT",
            display_name="Commitment Amount",
            data_type=DataType.NUMBER,
            synonyms=frozenset({"exposure"}),
        ),
    )
    return CatalogSnapshot(
        scope_id="credit", relation="dim_credit", version=version, columns=columns + extra
    )


def seed_credit_table(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(CREDIT_TABLE_DDL)
    conn.execute(CREDIT_ROWS)


def validated_field(
    name: str,
    canonical_sql: str,
    referenced: tuple[str, ...],
    by: str = "analyst",
    expected_version: int | None = None,
    type_: DataType = DataType.NUMBER,
) -> CalculatedFieldDefinition:
    """A VALIDATED definition ready for the store, bypassing the validator."""
    candidate = FieldCandidate(
        name=name, display_name=name.title(), expression=canonical_sql, result_type=type_
    )
    draft = CalculatedFieldDefinition.draft(
        "credit", candidate, created_by=by, expected_version=expected_version
    )
    return draft.mark_validated(
        ValidationResult(
            ok=True,
            canonical_sql=canonical_sql,
            referenced_columns=referenced,
            inferred_type=type_,
            catalog_version=1,
        )
    )


def generator_answer(
    name: str, expr: str, type_: str = "NUMBER", display_name: str | None = None
) -> str:
    """A well-formed generator response."""
    return json.dumps(
        {
            "name": name,
            "displayName": display_name or name.replace("_", " ").title(),
            "expr": expr,
            "type": type_,
        }
    )


class ScriptedProvider(LLMProvider):
    """LLM provider replaying scripted answers.

    Each entry is either a response string or an exception to raise. When
    the script runs out, the last entry is repeated.
    """

    def __init__(self, *script: str | BaseException):
        self.script = list(script)
        self.requests: list[LLMRequest] = []

    async def complete(self, request: LLMRequest) -> Result[LLMResponse]:
        self.requests.append(request)
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, BaseException):
            raise entry
        return Result.ok(
            LLMResponse(content=entry, model="scripted", input_tokens=100, output_tokens=20)
        )

    def get_model_for_tier(self, tier: str) -> str:
        return "scripted"


class RecordingAlertSink(AlertSink):
    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    def alert(self, alert: Alert) -> None:
        self.alerts.append(alert)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at the repository config with fast retries."""
    return Settings(
        output_dir=tmp_path / "output",
        config_path=CONFIG_DIR,
        generator_timeout_seconds=5.0,
        probe_timeout_seconds=5.0,
        max_transient_retries=2,
        retry_base_delay_seconds=0.0,
    )


@pytest.fixture
def catalog() -> CatalogSnapshot:
    return credit_snapshot()


@pytest.fixture
def catalogs(catalog: CatalogSnapshot) -> InMemoryCatalogProvider:
    return InMemoryCatalogProvider([catalog])


@pytest.fixture
def duckdb_conn() -> Iterator[duckdb.DuckDBPyConnection]:
    """In-memory DuckDB with the dim_credit table."""
    conn = duckdb.connect(":memory:")
    seed_credit_table(conn)
    yield conn
    conn.close()


@pytest.fixture
def probe(duckdb_conn: duckdb.DuckDBPyConnection) -> DuckDBProbe:
    return DuckDBProbe(duckdb_conn)


@pytest.fixture
def validator(probe: DuckDBProbe, settings: Settings) -> ExpressionValidator:
    return ExpressionValidator(probe, settings)


@pytest.fixture
async def manager(tmp_path: Path) -> AsyncIterator[ConnectionManager]:
    """File-backed metadata store and DuckDB.

    File-backed SQLite is used so that concurrent writers each get their
    own connection.
    """
    output_dir = tmp_path / "store"
    output_dir.mkdir()
    with duckdb.connect(str(output_dir / "data.duckdb")) as conn:
        seed_credit_table(conn)

    connection_manager = ConnectionManager(ConnectionConfig.for_directory(output_dir))
    await connection_manager.initialize()
    yield connection_manager
    await connection_manager.close()


@pytest.fixture
def store(manager: ConnectionManager) -> MetadataStore:
    return MetadataStore(manager.session_factory)


@pytest.fixture
def registry() -> ViewRegistry:
    return ViewRegistry()


@pytest.fixture
def engine(
    catalogs: InMemoryCatalogProvider,
    store: MetadataStore,
    registry: ViewRegistry,
    probe: DuckDBProbe,
    settings: Settings,
) -> RegenerationEngine:
    return RegenerationEngine(catalogs, store, registry, probe, settings)


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider(generator_answer("LEVERED_EBITDA", "LTM_EBITDA * TOTAL_LEVERAGE"))


@pytest.fixture
def llm_service(provider: ScriptedProvider, settings: Settings) -> LLMService:
    config = load_llm_config(CONFIG_DIR / "llm.yaml")
    return LLMService(
        config, prompts_dir=CONFIG_DIR / "prompts", settings=settings, provider=provider
    )


@pytest.fixture
def coordinator(
    catalogs: InMemoryCatalogProvider,
    validator: ExpressionValidator,
    store: MetadataStore,
    engine: RegenerationEngine,
    llm_service: LLMService,
    alerts: RecordingAlertSink,
) -> FieldPipelineCoordinator:
    return FieldPipelineCoordinator(
        catalogs, validator, store, engine, generator=llm_service.generator, alerts=alerts
    )


@pytest.fixture
def exporter(registry: ViewRegistry) -> ToolRegistrationExporter:
    exporter = ToolRegistrationExporter(CONFIG_DIR / "tools")
    registry.add_listener(exporter.refresh)
    return exporter
