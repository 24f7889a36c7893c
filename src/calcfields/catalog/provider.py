"""Catalog providers.

A provider exposes the known source columns of a scope. Three implementations:

- InMemoryCatalogProvider: snapshots handed in by the embedding application
- YamlCatalogProvider: one ``config/catalogs/<scope>.yaml`` file per scope
- DuckDBCatalogProvider: introspects ``information_schema.columns`` of the
  relation a scope maps to, with optional synonym overrides

Usage:
    provider = YamlCatalogProvider(Path("config/catalogs"))
    snapshot = provider.get_snapshot("credit")
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from calcfields.catalog.models import CatalogSnapshot, ColumnDescriptor, ColumnRole, DataType
from calcfields.core.logging import get_logger

if TYPE_CHECKING:
    import duckdb

logger = get_logger(__name__)


class CatalogNotFoundError(LookupError):
    """Raised when a scope has no catalog."""

    def __init__(self, scope_id: str):
        super().__init__(f"No catalog for scope '{scope_id}'")
        self.scope_id = scope_id


class CatalogProvider(ABC):
    """Read-only source of column catalogs, one per scope."""

    @abstractmethod
    def get_snapshot(self, scope_id: str) -> CatalogSnapshot:
        """Get the current catalog snapshot for a scope.

        Raises:
            CatalogNotFoundError: If the scope is unknown
        """

    @abstractmethod
    def list_scopes(self) -> list[str]:
        """List the scopes this provider knows about."""

    def get_columns(self, scope_id: str) -> list[ColumnDescriptor]:
        """Get the ordered column descriptors of a scope."""
        return list(self.get_snapshot(scope_id).columns)


class InMemoryCatalogProvider(CatalogProvider):
    """Provider backed by snapshots held in memory."""

    def __init__(self, snapshots: list[CatalogSnapshot] | None = None):
        self._snapshots: dict[str, CatalogSnapshot] = {}
        for snapshot in snapshots or []:
            self.put(snapshot)

    def put(self, snapshot: CatalogSnapshot) -> None:
        """Register or replace the snapshot of a scope."""
        self._snapshots[snapshot.scope_id] = snapshot

    def get_snapshot(self, scope_id: str) -> CatalogSnapshot:
        try:
            return self._snapshots[scope_id]
        except KeyError:
            raise CatalogNotFoundError(scope_id) from None

    def list_scopes(self) -> list[str]:
        return sorted(self._snapshots)


def _display_name(name: str) -> str:
    return name.replace("_", " ").title()


def _column_from_dict(data: dict[str, Any]) -> ColumnDescriptor:
    role = data.get("role")
    return ColumnDescriptor(
        name=data["name"],
        display_name=data.get("display_name") or _display_name(data["name"]),
        data_type=DataType(str(data["data_type"]).upper()),
        synonyms=frozenset(data.get("synonyms") or []),
        role=ColumnRole(role) if role else None,
    )


class YamlCatalogProvider(CatalogProvider):
    """Provider reading ``<catalog_dir>/<scope>.yaml`` files.

    File layout:

        scope_id: credit
        relation: dim_credit
        version: 3
        columns:
          - name: LTM_EBITDA
            display_name: LTM EBITDA
            data_type: NUMBER
            synonyms: [ebitda, trailing ebitda]
    """

    def __init__(self, catalog_dir: Path):
        self.catalog_dir = catalog_dir
        self._cache: dict[str, CatalogSnapshot] = {}

    def get_snapshot(self, scope_id: str) -> CatalogSnapshot:
        if scope_id in self._cache:
            return self._cache[scope_id]

        path = self.catalog_dir / f"{scope_id}.yaml"
        if not path.exists():
            raise CatalogNotFoundError(scope_id)

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        snapshot = CatalogSnapshot(
            scope_id=data.get("scope_id", scope_id),
            relation=data["relation"],
            version=int(data.get("version", 1)),
            columns=tuple(_column_from_dict(c) for c in data.get("columns", [])),
        )
        self._cache[scope_id] = snapshot
        return snapshot

    def list_scopes(self) -> list[str]:
        if not self.catalog_dir.exists():
            return []
        return sorted(p.stem for p in self.catalog_dir.glob("*.yaml"))

    def clear_cache(self) -> None:
        """Forget loaded catalogs so edited files are re-read."""
        self._cache.clear()


_NUMBER_TYPES = re.compile(
    r"^(U?(TINY|SMALL|BIG|HUGE)?INT(EGER)?|INT\d|FLOAT\d?|REAL|DOUBLE|DECIMAL|NUMERIC)"
    r"(\(\s*\d+\s*(,\s*\d+\s*)?\))?$"
)


def map_engine_type(engine_type: str) -> DataType | None:
    """Map a DuckDB column type to a catalog DataType.

    Returns None for types calculated fields cannot use (lists, structs, blobs).
    """
    normalized = engine_type.upper().strip()
    if normalized.endswith("]"):
        return None
    if _NUMBER_TYPES.match(normalized):
        return DataType.NUMBER
    if normalized.startswith(("VARCHAR", "TEXT", "STRING", "CHAR", "BPCHAR", "UUID")):
        return DataType.VARCHAR
    if normalized in ("BOOLEAN", "BOOL", "LOGICAL"):
        return DataType.BOOLEAN
    if normalized == "DATE":
        return DataType.DATE
    if normalized.startswith("TIMESTAMP") or normalized == "DATETIME":
        return DataType.TIMESTAMP
    return None


class DuckDBCatalogProvider(CatalogProvider):
    """Provider introspecting relations in a DuckDB database.

    Args:
        conn: DuckDB connection (a cursor is taken per lookup)
        relations: scope_id -> relation name, ``schema.table`` or a table in
            the main schema
        synonyms: Optional scope_id -> column name -> synonyms
        version: Catalog version reported for every scope
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        relations: dict[str, str],
        synonyms: dict[str, dict[str, list[str]]] | None = None,
        version: int = 1,
    ):
        self.conn = conn
        self.relations = relations
        self.synonyms = synonyms or {}
        self.version = version

    def get_snapshot(self, scope_id: str) -> CatalogSnapshot:
        relation = self.relations.get(scope_id)
        if relation is None:
            raise CatalogNotFoundError(scope_id)

        schema, _, table = relation.rpartition(".")
        cursor = self.conn.cursor()
        try:
            rows = cursor.execute(
                """
                SELECT column_name, data_type
                FROM information_schema.columns
                WHERE table_catalog = current_database()
                  AND table_schema = ?
                  AND table_name = ?
                ORDER BY ordinal_position
                """,
                [schema or "main", table],
            ).fetchall()
        finally:
            cursor.close()

        if not rows:
            raise CatalogNotFoundError(scope_id)

        scope_synonyms = self.synonyms.get(scope_id, {})
        columns: list[ColumnDescriptor] = []
        for column_name, engine_type in rows:
            data_type = map_engine_type(engine_type)
            if data_type is None:
                logger.debug(
                    "catalog_column_skipped",
                    scope_id=scope_id,
                    column=column_name,
                    engine_type=engine_type,
                )
                continue
            columns.append(
                ColumnDescriptor(
                    name=column_name,
                    display_name=_display_name(column_name),
                    data_type=data_type,
                    synonyms=frozenset(scope_synonyms.get(column_name, [])),
                )
            )

        return CatalogSnapshot(
            scope_id=scope_id,
            relation=relation,
            version=self.version,
            columns=tuple(columns),
        )

    def list_scopes(self) -> list[str]:
        return sorted(self.relations)
