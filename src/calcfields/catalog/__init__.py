"""Catalog of source columns per semantic scope."""

from calcfields.catalog.models import (
    CatalogSnapshot,
    ColumnDescriptor,
    ColumnResolution,
    ColumnRole,
    DataType,
)
from calcfields.catalog.provider import (
    CatalogNotFoundError,
    CatalogProvider,
    DuckDBCatalogProvider,
    InMemoryCatalogProvider,
    YamlCatalogProvider,
    map_engine_type,
)

__all__ = [
    "CatalogSnapshot",
    "ColumnDescriptor",
    "ColumnResolution",
    "ColumnRole",
    "DataType",
    "CatalogNotFoundError",
    "CatalogProvider",
    "DuckDBCatalogProvider",
    "InMemoryCatalogProvider",
    "YamlCatalogProvider",
    "map_engine_type",
]
