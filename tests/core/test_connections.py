"""Tests for the connection manager."""

from pathlib import Path

import pytest
from sqlalchemy import func, select

from calcfields.core.connections import ConnectionConfig, ConnectionManager
from calcfields.fields.db_models import CalculatedFieldRecord


class TestConnectionConfig:
    """Tests for ConnectionConfig factories."""

    def test_for_directory(self, tmp_path: Path):
        """Database files live in the output directory."""
        config = ConnectionConfig.for_directory(tmp_path, duckdb_memory_limit="1GB")

        assert config.sqlite_path == tmp_path / "metadata.db"
        assert config.duckdb_path == tmp_path / "data.duckdb"
        assert config.duckdb_memory_limit == "1GB"


class TestConnectionManager:
    """Tests for ConnectionManager lifecycle and access."""

    async def test_not_initialized(self, tmp_path: Path):
        """Access before initialize() raises."""
        manager = ConnectionManager(ConnectionConfig.for_directory(tmp_path))

        with pytest.raises(RuntimeError, match="not initialized"):
            _ = manager.session_factory
        with pytest.raises(RuntimeError, match="not initialized"):
            _ = manager.duckdb_conn

    async def test_round_trip(self, tmp_path: Path):
        """Schema is created and DuckDB is usable."""
        manager = ConnectionManager(ConnectionConfig.for_directory(tmp_path))
        await manager.initialize()
        try:
            async with manager.session_factory() as session:
                count = await session.scalar(select(func.count(CalculatedFieldRecord.field_id)))
            assert count == 0

            manager.duckdb_conn.execute("CREATE TABLE t AS SELECT 42 AS answer")
            assert manager.duckdb_conn.execute("SELECT answer FROM t").fetchone() == (42,)
        finally:
            await manager.close()

    async def test_initialize_is_idempotent(self, tmp_path: Path):
        manager = ConnectionManager(ConnectionConfig.for_directory(tmp_path / "out"))
        await manager.initialize()
        factory = manager.session_factory
        await manager.initialize()

        assert manager.session_factory is factory
        assert (tmp_path / "out" / "metadata.db").exists()
        await manager.close()
        await manager.close()

    async def test_reopen_after_close(self, tmp_path: Path):
        """Data written before close is visible after initializing again."""
        manager = ConnectionManager(ConnectionConfig.for_directory(tmp_path))
        await manager.initialize()
        manager.duckdb_conn.execute("CREATE TABLE t AS SELECT 1 AS one")
        await manager.close()

        with pytest.raises(RuntimeError, match="not initialized"):
            _ = manager.duckdb_conn

        await manager.initialize()
        try:
            assert manager.duckdb_conn.execute("SELECT one FROM t").fetchone() == (1,)
        finally:
            await manager.close()
