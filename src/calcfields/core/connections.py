"""Connection management for SQLAlchemy + DuckDB.

The metadata store (calculated field definitions, audit trail) lives in
SQLite/PostgreSQL through SQLAlchemy async sessions. The analytical data the
zero-row probe compiles against lives in DuckDB.

Usage:
    from calcfields.core.connections import ConnectionManager, ConnectionConfig

    config = ConnectionConfig.for_directory(Path("./output"))
    manager = ConnectionManager(config)
    await manager.initialize()

    store = MetadataStore(manager.session_factory)
    probe = DuckDBProbe(manager.duckdb_conn)

    await manager.close()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from calcfields.storage import init_database


@dataclass
class ConnectionConfig:
    """Connection configuration for SQLAlchemy and DuckDB.

    Attributes:
        sqlite_path: Path to SQLite database file
        duckdb_path: Path to DuckDB database file
        sqlite_timeout: SQLite busy timeout in seconds
        duckdb_memory_limit: DuckDB memory limit (e.g., "2GB")
        echo_sql: Whether to echo SQL statements (for debugging)
    """

    sqlite_path: Path
    duckdb_path: Path
    sqlite_timeout: float = 30.0
    duckdb_memory_limit: str = "2GB"
    echo_sql: bool = False

    @classmethod
    def for_directory(cls, output_dir: Path, **kwargs: Any) -> ConnectionConfig:
        """Create config for an output directory.

        Args:
            output_dir: Directory for database files
            **kwargs: Override any config attributes

        Returns:
            ConnectionConfig with paths set to output_dir
        """
        return cls(
            sqlite_path=output_dir / "metadata.db",
            duckdb_path=output_dir / "data.duckdb",
            **kwargs,
        )


@dataclass
class ConnectionManager:
    """Connection management for SQLAlchemy + DuckDB.

    Provides:
    - SQLAlchemy async session factory
    - The DuckDB connection the engine probe compiles against
    - Proper cleanup on close
    """

    config: ConnectionConfig
    _engine: AsyncEngine | None = field(default=None, init=False, repr=False)
    _session_factory: async_sessionmaker[AsyncSession] | None = field(
        default=None, init=False, repr=False
    )
    _duckdb_conn: duckdb.DuckDBPyConnection | None = field(default=None, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)
    _init_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def initialize(self) -> None:
        """Initialize databases. Safe to call multiple times.

        Raises:
            RuntimeError: If initialization fails
        """
        async with self._init_lock:
            if self._initialized:
                return

            try:
                await self._init_sqlalchemy()
                self._init_duckdb()
                self._initialized = True
            except Exception as e:
                await self.close()
                raise RuntimeError(f"Failed to initialize connections: {e}") from e

    async def _init_sqlalchemy(self) -> None:
        """Initialize SQLAlchemy async engine."""
        self.config.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.config.sqlite_path}",
            echo=self.config.echo_sql,
            poolclass=NullPool,
        )

        @event.listens_for(self._engine.sync_engine, "connect")
        def configure_sqlite(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            # Readers don't block the single writer
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(self.config.sqlite_timeout * 1000)}")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        await init_database(self._engine)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _init_duckdb(self) -> None:
        """Initialize DuckDB connection."""
        self.config.duckdb_path.parent.mkdir(parents=True, exist_ok=True)
        self._duckdb_conn = duckdb.connect(str(self.config.duckdb_path))

        self._duckdb_conn.execute(f"SET memory_limit='{self.config.duckdb_memory_limit}'")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "ConnectionManager not initialized. Call await manager.initialize() first."
            )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory handed to the metadata store."""
        self._ensure_initialized()
        assert self._session_factory is not None
        return self._session_factory

    @property
    def duckdb_conn(self) -> duckdb.DuckDBPyConnection:
        """Get the underlying DuckDB connection."""
        self._ensure_initialized()
        assert self._duckdb_conn is not None
        return self._duckdb_conn

    async def close(self) -> None:
        """Close all connections. Safe to call multiple times."""
        if self._duckdb_conn is not None:
            self._duckdb_conn.close()
            self._duckdb_conn = None

        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

        self._session_factory = None
        self._initialized = False


__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
]
