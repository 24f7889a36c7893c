"""Zero-row compile probes against the relational engine.

A probe embeds expressions into a query that can never return or touch a
row and asks the engine whether it accepts it:

    SELECT <expr> AS "<alias>" FROM "<relation>" WHERE FALSE LIMIT 0

The DuckDB implementation also guards the call site: the query text must
parse as exactly one SELECT statement, and it runs inside a transaction
that is always rolled back.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence

import duckdb
from pydantic import BaseModel, ConfigDict

from calcfields.core.logging import get_logger, increment_probe_call
from calcfields.expressions.parser import quote_identifier

logger = get_logger(__name__)


class ProbeOutcome(BaseModel):
    """Engine verdict on a probe query."""

    model_config = ConfigDict(frozen=True)

    accepted: bool
    message: str | None = None
    row_count: int = 0


class ProbeUnavailableError(Exception):
    """The engine could not be reached. Transient."""


def quote_relation(relation: str) -> str:
    """Quote a possibly schema-qualified relation name."""
    return ".".join(quote_identifier(part) for part in relation.split("."))


def build_probe_query(relation: str, projections: Sequence[tuple[str, str]]) -> str:
    """Build the zero-row probe query.

    Args:
        relation: Relation the expressions are evaluated against
        projections: (alias, rendered SQL expression) pairs
    """
    if not projections:
        raise ValueError("probe needs at least one projection")
    select_list = ", ".join(f"{sql} AS {quote_identifier(alias)}" for alias, sql in projections)
    return f"SELECT {select_list} FROM {quote_relation(relation)} WHERE FALSE LIMIT 0"


class EngineProbe(ABC):
    """Submit zero-row queries to the relational engine."""

    @abstractmethod
    async def probe(self, relation: str, projections: Sequence[tuple[str, str]]) -> ProbeOutcome:
        """Check that the projections compile against ``relation``.

        Returns a rejected outcome for anything the engine refuses.

        Raises:
            ProbeUnavailableError: If the engine cannot be reached
        """


class DuckDBProbe(EngineProbe):
    """Probe backed by a DuckDB connection.

    Each probe runs on its own cursor in a worker thread. If the awaiting
    task is cancelled (for example by a timeout), the running query is
    interrupted.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    async def probe(self, relation: str, projections: Sequence[tuple[str, str]]) -> ProbeOutcome:
        sql = build_probe_query(relation, projections)
        try:
            cursor = self.conn.cursor()
        except duckdb.ConnectionException as e:
            raise ProbeUnavailableError(str(e)) from e

        increment_probe_call()
        try:
            return await asyncio.to_thread(self._run, cursor, sql)
        except asyncio.CancelledError:
            cursor.interrupt()
            logger.info("probe_interrupted", relation=relation)
            raise

    @staticmethod
    def _run(cursor: duckdb.DuckDBPyConnection, sql: str) -> ProbeOutcome:
        try:
            statements = cursor.extract_statements(sql)
            if len(statements) != 1 or statements[0].type != duckdb.StatementType.SELECT:
                logger.error("probe_guard_violation", statement_count=len(statements))
                return ProbeOutcome(accepted=False, message="probe must be a single SELECT")

            cursor.begin()
            try:
                rows = cursor.execute(sql).fetchall()
            finally:
                cursor.rollback()

            if rows:
                # WHERE FALSE LIMIT 0 makes this impossible for a single SELECT
                logger.error("probe_returned_rows", row_count=len(rows))
                return ProbeOutcome(
                    accepted=False,
                    message="probe query returned rows",
                    row_count=len(rows),
                )
            return ProbeOutcome(accepted=True)
        except duckdb.ConnectionException as e:
            raise ProbeUnavailableError(str(e)) from e
        except duckdb.InterruptException:
            raise
        except duckdb.Error as e:
            return ProbeOutcome(accepted=False, message=str(e))
        finally:
            cursor.close()
