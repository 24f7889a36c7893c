"""Calculated field database models.

SQLAlchemy models for the field store, the per-scope revision counter and
the attempt audit trail.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from calcfields.storage import Base


class CalculatedFieldRecord(Base):
    """One calculated field per (scope_id, name).

    ``version`` is the optimistic-concurrency token: every update and
    deprecation is conditional on the version the writer last read.
    """

    __tablename__ = "calculated_fields"
    __table_args__ = (UniqueConstraint("scope_id", "name", name="uq_calculated_fields_scope_name"),)

    field_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))

    # Identity
    scope_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # normalized

    # Definition
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    expression_text: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_sql: Mapped[str] = mapped_column(Text, nullable=False)
    referenced_columns: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    result_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # Lifecycle
    status: Mapped[str] = mapped_column(String, nullable=False)  # 'persisted', 'deprecated'
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    catalog_version: Mapped[int | None] = mapped_column(Integer)

    # Provenance
    created_by: Mapped[str] = mapped_column(String, nullable=False)  # author of this version
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    last_validated_at: Mapped[datetime | None] = mapped_column(DateTime)
    deprecated_at: Mapped[datetime | None] = mapped_column(DateTime)


Index(
    "idx_calculated_fields_scope_status",
    CalculatedFieldRecord.scope_id,
    CalculatedFieldRecord.status,
)


class ScopeRevision(Base):
    """Monotonic write counter per scope.

    Bumped in the same transaction as every field write, so a reader that
    sees revision N sees exactly the fields written up to N.
    """

    __tablename__ = "scope_revisions"

    scope_id: Mapped[str] = mapped_column(String, primary_key=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class FieldAttemptRecord(Base):
    """Audit trail of finished pipeline attempts, including rejections."""

    __tablename__ = "field_attempts"

    attempt_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    scope_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str | None] = mapped_column(String(128))
    request_text: Mapped[str | None] = mapped_column(Text)
    expression_text: Mapped[str | None] = mapped_column(Text)
    outcome: Mapped[str] = mapped_column(String, nullable=False)
    errors: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int | None] = mapped_column(Integer)
    requested_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


Index("idx_field_attempts_scope", FieldAttemptRecord.scope_id, FieldAttemptRecord.created_at)
