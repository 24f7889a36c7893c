"""Metadata store for calculated field definitions.

The store is the only mutation point of the pipeline. Concurrency control is
optimistic and enforced by the database:

- Creation is a plain INSERT guarded by the (scope_id, name) unique
  constraint; of N concurrent creators exactly one commits, the others get
  a NAME_ALREADY_EXISTS conflict.
- Updates and deprecations are ``UPDATE ... WHERE version = :expected``;
  a zero row count means the writer's view is stale.

Every write also bumps the scope's revision row inside the same transaction.
``snapshot()`` reads the revision and the active fields in one statement, so
regeneration always folds a consistent set.

Usage:
    store = MetadataStore(manager.session_factory)
    outcome = await store.put_if_absent_or_same_version(validated_definition)
    if isinstance(outcome, PersistenceConflict):
        ...
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calcfields.catalog.models import DataType
from calcfields.core.logging import get_logger, increment_db_write
from calcfields.fields.db_models import CalculatedFieldRecord, FieldAttemptRecord, ScopeRevision
from calcfields.fields.models import (
    AttemptOutcome,
    CalculatedFieldDefinition,
    ConflictKind,
    FieldAttempt,
    FieldStatus,
    InvalidTransitionError,
    Persisted,
    PersistenceConflict,
    StoreSnapshot,
)

logger = get_logger(__name__)

PutOutcome = Persisted | PersistenceConflict


def _to_definition(record: CalculatedFieldRecord) -> CalculatedFieldDefinition:
    return CalculatedFieldDefinition(
        scope_id=record.scope_id,
        name=record.name,
        display_name=record.display_name,
        expression_text=record.expression_text,
        canonical_sql=record.canonical_sql,
        referenced_columns=tuple(record.referenced_columns),
        result_type=DataType(record.result_type),
        status=FieldStatus(record.status),
        version=record.version,
        catalog_version=record.catalog_version,
        description=record.description,
        created_by=record.created_by,
        created_at=record.created_at,
        last_validated_at=record.last_validated_at,
        deprecated_at=record.deprecated_at,
    )


def _to_attempt(record: FieldAttemptRecord) -> FieldAttempt:
    return FieldAttempt(
        attempt_id=record.attempt_id,
        scope_id=record.scope_id,
        name=record.name,
        request_text=record.request_text,
        expression_text=record.expression_text,
        outcome=AttemptOutcome(record.outcome),
        errors=list(record.errors or []),
        version=record.version,
        requested_by=record.requested_by,
        created_at=record.created_at,
    )


class MetadataStore:
    """Durable, versioned repository of calculated fields.

    Args:
        session_factory: Async session factory (see ConnectionManager)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- Writes ---------------------------------------------------------

    async def put_if_absent_or_same_version(
        self, definition: CalculatedFieldDefinition
    ) -> PutOutcome:
        """Persist a VALIDATED definition.

        With ``expected_version`` None the field must not exist yet. Otherwise
        the stored version must equal ``expected_version`` and the new version
        is one higher. Re-sending content that is already stored under the
        version this write would have produced is a no-op returning the
        stored record (``replayed=True``).

        Raises:
            InvalidTransitionError: If the definition is not VALIDATED
        """
        if definition.status != FieldStatus.VALIDATED:
            raise InvalidTransitionError(definition.status, FieldStatus.PERSISTED)
        if definition.canonical_sql is None:
            raise ValueError("A validated definition must carry its canonical SQL")

        if definition.expected_version is None:
            written = await self._insert(definition)
        else:
            written = await self._update(definition)

        if written is not None:
            increment_db_write()
            logger.info(
                "field_persisted",
                scope_id=written.scope_id,
                name=written.name,
                version=written.version,
            )
            return Persisted(definition=written)

        return await self._conflict_or_replay(
            definition.scope_id,
            definition.name,
            definition.expected_version,
            lambda stored: stored.status == FieldStatus.PERSISTED
            and stored.fingerprint == definition.fingerprint
            and stored.created_by == definition.created_by,
        )

    async def _insert(
        self, definition: CalculatedFieldDefinition
    ) -> CalculatedFieldDefinition | None:
        persisted = definition.mark_persisted(version=1)
        now = datetime.now(UTC)
        record = CalculatedFieldRecord(
            scope_id=persisted.scope_id,
            name=persisted.name,
            display_name=persisted.display_name,
            expression_text=persisted.expression_text,
            canonical_sql=persisted.canonical_sql,
            referenced_columns=list(persisted.referenced_columns),
            result_type=persisted.result_type.value,
            description=persisted.description,
            status=persisted.status.value,
            version=1,
            catalog_version=persisted.catalog_version,
            created_by=persisted.created_by,
            created_at=persisted.created_at,
            updated_at=now,
            last_validated_at=persisted.last_validated_at,
        )
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    session.add(record)
                    await session.flush()
                    await self._bump_revision(session, persisted.scope_id)
            except IntegrityError:
                return None
        return persisted

    async def _update(
        self, definition: CalculatedFieldDefinition
    ) -> CalculatedFieldDefinition | None:
        assert definition.expected_version is not None
        new_version = definition.expected_version + 1
        now = datetime.now(UTC)

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(CalculatedFieldRecord)
                    .where(
                        CalculatedFieldRecord.scope_id == definition.scope_id,
                        CalculatedFieldRecord.name == definition.name,
                        CalculatedFieldRecord.version == definition.expected_version,
                    )
                    .values(
                        display_name=definition.display_name,
                        expression_text=definition.expression_text,
                        canonical_sql=definition.canonical_sql,
                        referenced_columns=list(definition.referenced_columns),
                        result_type=definition.result_type.value,
                        description=definition.description,
                        created_by=definition.created_by,
                        status=FieldStatus.PERSISTED.value,
                        version=new_version,
                        catalog_version=definition.catalog_version,
                        updated_at=now,
                        last_validated_at=definition.last_validated_at,
                        deprecated_at=None,
                    )
                )
                if result.rowcount != 1:
                    return None
                await self._bump_revision(session, definition.scope_id)

        return definition.mark_persisted(version=new_version)

    async def deprecate(self, scope_id: str, name: str, expected_version: int) -> PutOutcome:
        """Soft-delete a persisted field.

        Deprecation is a versioned write: the stored version must equal
        ``expected_version`` and is bumped by one.
        """
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(CalculatedFieldRecord)
                    .where(
                        CalculatedFieldRecord.scope_id == scope_id,
                        CalculatedFieldRecord.name == name,
                        CalculatedFieldRecord.version == expected_version,
                        CalculatedFieldRecord.status == FieldStatus.PERSISTED.value,
                    )
                    .values(
                        status=FieldStatus.DEPRECATED.value,
                        version=expected_version + 1,
                        updated_at=now,
                        deprecated_at=now,
                    )
                )
                deprecated = result.rowcount == 1
                if deprecated:
                    await self._bump_revision(session, scope_id)

        if deprecated:
            increment_db_write()
            stored = await self.get(scope_id, name)
            assert stored is not None
            logger.info("field_deprecated", scope_id=scope_id, name=name, version=stored.version)
            return Persisted(definition=stored)

        return await self._conflict_or_replay(
            scope_id,
            name,
            expected_version,
            lambda stored: stored.status == FieldStatus.DEPRECATED,
        )

    async def _conflict_or_replay(
        self,
        scope_id: str,
        name: str,
        expected_version: int | None,
        is_replay: Callable[[CalculatedFieldDefinition], bool],
    ) -> PutOutcome:
        stored = await self.get(scope_id, name)
        if stored is None:
            kind = ConflictKind.NOT_FOUND
        elif stored.version == (expected_version or 0) + 1 and is_replay(stored):
            logger.info(
                "field_write_replayed", scope_id=scope_id, name=name, version=stored.version
            )
            return Persisted(definition=stored, replayed=True)
        elif expected_version is None:
            kind = ConflictKind.NAME_ALREADY_EXISTS
        else:
            kind = ConflictKind.STALE_VERSION

        conflict = PersistenceConflict(
            kind=kind,
            scope_id=scope_id,
            name=name,
            expected_version=expected_version,
            current_version=stored.version if stored else None,
        )
        logger.info(
            "field_write_conflict",
            scope_id=scope_id,
            name=name,
            kind=kind.value,
            expected_version=expected_version,
            current_version=conflict.current_version,
        )
        return conflict

    async def _bump_revision(self, session: AsyncSession, scope_id: str) -> None:
        now = datetime.now(UTC)
        dialect = session.get_bind().dialect.name
        insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(ScopeRevision).values(scope_id=scope_id, revision=1, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ScopeRevision.scope_id],
            set_={"revision": ScopeRevision.revision + 1, "updated_at": now},
        )
        await session.execute(stmt)

    async def purge_deprecated(self, scope_id: str, protected: Iterable[str] = ()) -> list[str]:
        """Hard-delete deprecated fields that no live view still references.

        Args:
            scope_id: Scope to purge
            protected: Names referenced by the currently published view

        Returns:
            Names of the deleted fields
        """
        keep = set(protected)
        async with self._session_factory() as session:
            async with session.begin():
                rows = await session.execute(
                    select(CalculatedFieldRecord.name).where(
                        CalculatedFieldRecord.scope_id == scope_id,
                        CalculatedFieldRecord.status == FieldStatus.DEPRECATED.value,
                    )
                )
                names = sorted(name for name in rows.scalars() if name not in keep)
                if names:
                    await session.execute(
                        delete(CalculatedFieldRecord).where(
                            CalculatedFieldRecord.scope_id == scope_id,
                            CalculatedFieldRecord.status == FieldStatus.DEPRECATED.value,
                            CalculatedFieldRecord.name.in_(names),
                        )
                    )

        if names:
            logger.info("deprecated_fields_purged", scope_id=scope_id, names=names)
        return names

    async def record_attempt(self, attempt: FieldAttempt) -> None:
        """Append a finished attempt to the audit trail."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    FieldAttemptRecord(
                        attempt_id=attempt.attempt_id,
                        scope_id=attempt.scope_id,
                        name=attempt.name,
                        request_text=attempt.request_text,
                        expression_text=attempt.expression_text,
                        outcome=attempt.outcome.value,
                        errors=list(attempt.errors),
                        version=attempt.version,
                        requested_by=attempt.requested_by,
                        created_at=attempt.created_at,
                    )
                )

    # --- Reads ----------------------------------------------------------

    async def get(self, scope_id: str, name: str) -> CalculatedFieldDefinition | None:
        async with self._session_factory() as session:
            record = await session.scalar(
                select(CalculatedFieldRecord).where(
                    CalculatedFieldRecord.scope_id == scope_id,
                    CalculatedFieldRecord.name == name,
                )
            )
            return _to_definition(record) if record is not None else None

    async def snapshot(self, scope_id: str) -> StoreSnapshot:
        """Read the scope revision and its active fields consistently.

        A single statement joins the revision row with the active fields, so
        no concurrent write can land between reading the two.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScopeRevision.revision, CalculatedFieldRecord)
                .select_from(ScopeRevision)
                .outerjoin(
                    CalculatedFieldRecord,
                    and_(
                        CalculatedFieldRecord.scope_id == ScopeRevision.scope_id,
                        CalculatedFieldRecord.status == FieldStatus.PERSISTED.value,
                    ),
                )
                .where(ScopeRevision.scope_id == scope_id)
                .order_by(CalculatedFieldRecord.name)
            )
            rows = result.all()

        if not rows:
            return StoreSnapshot(scope_id=scope_id, revision=0)
        return StoreSnapshot(
            scope_id=scope_id,
            revision=rows[0][0],
            fields=tuple(_to_definition(record) for _, record in rows if record is not None),
        )

    async def list_active(self, scope_id: str) -> list[CalculatedFieldDefinition]:
        """Persisted, non-deprecated fields of a scope, ordered by name."""
        return list((await self.snapshot(scope_id)).fields)

    async def list_fields(
        self, scope_id: str, include_deprecated: bool = False
    ) -> list[CalculatedFieldDefinition]:
        statuses = [FieldStatus.PERSISTED.value]
        if include_deprecated:
            statuses.append(FieldStatus.DEPRECATED.value)
        async with self._session_factory() as session:
            records = await session.scalars(
                select(CalculatedFieldRecord)
                .where(
                    CalculatedFieldRecord.scope_id == scope_id,
                    CalculatedFieldRecord.status.in_(statuses),
                )
                .order_by(CalculatedFieldRecord.name)
            )
            return [_to_definition(r) for r in records]

    async def list_attempts(
        self, scope_id: str, outcome: AttemptOutcome | None = None, limit: int = 50
    ) -> list[FieldAttempt]:
        """Most recent attempts first."""
        stmt = select(FieldAttemptRecord).where(FieldAttemptRecord.scope_id == scope_id)
        if outcome is not None:
            stmt = stmt.where(FieldAttemptRecord.outcome == outcome.value)
        stmt = stmt.order_by(FieldAttemptRecord.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            records = await session.scalars(stmt)
            return [_to_attempt(r) for r in records]
