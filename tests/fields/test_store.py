"""Tests for the metadata store."""

from datetime import UTC, datetime, timedelta

import pytest

from calcfields.catalog.models import DataType
from calcfields.expressions.models import FieldCandidate, ValidationResult
from calcfields.fields.models import (
    AttemptOutcome,
    CalculatedFieldDefinition,
    ConflictKind,
    FieldAttempt,
    FieldStatus,
    InvalidTransitionError,
    Persisted,
    PersistenceConflict,
)


def validated(
    name: str = "LEVERED_EBITDA",
    expr: str = "LTM_EBITDA * TOTAL_LEVERAGE",
    by: str = "analyst",
    expected_version: int | None = None,
) -> CalculatedFieldDefinition:
    candidate = FieldCandidate(
        name=name, display_name=name.title(), expression=expr, result_type=DataType.NUMBER
    )
    draft = CalculatedFieldDefinition.draft(
        "credit", candidate, created_by=by, expected_version=expected_version
    )
    return draft.mark_validated(
        ValidationResult(ok=True, canonical_sql=expr, catalog_version=1)
    )


class TestCreate:
    """Test creating fields."""

    async def test_create_new_field(self, store):
        """Test that a new field is stored at version 1."""
        outcome = await store.put_if_absent_or_same_version(validated())

        assert isinstance(outcome, Persisted)
        assert not outcome.replayed
        assert outcome.definition.version == 1
        assert outcome.definition.status == FieldStatus.PERSISTED

        stored = await store.get("credit", "LEVERED_EBITDA")
        assert stored.canonical_sql == "LTM_EBITDA * TOTAL_LEVERAGE"
        assert stored.created_by == "analyst"

    async def test_replay_is_idempotent(self, store):
        """Test that re-sending identical content returns the stored record."""
        await store.put_if_absent_or_same_version(validated())
        before = await store.snapshot("credit")

        outcome = await store.put_if_absent_or_same_version(validated())

        assert isinstance(outcome, Persisted)
        assert outcome.replayed
        assert outcome.definition.version == 1
        assert (await store.snapshot("credit")).revision == before.revision

    async def test_name_exists_for_other_requester(self, store):
        """Test that the same content from someone else is a conflict."""
        await store.put_if_absent_or_same_version(validated(by="analyst"))

        outcome = await store.put_if_absent_or_same_version(validated(by="reviewer"))

        assert isinstance(outcome, PersistenceConflict)
        assert outcome.kind == ConflictKind.NAME_ALREADY_EXISTS
        assert outcome.current_version == 1

    async def test_name_exists_for_other_content(self, store):
        """Test that different content under a taken name is a conflict."""
        await store.put_if_absent_or_same_version(validated())

        outcome = await store.put_if_absent_or_same_version(
            validated(expr="LTM_EBITDA * 2")
        )

        assert outcome.kind == ConflictKind.NAME_ALREADY_EXISTS
        stored = await store.get("credit", "LEVERED_EBITDA")
        assert stored.expression_text == "LTM_EBITDA * TOTAL_LEVERAGE"

    async def test_rejects_unvalidated_definition(self, store):
        """Test that only VALIDATED definitions can be written."""
        candidate = FieldCandidate(
            name="X", display_name="X", expression="1", result_type=DataType.NUMBER
        )
        draft = CalculatedFieldDefinition.draft("credit", candidate, created_by="analyst")

        with pytest.raises(InvalidTransitionError):
            await store.put_if_absent_or_same_version(draft)


class TestUpdate:
    """Test versioned updates."""

    async def test_update_bumps_version(self, store):
        """Test that an update at the current version moves it forward."""
        await store.put_if_absent_or_same_version(validated())

        outcome = await store.put_if_absent_or_same_version(
            validated(expr="LTM_EBITDA * 2", by="reviewer", expected_version=1)
        )

        assert outcome.definition.version == 2
        stored = await store.get("credit", "LEVERED_EBITDA")
        assert stored.expression_text == "LTM_EBITDA * 2"
        assert stored.created_by == "reviewer"

    async def test_stale_version(self, store):
        """Test that an update based on an old version is refused."""
        await store.put_if_absent_or_same_version(validated())
        await store.put_if_absent_or_same_version(
            validated(expr="LTM_EBITDA * 2", expected_version=1)
        )

        outcome = await store.put_if_absent_or_same_version(
            validated(expr="LTM_EBITDA * 3", by="reviewer", expected_version=1)
        )

        assert outcome.kind == ConflictKind.STALE_VERSION
        assert outcome.expected_version == 1
        assert outcome.current_version == 2

    async def test_update_replay(self, store):
        """Test that re-sending an applied update is a replay."""
        await store.put_if_absent_or_same_version(validated())
        update = validated(expr="LTM_EBITDA * 2", by="reviewer", expected_version=1)
        await store.put_if_absent_or_same_version(update)

        outcome = await store.put_if_absent_or_same_version(update)

        assert outcome.replayed
        assert outcome.definition.version == 2

    async def test_update_missing_field(self, store):
        """Test that updating a field that does not exist is NOT_FOUND."""
        outcome = await store.put_if_absent_or_same_version(validated(expected_version=1))

        assert outcome.kind == ConflictKind.NOT_FOUND


class TestDeprecate:
    """Test soft deletion."""

    async def test_deprecate_bumps_version(self, store):
        """Test that deprecation is a versioned write."""
        await store.put_if_absent_or_same_version(validated())

        outcome = await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        assert outcome.definition.status == FieldStatus.DEPRECATED
        assert outcome.definition.version == 2
        assert outcome.definition.deprecated_at is not None
        assert await store.list_active("credit") == []

    async def test_deprecate_stale(self, store):
        """Test deprecating with an outdated version."""
        await store.put_if_absent_or_same_version(validated())
        await store.put_if_absent_or_same_version(
            validated(expr="LTM_EBITDA * 2", expected_version=1)
        )

        outcome = await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        assert outcome.kind == ConflictKind.STALE_VERSION

    async def test_deprecate_twice_is_replay(self, store):
        """Test that repeating a deprecation changes nothing."""
        await store.put_if_absent_or_same_version(validated())
        await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        outcome = await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        assert outcome.replayed
        assert outcome.definition.version == 2

    async def test_deprecate_missing(self, store):
        """Test deprecating a field that does not exist."""
        outcome = await store.deprecate("credit", "NOPE", expected_version=1)

        assert outcome.kind == ConflictKind.NOT_FOUND

    async def test_redefine_deprecated_field(self, store):
        """Test that a deprecated field can be redefined at its current version."""
        await store.put_if_absent_or_same_version(validated())
        await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        outcome = await store.put_if_absent_or_same_version(validated(expected_version=2))

        assert outcome.definition.version == 3
        assert [f.name for f in await store.list_active("credit")] == ["LEVERED_EBITDA"]


class TestPurge:
    """Test hard deletion of deprecated fields."""

    async def test_purges_only_deprecated(self, store):
        """Test that active fields survive a purge."""
        await store.put_if_absent_or_same_version(validated("A_FIELD", "LTM_EBITDA"))
        await store.put_if_absent_or_same_version(validated("B_FIELD", "TOTAL_DEBT"))
        await store.deprecate("credit", "A_FIELD", expected_version=1)

        purged = await store.purge_deprecated("credit")

        assert purged == ["A_FIELD"]
        assert await store.get("credit", "A_FIELD") is None
        assert await store.get("credit", "B_FIELD") is not None

    async def test_protected_names_are_kept(self, store):
        """Test that names still referenced by a live view are not purged."""
        await store.put_if_absent_or_same_version(validated("A_FIELD", "LTM_EBITDA"))
        await store.deprecate("credit", "A_FIELD", expected_version=1)

        purged = await store.purge_deprecated("credit", protected={"A_FIELD"})

        assert purged == []
        assert await store.get("credit", "A_FIELD") is not None


class TestReads:
    """Test snapshots and listings."""

    async def test_empty_scope_snapshot(self, store):
        """Test that a scope without writes is at revision 0."""
        snapshot = await store.snapshot("credit")

        assert snapshot.revision == 0
        assert snapshot.fields == ()

    async def test_revision_counts_writes(self, store):
        """Test that every committed write bumps the revision."""
        await store.put_if_absent_or_same_version(validated("A_FIELD", "LTM_EBITDA"))
        await store.put_if_absent_or_same_version(validated("B_FIELD", "TOTAL_DEBT"))
        await store.deprecate("credit", "A_FIELD", expected_version=1)

        snapshot = await store.snapshot("credit")

        assert snapshot.revision == 3
        assert [f.name for f in snapshot.fields] == ["B_FIELD"]

    async def test_revision_deprecation_only(self, store):
        """Test a snapshot whose scope has no active fields left."""
        await store.put_if_absent_or_same_version(validated())
        await store.deprecate("credit", "LEVERED_EBITDA", expected_version=1)

        snapshot = await store.snapshot("credit")

        assert snapshot.revision == 2
        assert snapshot.fields == ()

    async def test_scopes_are_isolated(self, store):
        """Test that fields of one scope do not leak into another."""
        await store.put_if_absent_or_same_version(validated())

        assert (await store.snapshot("rates")).fields == ()
        assert await store.get("rates", "LEVERED_EBITDA") is None

    async def test_list_fields_with_deprecated(self, store):
        """Test listing with and without deprecated fields."""
        await store.put_if_absent_or_same_version(validated("A_FIELD", "LTM_EBITDA"))
        await store.put_if_absent_or_same_version(validated("B_FIELD", "TOTAL_DEBT"))
        await store.deprecate("credit", "A_FIELD", expected_version=1)

        active = await store.list_fields("credit")
        everything = await store.list_fields("credit", include_deprecated=True)

        assert [f.name for f in active] == ["B_FIELD"]
        assert [f.name for f in everything] == ["A_FIELD", "B_FIELD"]


class TestAttempts:
    """Test the audit trail."""

    async def test_newest_first_and_filtered(self, store):
        """Test ordering and the outcome filter."""
        now = datetime.now(UTC)
        for offset, outcome in enumerate(
            [AttemptOutcome.REJECTED, AttemptOutcome.PERSISTED, AttemptOutcome.REJECTED]
        ):
            await store.record_attempt(
                FieldAttempt(
                    attempt_id=f"a{offset}",
                    scope_id="credit",
                    request_text=f"request {offset}",
                    outcome=outcome,
                    errors=["UNKNOWN_COLUMN: unknown column 'CASH'"]
                    if outcome == AttemptOutcome.REJECTED
                    else [],
                    requested_by="analyst",
                    created_at=now + timedelta(seconds=offset),
                )
            )

        everything = await store.list_attempts("credit")
        rejected = await store.list_attempts("credit", outcome=AttemptOutcome.REJECTED)
        latest = await store.list_attempts("credit", limit=1)

        assert [a.attempt_id for a in everything] == ["a2", "a1", "a0"]
        assert [a.attempt_id for a in rejected] == ["a2", "a0"]
        assert rejected[0].errors == ["UNKNOWN_COLUMN: unknown column 'CASH'"]
        assert [a.attempt_id for a in latest] == ["a2"]
