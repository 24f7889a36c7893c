"""Tests for the field pipeline coordinator."""

import asyncio

import pytest

from calcfields.catalog.models import DataType
from calcfields.catalog.provider import CatalogNotFoundError
from calcfields.expressions.models import FieldCandidate, ValidationErrorCode
from calcfields.fields.models import AttemptOutcome, ConflictKind, FieldStatus
from calcfields.llm.features.expression import GenerationErrorKind
from calcfields.llm.providers.base import LLMTransientError
from calcfields.pipeline.coordinator import FieldPipelineCoordinator, PipelineStatus
from conftest import generator_answer, validated_field


def definition(name: str, expr: str, type_: DataType = DataType.NUMBER) -> FieldCandidate:
    return FieldCandidate(
        name=name, display_name=name.replace("_", " ").title(), expression=expr, result_type=type_
    )


class TestRequestField:
    """Test request_field end to end."""

    async def test_levered_ebitda(self, coordinator, store, registry, exporter):
        """Test a request from natural language to the published view."""
        result = await coordinator.request_field(
            "credit", "multiply LTM EBITDA by Total Leverage", requested_by="analyst"
        )

        assert result.status == PipelineStatus.PERSISTED
        assert result.success
        assert result.definition.name == "LEVERED_EBITDA"
        assert result.definition.version == 1
        assert result.definition.canonical_sql == '"LTM_EBITDA" * "TOTAL_LEVERAGE"'
        assert result.view_published
        assert result.generation_version == 1
        assert result.warnings == []

        view = registry.current("credit")
        assert view.field_names == ["LEVERED_EBITDA"]
        assert exporter.export("credit").calculated_fields == ("LEVERED_EBITDA",)

        attempts = await store.list_attempts("credit")
        assert [a.outcome for a in attempts] == [AttemptOutcome.PERSISTED]
        assert attempts[0].request_text == "multiply LTM EBITDA by Total Leverage"
        assert attempts[0].attempt_id == result.request_id

    async def test_rejected_candidate_leaves_store_untouched(
        self, coordinator, provider, store, registry
    ):
        """Test that a candidate naming an unknown column is rejected and audited."""
        provider.script = [generator_answer("NET_DEBT", "TOTAL_DEBT - CASH")]

        result = await coordinator.request_field("credit", "net debt", requested_by="analyst")

        assert result.status == PipelineStatus.REJECTED
        assert not result.success
        assert not result.retryable
        assert result.validation.codes == [ValidationErrorCode.UNKNOWN_COLUMN]
        assert result.definition.status == FieldStatus.REJECTED
        assert result.error_messages == [
            "UNKNOWN_COLUMN at 13: unknown column 'CASH' in scope 'credit'"
        ]
        assert await store.get("credit", "NET_DEBT") is None
        assert registry.current("credit") is None

        attempts = await store.list_attempts("credit", outcome=AttemptOutcome.REJECTED)
        assert attempts[0].expression_text == "TOTAL_DEBT - CASH"
        assert attempts[0].errors == result.error_messages

    async def test_generation_failure(self, coordinator, provider, store):
        """Test that an unreachable generator is reported as retryable."""
        provider.script = [LLMTransientError("overloaded", rate_limited=True)]

        result = await coordinator.request_field("credit", "net debt", requested_by="analyst")

        assert result.status == PipelineStatus.GENERATION_FAILED
        assert result.generation_error.kind == GenerationErrorKind.RATE_LIMITED
        assert result.retryable
        attempts = await store.list_attempts("credit")
        assert attempts[0].outcome == AttemptOutcome.GENERATION_FAILED

    async def test_name_taken_by_other_requester(self, coordinator):
        """Test that a second requester gets NAME_ALREADY_EXISTS."""
        await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")

        result = await coordinator.request_field("credit", "levered ebitda", requested_by="pm")

        assert result.status == PipelineStatus.CONFLICT
        assert result.conflict.kind == ConflictKind.NAME_ALREADY_EXISTS
        assert result.conflict.current_version == 1

    async def test_replay_from_same_requester(self, coordinator, registry):
        """Test that repeating a request is acknowledged without a new version."""
        first = await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")

        second = await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")

        assert second.status == PipelineStatus.PERSISTED
        assert second.replayed
        assert second.definition.version == first.definition.version == 1
        assert registry.current("credit").store_revision == 1

    async def test_update_with_expected_version(self, coordinator, provider):
        """Test redefining a field at its current version."""
        await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")
        provider.script = [
            generator_answer("LEVERED_EBITDA", "LTM_EBITDA * TOTAL_LEVERAGE * 1.1")
        ]

        result = await coordinator.request_field(
            "credit", "add a 10% cushion", requested_by="analyst", expected_version=1
        )

        assert result.definition.version == 2
        assert result.generation_version == 2

    async def test_unknown_scope(self, coordinator):
        """Test that an unknown scope raises before anything runs."""
        with pytest.raises(CatalogNotFoundError):
            await coordinator.request_field("rates", "anything", requested_by="analyst")

    async def test_without_generator(self, catalogs, validator, store, engine):
        """Test that request_field needs a generator."""
        coordinator = FieldPipelineCoordinator(catalogs, validator, store, engine)

        with pytest.raises(RuntimeError):
            await coordinator.request_field("credit", "anything", requested_by="analyst")


class TestRegenerationFailureAfterWrite:
    """Test a write that succeeds while the view cannot be regenerated."""

    async def test_alerts_and_keeps_write(self, coordinator, store, alerts, registry):
        """Test that the write stands, the old view stays and operators are alerted."""
        await coordinator.regenerate("credit")
        published = registry.current("credit")
        await store.put_if_absent_or_same_version(
            validated_field("NET_DEBT", '"TOTAL_DEBT" - "CASH"', ("CASH", "TOTAL_DEBT"))
        )

        result = await coordinator.request_field(
            "credit", "levered ebitda", requested_by="analyst"
        )

        assert result.status == PipelineStatus.PERSISTED
        assert result.success
        assert not result.view_published
        assert result.generation_version is None
        assert result.warnings[0].startswith("view not regenerated:")
        assert await store.get("credit", "LEVERED_EBITDA") is not None
        assert registry.current("credit") is published

        assert len(alerts.alerts) == 1
        alert = alerts.alerts[0]
        assert alert.kind == "MISSING_BASE_COLUMN"
        assert alert.field_name == "LEVERED_EBITDA"
        assert alert.request_id == result.request_id


class TestSubmitDefinition:
    """Test operator-written definitions."""

    async def test_persists_with_description(self, coordinator, registry):
        """Test that descriptions reach the published view."""
        result = await coordinator.submit_definition(
            "credit",
            definition("IS_HIGH_LEVERAGE", "TOTAL_LEVERAGE > 6", DataType.BOOLEAN),
            requested_by="operator",
            description="Leverage above the 6x policy limit",
        )

        assert result.status == PipelineStatus.PERSISTED
        field = registry.current("credit").get_field("IS_HIGH_LEVERAGE")
        assert field.description == "Leverage above the 6x policy limit"
        assert field.expression == '"TOTAL_LEVERAGE" > 6'

    async def test_validated_like_generated_fields(self, coordinator):
        """Test that operator definitions go through the validator."""
        result = await coordinator.submit_definition(
            "credit",
            definition("SECTOR", "UPPER(SECTOR)", DataType.VARCHAR),
            requested_by="operator",
        )

        assert result.status == PipelineStatus.REJECTED
        assert result.validation.codes == [ValidationErrorCode.NAME_SHADOWS_COLUMN]

    async def test_spacing_variant_is_replay(self, coordinator, store):
        """Test that the same content written differently is an idempotent replay."""
        first = await coordinator.submit_definition(
            "credit", definition("EBITDA_X_LEVERAGE", "LTM_EBITDA * TOTAL_LEVERAGE"), "analyst"
        )
        again = await coordinator.submit_definition(
            "credit", definition("EBITDA_X_LEVERAGE", "ebitda*leverage"), "analyst"
        )

        assert first.status == PipelineStatus.PERSISTED
        assert again.status == PipelineStatus.PERSISTED
        assert again.replayed
        assert again.definition.version == 1
        stored = await store.get("credit", "EBITDA_X_LEVERAGE")
        assert stored.expression_text == "LTM_EBITDA * TOTAL_LEVERAGE"

    async def test_concurrent_definitions_one_winner(self, coordinator, registry, store):
        """Test that racing requesters for one name produce exactly one field."""
        results = await asyncio.gather(
            *(
                coordinator.submit_definition(
                    "credit",
                    definition("DEBT_MULTIPLE", f"TOTAL_DEBT * {i + 2}"),
                    requested_by=f"user{i}",
                )
                for i in range(4)
            )
        )

        statuses = sorted(r.status.value for r in results)
        assert statuses == ["conflict", "conflict", "conflict", "persisted"]
        winner = next(r for r in results if r.status == PipelineStatus.PERSISTED)
        stored = await store.get("credit", "DEBT_MULTIPLE")
        assert stored.expression_text == winner.definition.expression_text
        view_field = registry.current("credit").get_field("DEBT_MULTIPLE")
        assert view_field.expression == winner.definition.canonical_sql


class TestDeprecateAndPurge:
    """Test deprecation and purging through the coordinator."""

    async def test_deprecate_removes_from_view(self, coordinator, registry):
        """Test that a deprecated field leaves the next view."""
        await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")
        served = registry.current("credit")

        result = await coordinator.deprecate(
            "credit", "levered_ebitda", expected_version=1, requested_by="analyst"
        )

        assert result.status == PipelineStatus.DEPRECATED
        assert result.success
        assert result.definition.version == 2
        assert registry.current("credit").field_names == []
        assert result.generation_version == registry.current("credit").generation_version

        # Readers holding the earlier generation keep seeing the field
        assert served.field_names == ["LEVERED_EBITDA"]
        assert registry.previous("credit") is served

    async def test_deprecate_stale(self, coordinator, provider):
        """Test deprecating with an outdated version."""
        await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")
        provider.script = [generator_answer("LEVERED_EBITDA", "LTM_EBITDA * 2")]
        await coordinator.request_field(
            "credit", "change it", requested_by="analyst", expected_version=1
        )

        result = await coordinator.deprecate(
            "credit", "LEVERED_EBITDA", expected_version=1, requested_by="analyst"
        )

        assert result.status == PipelineStatus.CONFLICT
        assert result.conflict.kind == ConflictKind.STALE_VERSION

    async def test_deprecate_unknown(self, coordinator):
        """Test deprecating a field that does not exist."""
        result = await coordinator.deprecate(
            "credit", "NOPE", expected_version=1, requested_by="analyst"
        )

        assert result.conflict.kind == ConflictKind.NOT_FOUND

    async def test_purge_waits_for_views_to_move_on(self, coordinator, store):
        """Test that a field still in a servable view is not purged."""
        await coordinator.request_field("credit", "levered ebitda", requested_by="analyst")
        await coordinator.deprecate(
            "credit", "LEVERED_EBITDA", expected_version=1, requested_by="analyst"
        )

        assert await coordinator.purge_deprecated("credit") == []

        await coordinator.regenerate("credit")
        assert await coordinator.purge_deprecated("credit") == ["LEVERED_EBITDA"]
        assert await store.get("credit", "LEVERED_EBITDA") is None
