"""Tests for view regeneration."""

import asyncio
from collections.abc import Sequence

import pytest

from calcfields.catalog.models import ColumnDescriptor, ColumnRole, DataType
from calcfields.expressions.probe import EngineProbe, ProbeOutcome, ProbeUnavailableError
from calcfields.fields.models import StoreSnapshot
from calcfields.views.regeneration import (
    RegenerationEngine,
    RegenerationFailure,
    RegenerationFailureKind,
    fold_view,
)
from conftest import credit_snapshot, validated_field

LEVERED = ('"LTM_EBITDA" * "TOTAL_LEVERAGE"', ("LTM_EBITDA", "TOTAL_LEVERAGE"))
NET_DEBT = ('"TOTAL_DEBT" - "CASH"', ("CASH", "TOTAL_DEBT"))


class UnreachableProbe(EngineProbe):
    async def probe(self, relation: str, projections: Sequence[tuple[str, str]]) -> ProbeOutcome:
        raise ProbeUnavailableError("engine offline")


class StallingProbe(EngineProbe):
    """Holds the compile check until released."""

    def __init__(self, inner: EngineProbe) -> None:
        self.inner = inner
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def probe(self, relation: str, projections: Sequence[tuple[str, str]]) -> ProbeOutcome:
        self.entered.set()
        await self.release.wait()
        return await self.inner.probe(relation, projections)


class TestFoldView:
    """Test the pure merge of catalog and store snapshot."""

    def test_base_columns_only(self):
        """Test a scope without calculated fields."""
        view = fold_view(credit_snapshot(version=3), StoreSnapshot(scope_id="credit", revision=0))

        assert view.calculated_fields == ()
        assert len(view.dimensions) == 4
        assert len(view.measures) == 4
        assert view.generation_version == 3
        assert view.store_revision == 0

    def test_field_roles_and_generation(self):
        """Test that numeric fields are measures and versions fold into the generation."""
        levered = validated_field("LEVERED_EBITDA", *LEVERED).mark_persisted(version=4)
        flag = validated_field(
            "IS_HIGH_LEVERAGE",
            '"TOTAL_LEVERAGE" > 6',
            ("TOTAL_LEVERAGE",),
            type_=DataType.BOOLEAN,
        ).mark_persisted(version=1)
        snapshot = StoreSnapshot(scope_id="credit", revision=7, fields=(flag, levered))

        view = fold_view(credit_snapshot(version=2), snapshot)

        assert view.field_names == ["IS_HIGH_LEVERAGE", "LEVERED_EBITDA"]
        assert view.get_field("levered_ebitda").role == ColumnRole.MEASURE
        assert view.get_field("IS_HIGH_LEVERAGE").role == ColumnRole.DIMENSION
        assert view.get_field("LEVERED_EBITDA").expression == LEVERED[0]
        assert view.generation_version == 4
        assert view.store_revision == 7


class TestRegenerationEngine:
    """Test RegenerationEngine against the store and the engine probe."""

    async def test_publishes_active_fields(self, store, engine, registry):
        """Test that persisted fields appear in the published view."""
        await store.put_if_absent_or_same_version(validated_field("LEVERED_EBITDA", *LEVERED))

        view = await engine.regenerate("credit")

        assert registry.current("credit") is view
        assert view.field_names == ["LEVERED_EBITDA"]
        assert view.store_revision == 1

    async def test_excludes_deprecated_fields(self, store, engine):
        """Test that deprecated fields are left out of the next generation."""
        await store.put_if_absent_or_same_version(validated_field("LEVERED_EBITDA", *LEVERED))
        await store.put_if_absent_or_same_version(
            validated_field("DEBT_X2", '"TOTAL_DEBT" * 2', ("TOTAL_DEBT",))
        )
        await store.deprecate("credit", "DEBT_X2", expected_version=1)

        view = await engine.regenerate("credit")

        assert view.field_names == ["LEVERED_EBITDA"]
        assert view.generation_version == 1

    async def test_missing_base_column_keeps_previous_view(self, store, engine, registry):
        """Test that a dangling reference fails and the old view stays published."""
        await store.put_if_absent_or_same_version(validated_field("LEVERED_EBITDA", *LEVERED))
        published = await engine.regenerate("credit")
        await store.put_if_absent_or_same_version(validated_field("NET_DEBT", *NET_DEBT))

        with pytest.raises(RegenerationFailure) as exc_info:
            await engine.regenerate("credit")

        assert exc_info.value.kind == RegenerationFailureKind.MISSING_BASE_COLUMN
        assert exc_info.value.names == ("NET_DEBT",)
        assert registry.current("credit") is published

    async def test_catalog_change_collides_with_field(self, store, engine, catalogs, registry):
        """Test a new base column taking the name of an existing field."""
        await store.put_if_absent_or_same_version(validated_field("LEVERED_EBITDA", *LEVERED))
        published = await engine.regenerate("credit")
        catalogs.put(
            credit_snapshot(
                version=2,
                extra=(
                    ColumnDescriptor(
                        name="LEVERED_EBITDA",
                        display_name="Levered EBITDA",
                        data_type=DataType.NUMBER,
                    ),
                ),
            )
        )

        with pytest.raises(RegenerationFailure) as exc_info:
            await engine.regenerate("credit")

        assert exc_info.value.kind == RegenerationFailureKind.NAME_COLLISION_WITH_BASE_COLUMN
        assert registry.current("credit") is published

    async def test_engine_rejects_merged_view(self, store, engine, catalogs, registry):
        """Test that a view the engine cannot compile is not published."""
        cash = ColumnDescriptor(name="CASH", display_name="Cash", data_type=DataType.NUMBER)
        catalogs.put(credit_snapshot(extra=(cash,)))
        await store.put_if_absent_or_same_version(validated_field("NET_DEBT", *NET_DEBT))

        with pytest.raises(RegenerationFailure) as exc_info:
            await engine.regenerate("credit")

        assert exc_info.value.kind == RegenerationFailureKind.ENGINE_COMPILE_FAILURE
        assert registry.current("credit") is None

    async def test_engine_unavailable(self, store, catalogs, registry, settings):
        """Test that an unreachable engine fails regeneration after retries."""
        engine = RegenerationEngine(catalogs, store, registry, UnreachableProbe(), settings)

        with pytest.raises(RegenerationFailure) as exc_info:
            await engine.regenerate("credit")

        assert exc_info.value.kind == RegenerationFailureKind.ENGINE_UNAVAILABLE

    async def test_build_does_not_publish(self, engine, registry):
        """Test that build only checks."""
        view = await engine.build("credit")

        assert view.scope_id == "credit"
        assert registry.current("credit") is None

    async def test_without_probe(self, store, catalogs, registry, settings):
        """Test that the engine check is skipped when no probe is configured."""
        cash = ColumnDescriptor(name="CASH", display_name="Cash", data_type=DataType.NUMBER)
        catalogs.put(credit_snapshot(extra=(cash,)))
        await store.put_if_absent_or_same_version(validated_field("NET_DEBT", *NET_DEBT))
        engine = RegenerationEngine(catalogs, store, registry, None, settings)

        view = await engine.regenerate("credit")

        assert view.field_names == ["NET_DEBT"]

    async def test_slow_regeneration_keeps_newer_view(
        self, store, engine, catalogs, registry, probe, settings
    ):
        """Test that a regeneration started before a write cannot hide the written field."""
        stalling = StallingProbe(probe)
        slow = RegenerationEngine(catalogs, store, registry, stalling, settings)
        task = asyncio.create_task(slow.regenerate("credit"))
        await stalling.entered.wait()

        await store.put_if_absent_or_same_version(validated_field("LEVERED_EBITDA", *LEVERED))
        fresh = await engine.regenerate("credit")
        stalling.release.set()
        result = await task

        assert result is fresh
        assert registry.current("credit") is fresh
        assert registry.current("credit").field_names == ["LEVERED_EBITDA"]
