"""Tests for the four-step expression validator."""

from collections.abc import Sequence

import pytest

from calcfields.catalog.models import ColumnDescriptor, DataType
from calcfields.expressions.models import FieldCandidate, ValidationErrorCode
from calcfields.expressions.probe import EngineProbe, ProbeOutcome, ProbeUnavailableError
from calcfields.expressions.validator import ExpressionValidator
from conftest import credit_snapshot


def candidate(expr: str, name: str = "NEW_FIELD", type_: DataType = DataType.NUMBER):
    return FieldCandidate(
        name=name, display_name=name.title(), expression=expr, result_type=type_
    )


class UnreachableProbe(EngineProbe):
    def __init__(self) -> None:
        self.calls = 0

    async def probe(self, relation: str, projections: Sequence[tuple[str, str]]) -> ProbeOutcome:
        self.calls += 1
        raise ProbeUnavailableError("connection refused")


class TestGrammarStep:
    """Test forbidden constructs, syntax, the allow-list and field names."""

    async def test_statement_injection_is_rejected(self, validator, catalog):
        """Test that a statement separator and DDL keyword are both reported."""
        result = await validator.validate(
            candidate("LTM_EBITDA; DROP TABLE DIM_CREDIT"), catalog
        )

        assert not result.ok
        assert result.codes == [ValidationErrorCode.FORBIDDEN_CONSTRUCT] * 2
        messages = [e.message for e in result.errors]
        assert "forbidden sequence ';'" in messages
        assert "forbidden keyword 'DROP'" in messages
        assert result.errors[0].position == 10

    async def test_forbidden_inside_string_literal(self, validator, catalog):
        """Test that forbidden text is rejected even inside a literal."""
        result = await validator.validate(
            candidate("SECTOR || '; select 1'", type_=DataType.VARCHAR), catalog
        )

        assert not result.ok
        assert result.has(ValidationErrorCode.FORBIDDEN_CONSTRUCT)

    async def test_comment_is_rejected(self, validator, catalog):
        """Test that comment openers are forbidden."""
        result = await validator.validate(candidate("LTM_EBITDA -- sneaky"), catalog)

        assert result.codes == [ValidationErrorCode.FORBIDDEN_CONSTRUCT]

    async def test_syntax_error_has_position(self, validator, catalog):
        """Test that parse failures are reported with an offset."""
        result = await validator.validate(candidate("LTM_EBITDA * (TOTAL_LEVERAGE"), catalog)

        assert result.codes == [ValidationErrorCode.SYNTAX_ERROR]
        assert result.errors[0].position == 28

    async def test_function_outside_allow_list(self, validator, catalog):
        """Test that functions not in the allow-list are forbidden."""
        result = await validator.validate(candidate("RANDOM() * LTM_EBITDA"), catalog)

        assert result.codes == [ValidationErrorCode.FORBIDDEN_CONSTRUCT]
        assert "RANDOM" in result.errors[0].message

    async def test_wrong_arity(self, validator, catalog):
        """Test that allow-listed functions check their argument count."""
        result = await validator.validate(candidate("ABS(LTM_EBITDA, 2)"), catalog)

        assert result.codes == [ValidationErrorCode.SYNTAX_ERROR]

    async def test_invalid_name(self, validator, catalog):
        """Test that field names must be identifiers."""
        result = await validator.validate(candidate("LTM_EBITDA", name="1ST_FIELD"), catalog)

        assert result.codes == [ValidationErrorCode.INVALID_NAME]

    async def test_engine_not_called_on_grammar_failure(self, settings, catalog):
        """Test that a failing step ends validation before the probe."""
        probe = UnreachableProbe()
        validator = ExpressionValidator(probe, settings)

        await validator.validate(candidate("LTM_EBITDA;"), catalog)

        assert probe.calls == 0


class TestReferenceStep:
    """Test column resolution against the catalog snapshot."""

    async def test_unknown_column(self, validator, catalog):
        """Test that identifiers outside the catalog are rejected."""
        result = await validator.validate(candidate("TOTAL_DEBT - CASH"), catalog)

        assert result.codes == [ValidationErrorCode.UNKNOWN_COLUMN]
        assert result.errors[0].message == "unknown column 'CASH' in scope 'credit'"
        assert result.errors[0].position == 13

    async def test_every_unknown_column_is_reported_once(self, validator, catalog):
        """Test that all unknown identifiers are reported, without duplicates."""
        result = await validator.validate(candidate("CASH + FEES + CASH"), catalog)

        assert result.codes == [ValidationErrorCode.UNKNOWN_COLUMN] * 2

    async def test_ambiguous_synonym(self, validator, catalog):
        """Test that a synonym shared by two columns does not resolve."""
        result = await validator.validate(candidate("exposure * 2"), catalog)

        assert result.codes == [ValidationErrorCode.AMBIGUOUS_COLUMN]
        assert "COMMITMENT_AMOUNT" in result.errors[0].message
        assert "TOTAL_DEBT" in result.errors[0].message

    async def test_synonym_resolves_to_canonical_column(self, validator, catalog):
        """Test that synonyms and lower-case names render canonically."""
        result = await validator.validate(candidate("ebitda * total_leverage"), catalog)

        assert result.ok
        assert result.canonical_sql == '"LTM_EBITDA" * "TOTAL_LEVERAGE"'
        assert result.referenced_columns == ("LTM_EBITDA", "TOTAL_LEVERAGE")

    async def test_name_shadows_base_column(self, validator, catalog):
        """Test that a field cannot take the name of a base column."""
        result = await validator.validate(
            candidate("TOTAL_DEBT * 2", name="total_debt"), catalog
        )

        assert result.codes == [ValidationErrorCode.NAME_SHADOWS_COLUMN]


class TestTypeStep:
    """Test type inference and the declared result type."""

    async def test_declared_type_must_match(self, validator, catalog):
        """Test that a boolean expression cannot be declared NUMBER."""
        result = await validator.validate(candidate("TOTAL_LEVERAGE > 6"), catalog)

        assert result.codes == [ValidationErrorCode.TYPE_MISMATCH]
        assert result.inferred_type == DataType.BOOLEAN

    async def test_incompatible_operands(self, validator, catalog):
        """Test that arithmetic on text is rejected."""
        result = await validator.validate(candidate("SECTOR * 2"), catalog)

        assert result.codes == [ValidationErrorCode.TYPE_MISMATCH]


class TestEngineStep:
    """Test the zero-row engine probe."""

    async def test_valid_candidate(self, validator, catalog):
        """Test that a valid candidate passes every step."""
        result = await validator.validate(
            candidate("LTM_EBITDA * TOTAL_LEVERAGE", name="levered ebitda"), catalog
        )

        assert result.ok
        assert result.errors == ()
        assert result.inferred_type == DataType.NUMBER
        assert result.catalog_version == 1

    async def test_engine_rejects_column_missing_from_relation(self, validator):
        """Test that a catalog column absent from the table fails the probe."""
        catalog = credit_snapshot(
            extra=(ColumnDescriptor(name="CASH", display_name="Cash", data_type=DataType.NUMBER),)
        )

        result = await validator.validate(candidate("TOTAL_DEBT - CASH"), catalog)

        assert result.codes == [ValidationErrorCode.ENGINE_REJECTED]
        assert not result.retryable

    async def test_unreachable_engine_is_retryable(self, settings, catalog):
        """Test that an unreachable engine is retried, then reported as transient."""
        probe = UnreachableProbe()
        validator = ExpressionValidator(probe, settings)

        result = await validator.validate(candidate("LTM_EBITDA * 2"), catalog)

        assert probe.calls == settings.max_transient_retries + 1
        assert result.codes == [ValidationErrorCode.ENGINE_UNAVAILABLE]
        assert result.retryable

    @pytest.mark.parametrize(
        "expr,type_",
        [
            ("CASE WHEN TOTAL_LEVERAGE > 6 THEN 'high' ELSE 'normal' END", DataType.VARCHAR),
            ("COALESCE(TOTAL_DEBT, 0) / NULLIF(LTM_EBITDA, 0)", DataType.NUMBER),
            ("YEAR(REPORTING_DATE)", DataType.NUMBER),
            ("IS_COVENANT_LITE AND SECTOR IN ('Technology', 'Consumer')", DataType.BOOLEAN),
        ],
    )
    async def test_engine_accepts_rendered_sql(self, validator, catalog, expr, type_):
        """Test that the canonical SQL of valid expressions compiles in the engine."""
        result = await validator.validate(candidate(expr, type_=type_), catalog)

        assert result.ok, [e.render() for e in result.errors]


class TestCheckStatic:
    """Test the engine-independent entry point."""

    def test_returns_tree_after_grammar(self, validator, catalog):
        """Test that a parsed tree is returned once grammar passes."""
        static = validator.check_static(candidate("LTM_EBITDA * 2"), catalog)

        assert static.result.ok
        assert static.tree is not None
        assert static.result.canonical_sql == '"LTM_EBITDA" * 2'
