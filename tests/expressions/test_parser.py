"""Tests for expression parsing and canonical rendering."""

import pytest

from calcfields.expressions.lexer import ExpressionSyntaxError
from calcfields.expressions.parser import (
    MAX_NESTING_DEPTH,
    BinaryOp,
    Case,
    ColumnRef,
    FunctionCall,
    InList,
    UnaryOp,
    column_refs,
    parse_expression,
    render_sql,
)


class TestParseExpression:
    """Test parse_expression."""

    def test_multiplication_binds_tighter_than_addition(self):
        """Test arithmetic precedence."""
        tree = parse_expression("TOTAL_DEBT + LTM_EBITDA * 2")

        assert isinstance(tree, BinaryOp)
        assert tree.op == "+"
        assert isinstance(tree.right, BinaryOp)
        assert tree.right.op == "*"

    def test_and_binds_tighter_than_or(self):
        """Test boolean precedence."""
        tree = parse_expression("a = 1 OR b = 2 AND c = 3")

        assert isinstance(tree, BinaryOp)
        assert tree.op == "OR"
        assert isinstance(tree.right, BinaryOp)
        assert tree.right.op == "AND"

    def test_function_names_are_upper_cased(self):
        """Test function call parsing."""
        tree = parse_expression("round(LTM_EBITDA, 2)")

        assert isinstance(tree, FunctionCall)
        assert tree.name == "ROUND"
        assert len(tree.args) == 2

    def test_not_in(self):
        """Test negated IN lists."""
        tree = parse_expression("SECTOR NOT IN ('Energy', 'Mining')")

        assert isinstance(tree, InList)
        assert tree.negated
        assert len(tree.items) == 2

    def test_case_expression(self):
        """Test CASE with ELSE."""
        tree = parse_expression("CASE WHEN TOTAL_LEVERAGE > 6 THEN 'high' ELSE 'normal' END")

        assert isinstance(tree, Case)
        assert len(tree.whens) == 1
        assert tree.else_ is not None

    def test_column_refs_in_source_order(self):
        """Test that references come back ordered by position."""
        tree = parse_expression("\"Total Leverage\" * LTM_EBITDA + ROUND(CASH, 0)")

        assert [r.name for r in column_refs(tree)] == ["Total Leverage", "LTM_EBITDA", "CASH"]

    @pytest.mark.parametrize(
        "text,position",
        [
            ("", 0),
            ("LTM_EBITDA *", 12),
            ("(LTM_EBITDA", 11),
            ("LTM_EBITDA TOTAL_DEBT", 11),
            ("CASE ELSE 1 END", 5),
        ],
    )
    def test_syntax_errors_carry_positions(self, text, position):
        """Test that every syntax error points at the offending offset."""
        with pytest.raises(ExpressionSyntaxError) as exc_info:
            parse_expression(text)

        assert exc_info.value.position == position

    def test_deep_nesting_is_rejected(self):
        """Test the nesting limit instead of unbounded recursion."""
        text = "(" * (MAX_NESTING_DEPTH + 1) + "1" + ")" * (MAX_NESTING_DEPTH + 1)

        with pytest.raises(ExpressionSyntaxError, match="nests too deeply"):
            parse_expression(text)


class TestRenderSql:
    """Test render_sql."""

    def test_quotes_and_resolves_columns(self):
        """Test canonical column names through the resolver."""
        tree = parse_expression("ebitda * leverage")
        mapping = {"ebitda": "LTM_EBITDA", "leverage": "TOTAL_LEVERAGE"}

        assert render_sql(tree, mapping.__getitem__) == '"LTM_EBITDA" * "TOTAL_LEVERAGE"'

    def test_parenthesizes_compound_operands(self):
        """Test that precedence is explicit in the output."""
        tree = parse_expression("(TOTAL_DEBT - CASH) / LTM_EBITDA")

        assert render_sql(tree) == '("TOTAL_DEBT" - "CASH") / "LTM_EBITDA"'

    def test_nested_unary_minus_never_forms_a_comment(self):
        """Test that double negation is not rendered as '--'."""
        tree = parse_expression("- -LTM_EBITDA")

        assert isinstance(tree, UnaryOp)
        rendered = render_sql(tree)
        assert "--" not in rendered
        assert rendered == '-(-"LTM_EBITDA")'

    def test_escapes_string_literals(self):
        """Test quote doubling in rendered strings."""
        tree = parse_expression("SECTOR = 'Food''s'")

        assert render_sql(tree) == "\"SECTOR\" = 'Food''s'"

    def test_not_equal_is_normalized(self):
        """Test that != renders as <>."""
        tree = parse_expression("SECTOR != 'Energy'")

        assert render_sql(tree) == "\"SECTOR\" <> 'Energy'"

    def test_round_trips_through_the_parser(self):
        """Test that rendered SQL parses to the same shape."""
        tree = parse_expression(
            "CASE WHEN IS_COVENANT_LITE AND TOTAL_LEVERAGE BETWEEN 4 AND 6 THEN 1 ELSE 0 END"
        )
        reparsed = parse_expression(render_sql(tree))

        assert isinstance(reparsed, Case)
        assert [r.name for r in column_refs(reparsed)] == [
            r.name for r in column_refs(tree)
        ]
        assert all(isinstance(r, ColumnRef) for r in column_refs(reparsed))
