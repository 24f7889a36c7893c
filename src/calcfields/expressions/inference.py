"""Type inference over expression ASTs.

Types propagate bottom-up through a fixed compatibility table:

- arithmetic (+ - * / % and unary minus) requires NUMBER operands
- comparisons require compatible operands; BOOLEAN is not orderable
- || requires VARCHAR operands
- AND, OR and NOT require BOOLEAN operands
- CASE conditions must be BOOLEAN and all branches must share a type

NULL literals are compatible with every type. DATE and TIMESTAMP are
compatible with each other. A sub-expression that already failed does not
produce follow-on errors in its parents, so every reported mismatch points
at a distinct cause.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from calcfields.catalog.models import DataType
from calcfields.expressions.functions import get_function, unify
from calcfields.expressions.models import ValidationErrorCode, ValidationIssue
from calcfields.expressions.parser import (
    ARITHMETIC_OPERATORS,
    COMPARISON_OPERATORS,
    Between,
    BinaryOp,
    BooleanLiteral,
    Case,
    ColumnRef,
    FunctionCall,
    InList,
    IsNull,
    Node,
    NullLiteral,
    NumberLiteral,
    StringLiteral,
    UnaryOp,
)


class _Invalid(Enum):
    INVALID = "invalid"


INVALID = _Invalid.INVALID

# None is the type of an untyped NULL literal
Inferred = DataType | None | _Invalid

_ORDERING_OPERATORS = ("<", "<=", ">", ">=")


def _name(t: DataType | None) -> str:
    return "NULL" if t is None else t.value


class TypeInferencer:
    """Infer the result type of an expression, collecting every mismatch.

    Args:
        column_type: Maps a column identifier (as written) to its type. Only
            called for identifiers that already resolved against the catalog.
    """

    def __init__(self, column_type: Callable[[str], DataType]):
        self.column_type = column_type
        self.errors: list[ValidationIssue] = []

    def infer(self, node: Node) -> DataType | None:
        """Infer the type of ``node``.

        Returns the concrete result type, or None when inference failed or
        the expression is always NULL (both reported in ``errors``).
        """
        result = self._infer(node)
        if result is INVALID:
            return None
        if result is None:
            self._error("expression is always NULL and has no result type", node.position)
            return None
        return result

    def _error(self, message: str, position: int) -> _Invalid:
        self.errors.append(
            ValidationIssue(
                code=ValidationErrorCode.TYPE_MISMATCH,
                message=message,
                position=position,
            )
        )
        return INVALID

    def _infer(self, node: Node) -> Inferred:
        if isinstance(node, NumberLiteral):
            return DataType.NUMBER
        if isinstance(node, StringLiteral):
            return DataType.VARCHAR
        if isinstance(node, BooleanLiteral):
            return DataType.BOOLEAN
        if isinstance(node, NullLiteral):
            return None
        if isinstance(node, ColumnRef):
            return self.column_type(node.name)
        if isinstance(node, UnaryOp):
            return self._unary(node)
        if isinstance(node, BinaryOp):
            return self._binary(node)
        if isinstance(node, IsNull):
            operand = self._infer(node.operand)
            return INVALID if operand is INVALID else DataType.BOOLEAN
        if isinstance(node, InList):
            return self._in_list(node)
        if isinstance(node, Between):
            return self._between(node)
        if isinstance(node, Case):
            return self._case(node)
        if isinstance(node, FunctionCall):
            return self._call(node)
        raise TypeError(f"Unknown expression node: {type(node).__name__}")

    def _require(
        self, operand: DataType | None, allowed: DataType, what: str, position: int
    ) -> bool:
        if operand is None or operand == allowed:
            return True
        self._error(f"{what} requires {allowed.value}, got {operand.value}", position)
        return False

    def _unary(self, node: UnaryOp) -> Inferred:
        operand = self._infer(node.operand)
        if operand is INVALID:
            return INVALID
        expected = DataType.BOOLEAN if node.op == "NOT" else DataType.NUMBER
        if not self._require(operand, expected, f"operator '{node.op}'", node.position):
            return INVALID
        return expected

    def _binary(self, node: BinaryOp) -> Inferred:
        left = self._infer(node.left)
        right = self._infer(node.right)
        if left is INVALID or right is INVALID:
            return INVALID

        if node.op in ARITHMETIC_OPERATORS:
            if left not in (None, DataType.NUMBER) or right not in (None, DataType.NUMBER):
                return self._error(
                    f"operator '{node.op}' requires NUMBER operands, "
                    f"got {_name(left)} and {_name(right)}",
                    node.position,
                )
            return DataType.NUMBER

        if node.op in COMPARISON_OPERATORS:
            common, ok = unify([left, right])
            if not ok:
                return self._error(
                    f"cannot compare {_name(left)} with {_name(right)}", node.position
                )
            if node.op in _ORDERING_OPERATORS and common == DataType.BOOLEAN:
                return self._error(
                    f"operator '{node.op}' cannot order BOOLEAN values", node.position
                )
            return DataType.BOOLEAN

        if node.op == "||":
            if left not in (None, DataType.VARCHAR) or right not in (None, DataType.VARCHAR):
                return self._error(
                    f"operator '||' requires VARCHAR operands, "
                    f"got {_name(left)} and {_name(right)}",
                    node.position,
                )
            return DataType.VARCHAR

        if node.op in ("AND", "OR"):
            if left not in (None, DataType.BOOLEAN) or right not in (None, DataType.BOOLEAN):
                return self._error(
                    f"operator {node.op} requires BOOLEAN operands, "
                    f"got {_name(left)} and {_name(right)}",
                    node.position,
                )
            return DataType.BOOLEAN

        raise ValueError(f"Unknown operator: {node.op}")

    def _in_list(self, node: InList) -> Inferred:
        types = [self._infer(n) for n in (node.operand, *node.items)]
        if INVALID in types:
            return INVALID
        _, ok = unify(types)  # type: ignore[arg-type]
        if not ok:
            found = ", ".join(sorted({_name(t) for t in types}))  # type: ignore[arg-type]
            return self._error(f"IN list mixes incompatible types: {found}", node.position)
        return DataType.BOOLEAN

    def _between(self, node: Between) -> Inferred:
        types = [self._infer(n) for n in (node.operand, node.low, node.high)]
        if INVALID in types:
            return INVALID
        common, ok = unify(types)  # type: ignore[arg-type]
        if not ok:
            found = ", ".join(sorted({_name(t) for t in types}))  # type: ignore[arg-type]
            return self._error(f"BETWEEN mixes incompatible types: {found}", node.position)
        if common == DataType.BOOLEAN:
            return self._error("BETWEEN cannot order BOOLEAN values", node.position)
        return DataType.BOOLEAN

    def _case(self, node: Case) -> Inferred:
        failed = False
        for condition, _ in node.whens:
            condition_type = self._infer(condition)
            if condition_type is INVALID:
                failed = True
            elif not self._require(
                condition_type, DataType.BOOLEAN, "WHEN condition", condition.position
            ):
                failed = True

        branches = [result for _, result in node.whens]
        if node.else_ is not None:
            branches.append(node.else_)
        types = [self._infer(b) for b in branches]
        if failed or INVALID in types:
            return INVALID

        common, ok = unify(types)  # type: ignore[arg-type]
        if not ok:
            found = ", ".join(sorted({_name(t) for t in types}))  # type: ignore[arg-type]
            return self._error(f"CASE branches have incompatible types: {found}", node.position)
        return common

    def _call(self, node: FunctionCall) -> Inferred:
        fn = get_function(node.name)
        types = [self._infer(a) for a in node.args]
        if fn is None or INVALID in types:
            return INVALID
        result, message = fn.rule(types)  # type: ignore[arg-type]
        if message is not None:
            return self._error(f"{node.name}: {message}", node.position)
        return result
