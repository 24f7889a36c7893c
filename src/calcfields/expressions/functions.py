"""Allow-list of side-effect-free scalar functions.

Only functions listed here may appear in a calculated field. Each entry
declares its arity and a typing rule over argument types. ``None`` in an
argument position stands for an untyped NULL literal, which is compatible
with every parameter.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from calcfields.catalog.models import DataType

ArgTypes = Sequence[DataType | None]

# (result type, error message); exactly one is set
TypingOutcome = tuple[DataType | None, str | None]

TEMPORAL = frozenset({DataType.DATE, DataType.TIMESTAMP})


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    min_args: int
    max_args: int | None  # None: variadic
    rule: Callable[[ArgTypes], TypingOutcome]
    description: str

    def accepts_arity(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


def unify(types: ArgTypes) -> tuple[DataType | None, bool]:
    """Find the common type of a set of types.

    Returns (type, ok). DATE and TIMESTAMP unify to TIMESTAMP; NULL unifies
    with anything; an all-NULL set unifies to None.
    """
    concrete = {t for t in types if t is not None}
    if not concrete:
        return None, True
    if len(concrete) == 1:
        return next(iter(concrete)), True
    if concrete <= TEMPORAL:
        return DataType.TIMESTAMP, True
    return None, False


def _fixed(
    params: Sequence[frozenset[DataType]], result: DataType
) -> Callable[[ArgTypes], TypingOutcome]:
    def rule(args: ArgTypes) -> TypingOutcome:
        for index, (arg, allowed) in enumerate(zip(args, params, strict=False)):
            if arg is not None and arg not in allowed:
                expected = " or ".join(sorted(t.value for t in allowed))
                return None, f"argument {index + 1} must be {expected}, got {arg.value}"
        return result, None

    return rule


def _same_type(args: ArgTypes) -> TypingOutcome:
    common, ok = unify(args)
    if not ok:
        found = ", ".join(sorted({a.value for a in args if a is not None}))
        return None, f"arguments must share a type, got {found}"
    return common, None


def _ordered_same_type(args: ArgTypes) -> TypingOutcome:
    common, error = _same_type(args)
    if error is None and common == DataType.BOOLEAN:
        return None, "arguments must be orderable, got BOOLEAN"
    return common, error


def _nullif(args: ArgTypes) -> TypingOutcome:
    _, ok = unify(args)
    if not ok:
        return None, "arguments must be comparable"
    return args[0], None


def _concat(args: ArgTypes) -> TypingOutcome:
    return DataType.VARCHAR, None


NUMBER = frozenset({DataType.NUMBER})
VARCHAR = frozenset({DataType.VARCHAR})

FUNCTIONS: dict[str, FunctionSignature] = {
    fn.name: fn
    for fn in [
        # Numeric
        FunctionSignature("ABS", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Absolute value"),
        FunctionSignature("CEIL", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Round up"),
        FunctionSignature("FLOOR", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Round down"),
        FunctionSignature(
            "ROUND", 1, 2, _fixed([NUMBER, NUMBER], DataType.NUMBER), "Round to digits"
        ),
        FunctionSignature("SQRT", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Square root"),
        FunctionSignature(
            "POWER", 2, 2, _fixed([NUMBER, NUMBER], DataType.NUMBER), "Exponentiation"
        ),
        FunctionSignature("LN", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Natural logarithm"),
        FunctionSignature("LOG10", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Base-10 logarithm"),
        FunctionSignature("EXP", 1, 1, _fixed([NUMBER], DataType.NUMBER), "e raised to a power"),
        FunctionSignature("SIGN", 1, 1, _fixed([NUMBER], DataType.NUMBER), "Sign (-1, 0, 1)"),
        FunctionSignature("GREATEST", 2, None, _ordered_same_type, "Largest argument"),
        FunctionSignature("LEAST", 2, None, _ordered_same_type, "Smallest argument"),
        # Null handling
        FunctionSignature("COALESCE", 1, None, _same_type, "First non-null argument"),
        FunctionSignature("NULLIF", 2, 2, _nullif, "NULL when both arguments are equal"),
        # Text
        FunctionSignature("UPPER", 1, 1, _fixed([VARCHAR], DataType.VARCHAR), "Upper-case text"),
        FunctionSignature("LOWER", 1, 1, _fixed([VARCHAR], DataType.VARCHAR), "Lower-case text"),
        FunctionSignature("TRIM", 1, 1, _fixed([VARCHAR], DataType.VARCHAR), "Strip whitespace"),
        FunctionSignature("LENGTH", 1, 1, _fixed([VARCHAR], DataType.NUMBER), "Text length"),
        FunctionSignature(
            "SUBSTRING",
            2,
            3,
            _fixed([VARCHAR, NUMBER, NUMBER], DataType.VARCHAR),
            "Substring from position with optional length",
        ),
        FunctionSignature("CONCAT", 1, None, _concat, "Concatenate values as text"),
        # Dates
        FunctionSignature("YEAR", 1, 1, _fixed([TEMPORAL], DataType.NUMBER), "Year part"),
        FunctionSignature("QUARTER", 1, 1, _fixed([TEMPORAL], DataType.NUMBER), "Quarter part"),
        FunctionSignature("MONTH", 1, 1, _fixed([TEMPORAL], DataType.NUMBER), "Month part"),
        FunctionSignature("DAY", 1, 1, _fixed([TEMPORAL], DataType.NUMBER), "Day-of-month part"),
        FunctionSignature(
            "DATE_DIFF",
            3,
            3,
            _fixed([VARCHAR, TEMPORAL, TEMPORAL], DataType.NUMBER),
            "Number of part boundaries between two dates",
        ),
    ]
}


def get_function(name: str) -> FunctionSignature | None:
    return FUNCTIONS.get(name.upper())


def allowed_function_names() -> list[str]:
    return sorted(FUNCTIONS)
