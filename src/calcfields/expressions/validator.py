"""Expression validator.

Checks a candidate field against a catalog snapshot in four steps:

1. Grammar: forbidden constructs anywhere in the raw text, then parsing,
   the function allow-list and the field name
2. References: every identifier resolves to exactly one catalog column
3. Types: inference through the compatibility table, and the declared
   result type must match the inferred one
4. Engine: a zero-row probe of the canonical SQL against the real relation

A failing step ends validation; all issues of that step are reported.
Validation never touches the field store and never raises for bad input:
every outcome, including an unreachable engine, is a ValidationResult.

Usage:
    validator = ExpressionValidator(DuckDBProbe(conn))
    result = await validator.validate(candidate, snapshot)
    if not result.ok:
        for issue in result.errors:
            print(issue.render())
"""

from __future__ import annotations

from dataclasses import dataclass

from calcfields.catalog.models import CatalogSnapshot, DataType
from calcfields.core.config import Settings, get_settings
from calcfields.core.logging import get_logger
from calcfields.core.retry import call_with_retry
from calcfields.expressions.functions import get_function
from calcfields.expressions.inference import TypeInferencer
from calcfields.expressions.lexer import (
    FORBIDDEN_SEQUENCES,
    ExpressionSyntaxError,
    find_forbidden_constructs,
)
from calcfields.expressions.models import (
    MAX_NAME_LENGTH,
    FieldCandidate,
    ValidationErrorCode,
    ValidationIssue,
    ValidationResult,
    is_valid_field_name,
)
from calcfields.expressions.parser import (
    FunctionCall,
    Node,
    column_refs,
    parse_expression,
    render_sql,
)
from calcfields.expressions.probe import EngineProbe, ProbeUnavailableError

logger = get_logger(__name__)


@dataclass(frozen=True)
class StaticCheck:
    """Outcome of the engine-independent steps (grammar, references, types)."""

    result: ValidationResult
    tree: Node | None = None


def _issue(code: ValidationErrorCode, message: str, position: int | None = None) -> ValidationIssue:
    return ValidationIssue(code=code, message=message, position=position)


class ExpressionValidator:
    """Validate candidate fields against catalog snapshots.

    Args:
        probe: Engine probe used for the zero-row compile check
        settings: Timeout and retry policy (defaults to ``get_settings()``)
    """

    def __init__(self, probe: EngineProbe, settings: Settings | None = None):
        self.probe = probe
        self.settings = settings or get_settings()

    async def validate(
        self, candidate: FieldCandidate, catalog: CatalogSnapshot
    ) -> ValidationResult:
        """Run all four validation steps."""
        static = self.check_static(candidate, catalog)
        if not static.result.ok:
            logger.info(
                "validation_rejected",
                scope_id=catalog.scope_id,
                name=candidate.name,
                codes=[c.value for c in static.result.codes],
            )
            return static.result

        result = await self._check_engine(candidate, catalog, static.result)
        logger.info(
            "validation_completed" if result.ok else "validation_rejected",
            scope_id=catalog.scope_id,
            name=candidate.normalized_name,
            codes=[c.value for c in result.codes],
        )
        return result

    def check_static(self, candidate: FieldCandidate, catalog: CatalogSnapshot) -> StaticCheck:
        """Run the grammar, reference and type steps without the engine."""
        base = {"catalog_version": catalog.version}

        # Step 1: grammar
        tree, errors = self._check_grammar(candidate)
        if errors or tree is None:
            return StaticCheck(ValidationResult(ok=False, errors=tuple(errors), **base))

        # Step 2: references
        errors = self._check_references(candidate, tree, catalog)
        if errors:
            return StaticCheck(ValidationResult(ok=False, errors=tuple(errors), **base), tree)

        def canonical(identifier: str) -> str:
            column = catalog.resolve(identifier).column
            assert column is not None
            return column.name

        referenced = tuple(sorted({canonical(ref.name) for ref in column_refs(tree)}))

        # Step 3: types
        inferencer = TypeInferencer(lambda name: self._column_type(catalog, name))
        inferred = inferencer.infer(tree)
        errors = list(inferencer.errors)
        if not errors and inferred != candidate.result_type:
            errors.append(
                _issue(
                    ValidationErrorCode.TYPE_MISMATCH,
                    f"declared type {candidate.result_type.value} but expression "
                    f"yields {inferred.value if inferred else 'NULL'}",
                )
            )
        if errors:
            return StaticCheck(
                ValidationResult(
                    ok=False,
                    errors=tuple(errors),
                    inferred_type=inferred,
                    referenced_columns=referenced,
                    **base,
                ),
                tree,
            )

        return StaticCheck(
            ValidationResult(
                ok=True,
                inferred_type=inferred,
                referenced_columns=referenced,
                canonical_sql=render_sql(tree, canonical),
                **base,
            ),
            tree,
        )

    @staticmethod
    def _column_type(catalog: CatalogSnapshot, identifier: str) -> DataType:
        column = catalog.resolve(identifier).column
        assert column is not None
        return column.data_type

    def _check_grammar(
        self, candidate: FieldCandidate
    ) -> tuple[Node | None, list[ValidationIssue]]:
        errors: list[ValidationIssue] = []
        text = candidate.expression

        for match in find_forbidden_constructs(text):
            kind = "sequence" if match.text in FORBIDDEN_SEQUENCES else "keyword"
            errors.append(
                _issue(
                    ValidationErrorCode.FORBIDDEN_CONSTRUCT,
                    f"forbidden {kind} '{match.text.upper()}'",
                    match.position,
                )
            )
        if errors:
            return None, errors

        try:
            tree = parse_expression(text)
        except ExpressionSyntaxError as e:
            return None, [_issue(ValidationErrorCode.SYNTAX_ERROR, e.message, e.position)]

        for node in tree.walk():
            if not isinstance(node, FunctionCall):
                continue
            fn = get_function(node.name)
            if fn is None:
                errors.append(
                    _issue(
                        ValidationErrorCode.FORBIDDEN_CONSTRUCT,
                        f"function '{node.name}' is not in the allow-list",
                        node.position,
                    )
                )
            elif not fn.accepts_arity(len(node.args)):
                errors.append(
                    _issue(
                        ValidationErrorCode.SYNTAX_ERROR,
                        f"{node.name} takes {fn.arity_text()} arguments, got {len(node.args)}",
                        node.position,
                    )
                )

        name = candidate.normalized_name
        if not is_valid_field_name(name):
            errors.append(
                _issue(
                    ValidationErrorCode.INVALID_NAME,
                    f"field name '{candidate.name}' must be letters, digits and underscores, "
                    f"start with a letter and be at most {MAX_NAME_LENGTH} characters",
                )
            )

        return tree, errors

    def _check_references(
        self, candidate: FieldCandidate, tree: Node, catalog: CatalogSnapshot
    ) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        seen: set[str] = set()

        for ref in column_refs(tree):
            key = ref.name.upper()
            if key in seen:
                continue
            seen.add(key)

            resolution = catalog.resolve(ref.name)
            if resolution.ambiguous:
                errors.append(
                    _issue(
                        ValidationErrorCode.AMBIGUOUS_COLUMN,
                        f"'{ref.name}' could refer to {', '.join(resolution.candidates)}",
                        ref.position,
                    )
                )
            elif not resolution.resolved:
                errors.append(
                    _issue(
                        ValidationErrorCode.UNKNOWN_COLUMN,
                        f"unknown column '{ref.name}' in scope '{catalog.scope_id}'",
                        ref.position,
                    )
                )

        if candidate.normalized_name in catalog.column_names:
            errors.append(
                _issue(
                    ValidationErrorCode.NAME_SHADOWS_COLUMN,
                    f"field name '{candidate.normalized_name}' is already a base column",
                )
            )
        return errors

    async def _check_engine(
        self, candidate: FieldCandidate, catalog: CatalogSnapshot, static: ValidationResult
    ) -> ValidationResult:
        # Step 4: zero-row probe
        assert static.canonical_sql is not None
        projections = [(candidate.normalized_name, static.canonical_sql)]

        try:
            outcome = await call_with_retry(
                lambda: self.probe.probe(catalog.relation, projections),
                operation="engine_probe",
                timeout=self.settings.probe_timeout_seconds,
                max_retries=self.settings.max_transient_retries,
                base_delay=self.settings.retry_base_delay_seconds,
                transient=(ProbeUnavailableError,),
            )
        except (TimeoutError, ProbeUnavailableError) as e:
            logger.warning("probe_unavailable", relation=catalog.relation, error=str(e))
            return static.model_copy(
                update={
                    "ok": False,
                    "errors": (
                        _issue(
                            ValidationErrorCode.ENGINE_UNAVAILABLE,
                            f"engine did not answer the compile check: {str(e) or 'timed out'}",
                        ),
                    ),
                }
            )

        if not outcome.accepted:
            return static.model_copy(
                update={
                    "ok": False,
                    "errors": (
                        _issue(
                            ValidationErrorCode.ENGINE_REJECTED,
                            outcome.message or "rejected by the engine",
                        ),
                    ),
                }
            )
        return static
