"""Calculated-field expression generation.

Turns a natural-language request plus a scope's column catalog into a
candidate field. The model must answer with exactly this JSON object:

    {"name": "...", "displayName": "...", "expr": "...", "type": "NUMBER"}

Anything else is MALFORMED_OUTPUT. A well-formed answer is still only a
draft: it carries no guarantees until the validator accepts it.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calcfields.catalog.models import ColumnDescriptor, DataType
from calcfields.core.config import Settings, get_settings
from calcfields.core.logging import get_logger
from calcfields.core.retry import call_with_retry
from calcfields.expressions.functions import FUNCTIONS
from calcfields.expressions.lexer import extract_identifiers
from calcfields.expressions.models import FieldCandidate
from calcfields.llm.config import LLMConfig
from calcfields.llm.features._base import LLMFeature
from calcfields.llm.prompts import PromptRenderer
from calcfields.llm.providers.base import LLMProvider, LLMTransientError

logger = get_logger(__name__)


class GenerationErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    UNAVAILABLE = "UNAVAILABLE"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    DISABLED = "DISABLED"


RETRYABLE_KINDS = frozenset(
    {
        GenerationErrorKind.TIMEOUT,
        GenerationErrorKind.RATE_LIMITED,
        GenerationErrorKind.UNAVAILABLE,
    }
)


class GenerationError(BaseModel):
    """Why no candidate could be produced.

    Transient kinds have already been retried by the time this is returned;
    ``retryable`` tells the caller whether asking again later may help.
    """

    model_config = ConfigDict(frozen=True)

    kind: GenerationErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class GeneratorOutput(BaseModel):
    """The fixed output schema of the generator."""

    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    display_name: str = Field(alias="displayName", min_length=1)
    expr: str = Field(min_length=1)
    type: DataType


GenerationOutcome = FieldCandidate | GenerationError


def format_columns(columns: Sequence[ColumnDescriptor]) -> str:
    lines = []
    for column in columns:
        line = f"- {column.name} ({column.data_type.value}): {column.display_name}"
        if column.synonyms:
            line += f"; also called {', '.join(sorted(column.synonyms))}"
        lines.append(line)
    return "\n".join(lines)


def format_functions() -> str:
    return "\n".join(
        f"- {fn.name} ({fn.arity_text()} args): {fn.description}"
        for fn in FUNCTIONS.values()
    )


def parse_generator_output(content: str) -> FieldCandidate | GenerationError:
    """Parse a raw model answer into a candidate.

    The answer must be a single JSON object matching the output schema and
    must reference at least one column.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        return GenerationError(
            kind=GenerationErrorKind.MALFORMED_OUTPUT, message=f"response is not JSON: {e}"
        )

    if not isinstance(data, dict):
        return GenerationError(
            kind=GenerationErrorKind.MALFORMED_OUTPUT,
            message=f"expected a JSON object, got {type(data).__name__}",
        )

    # The enum is matched by value; strict mode would refuse the plain string
    if isinstance(data.get("type"), str):
        data["type"] = data["type"].upper()
        if data["type"] in DataType.__members__:
            data["type"] = DataType(data["type"])

    try:
        output = GeneratorOutput.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
            for err in e.errors()
        )
        return GenerationError(
            kind=GenerationErrorKind.MALFORMED_OUTPUT,
            message=f"response does not match the output schema: {problems}",
        )

    if not extract_identifiers(output.expr):
        return GenerationError(
            kind=GenerationErrorKind.MALFORMED_OUTPUT,
            message="expression references no columns",
        )

    return FieldCandidate(
        name=output.name,
        display_name=output.display_name,
        expression=output.expr,
        result_type=output.type,
    )


class ExpressionGenerator(LLMFeature):
    """Generator adapter: natural-language request in, draft candidate out.

    Has no access to the field store or the engine; its output always goes
    through the validator.
    """

    feature_name = "calculated_field"

    def __init__(
        self,
        config: LLMConfig,
        provider: LLMProvider,
        prompt_renderer: PromptRenderer,
        settings: Settings | None = None,
    ):
        super().__init__(config, provider, prompt_renderer)
        self.settings = settings or get_settings()

    async def generate(
        self,
        scope_id: str,
        request_text: str,
        columns: Sequence[ColumnDescriptor],
    ) -> GenerationOutcome:
        """Generate a candidate field for ``request_text``.

        Args:
            scope_id: Scope the field is requested for
            request_text: Natural-language request
            columns: Column catalog of the scope

        Returns:
            FieldCandidate, or GenerationError after retries are exhausted
        """
        feature_config = self.config.features.calculated_field
        if not feature_config.enabled:
            return GenerationError(
                kind=GenerationErrorKind.DISABLED,
                message="calculated field generation is disabled in llm.yaml",
            )

        request_text = request_text.strip()
        if not request_text:
            return GenerationError(
                kind=GenerationErrorKind.INVALID_REQUEST, message="request must not be empty"
            )
        if len(request_text) > self.settings.max_request_length:
            return GenerationError(
                kind=GenerationErrorKind.INVALID_REQUEST,
                message=f"request exceeds {self.settings.max_request_length} characters",
            )
        if not columns:
            return GenerationError(
                kind=GenerationErrorKind.INVALID_REQUEST,
                message=f"scope '{scope_id}' has no columns to build on",
            )
        if len(columns) > self.config.limits.max_columns_in_prompt:
            return GenerationError(
                kind=GenerationErrorKind.INVALID_REQUEST,
                message=(
                    f"scope '{scope_id}' has {len(columns)} columns, more than the "
                    f"{self.config.limits.max_columns_in_prompt} a prompt may carry"
                ),
            )

        system, user, temperature = self.renderer.render_split(
            feature_config.prompt_file or self.feature_name,
            {
                "scope_id": scope_id,
                "request": request_text,
                "columns": format_columns(columns),
                "functions": format_functions(),
            },
        )

        try:
            result = await call_with_retry(
                lambda: self._call_llm(system, user, temperature, feature_config.model_tier),
                operation="expression_generation",
                timeout=self.settings.generator_timeout_seconds,
                max_retries=self.settings.max_transient_retries,
                base_delay=self.settings.retry_base_delay_seconds,
                transient=(LLMTransientError,),
            )
        except TimeoutError:
            return GenerationError(
                kind=GenerationErrorKind.TIMEOUT,
                message=(
                    f"generator did not answer within "
                    f"{self.settings.generator_timeout_seconds}s"
                ),
            )
        except LLMTransientError as e:
            if e.rate_limited:
                return GenerationError(kind=GenerationErrorKind.RATE_LIMITED, message=str(e))
            return GenerationError(kind=GenerationErrorKind.UNAVAILABLE, message=str(e))

        if not result.success or not result.value:
            return GenerationError(
                kind=GenerationErrorKind.PROVIDER_ERROR,
                message=result.error or "provider returned no response",
            )

        outcome = parse_generator_output(result.value.content)
        if isinstance(outcome, GenerationError):
            logger.warning(
                "generator_output_malformed",
                scope_id=scope_id,
                model=result.value.model,
                error=outcome.message,
            )
        else:
            logger.info(
                "candidate_generated",
                scope_id=scope_id,
                name=outcome.name,
                model=result.value.model,
            )
        return outcome
