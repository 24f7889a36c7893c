"""Field pipeline coordinator.

Drives one request through the field lifecycle:

    generate -> DRAFT -> validate -> VALIDATED | REJECTED
             -> store write -> PERSISTED | conflict
             -> regenerate view -> acknowledge

Rejections, generation errors and conflicts are returned as results, never
raised. A successful result is only returned after the view has been
regenerated, so the next view read reflects the new field.

Cancellation: before the store write starts, cancelling a request leaves no
trace at all. The store write and the regeneration that follows it run as
one shielded task; once started they always run to completion, even if the
caller goes away, so a persisted field is never left out of the view by a
cancelled request.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from calcfields.catalog.models import CatalogSnapshot
from calcfields.catalog.provider import CatalogProvider
from calcfields.core.logging import (
    end_request_metrics,
    get_logger,
    log_context,
    record_stage_timing,
    start_request_metrics,
)
from calcfields.expressions.models import FieldCandidate, ValidationResult, normalize_field_name
from calcfields.expressions.validator import ExpressionValidator
from calcfields.fields.models import (
    AttemptOutcome,
    CalculatedFieldDefinition,
    FieldAttempt,
    PersistenceConflict,
)
from calcfields.fields.store import MetadataStore
from calcfields.llm.features.expression import GenerationError
from calcfields.pipeline.alerts import Alert, AlertSink, LoggingAlertSink
from calcfields.pipeline.capabilities import CandidateGenerator
from calcfields.views.models import SemanticViewDefinition
from calcfields.views.regeneration import RegenerationEngine, RegenerationFailure

logger = get_logger(__name__)


class PipelineStatus(str, Enum):
    PERSISTED = "persisted"
    DEPRECATED = "deprecated"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    GENERATION_FAILED = "generation_failed"


class FieldRequestResult(BaseModel):
    """What the caller of a pipeline run gets back.

    Exactly one of ``validation`` (rejected), ``conflict`` or
    ``generation_error`` explains a failure. On success ``definition`` is
    the persisted field and ``view_published`` tells whether the view was
    regenerated; when it was not, operators have been alerted and
    ``warnings`` says why.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    scope_id: str
    status: PipelineStatus
    candidate: FieldCandidate | None = None
    definition: CalculatedFieldDefinition | None = None
    validation: ValidationResult | None = None
    conflict: PersistenceConflict | None = None
    generation_error: GenerationError | None = None
    replayed: bool = False
    view_published: bool = False
    generation_version: int | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (PipelineStatus.PERSISTED, PipelineStatus.DEPRECATED)

    @property
    def retryable(self) -> bool:
        """True when the failure was transient and asking again may succeed."""
        if self.generation_error is not None:
            return self.generation_error.retryable
        if self.validation is not None and not self.validation.ok:
            return self.validation.retryable
        return False

    @property
    def error_messages(self) -> list[str]:
        if self.generation_error is not None:
            return [f"{self.generation_error.kind.value}: {self.generation_error.message}"]
        if self.conflict is not None:
            return [f"{self.conflict.kind.value}: {self.conflict.message}"]
        if self.validation is not None:
            return [issue.render() for issue in self.validation.errors]
        return []


class FieldPipelineCoordinator:
    """Orchestrates generator, validator, store and regeneration.

    Args:
        catalogs: Catalog provider (snapshots are taken once per request)
        validator: Expression validator
        store: Metadata store, the only write path
        engine: View regeneration engine
        generator: Candidate generator; None disables ``request_field``
        alerts: Sink for post-write regeneration failures
    """

    def __init__(
        self,
        catalogs: CatalogProvider,
        validator: ExpressionValidator,
        store: MetadataStore,
        engine: RegenerationEngine,
        generator: CandidateGenerator | None = None,
        alerts: AlertSink | None = None,
    ):
        self.catalogs = catalogs
        self.validator = validator
        self.store = store
        self.engine = engine
        self.generator = generator
        self.alerts = alerts or LoggingAlertSink()
        # Strong references to shielded commits still running
        self._inflight: set[asyncio.Task[FieldRequestResult]] = set()

    # --- Public operations ----------------------------------------------

    async def request_field(
        self,
        scope_id: str,
        request_text: str,
        requested_by: str,
        expected_version: int | None = None,
    ) -> FieldRequestResult:
        """Turn a natural-language request into a persisted field.

        Raises:
            CatalogNotFoundError: If the scope has no catalog
            RuntimeError: If no generator is configured
        """
        if self.generator is None:
            raise RuntimeError("No expression generator configured")
        generator = self.generator

        request_id = uuid4().hex[:12]
        start_request_metrics(request_id, scope_id)
        with log_context(request_id=request_id, scope_id=scope_id):
            try:
                catalog = self.catalogs.get_snapshot(scope_id)
                logger.info("field_request_started", requested_by=requested_by)

                started = time.perf_counter()
                outcome = await generator.generate(scope_id, request_text, catalog.columns)
                record_stage_timing("generate", time.perf_counter() - started)

                if isinstance(outcome, GenerationError):
                    logger.info(
                        "generation_failed",
                        kind=outcome.kind.value,
                        retryable=outcome.retryable,
                    )
                    await self._record(
                        FieldAttempt(
                            attempt_id=request_id,
                            scope_id=scope_id,
                            request_text=request_text,
                            outcome=AttemptOutcome.GENERATION_FAILED,
                            errors=[f"{outcome.kind.value}: {outcome.message}"],
                            requested_by=requested_by,
                        )
                    )
                    return FieldRequestResult(
                        request_id=request_id,
                        scope_id=scope_id,
                        status=PipelineStatus.GENERATION_FAILED,
                        generation_error=outcome,
                    )

                return await self._process(
                    request_id,
                    catalog,
                    outcome,
                    requested_by,
                    expected_version=expected_version,
                    request_text=request_text,
                )
            finally:
                self._finish_metrics()

    async def submit_definition(
        self,
        scope_id: str,
        candidate: FieldCandidate,
        requested_by: str,
        expected_version: int | None = None,
        description: str | None = None,
    ) -> FieldRequestResult:
        """Persist an operator-written definition.

        Skips the generator only; validation, the versioned write and
        regeneration are the same as for generated fields.

        Raises:
            CatalogNotFoundError: If the scope has no catalog
        """
        request_id = uuid4().hex[:12]
        start_request_metrics(request_id, scope_id)
        with log_context(request_id=request_id, scope_id=scope_id):
            try:
                catalog = self.catalogs.get_snapshot(scope_id)
                logger.info("definition_submitted", requested_by=requested_by, name=candidate.name)
                return await self._process(
                    request_id,
                    catalog,
                    candidate,
                    requested_by,
                    expected_version=expected_version,
                    description=description,
                )
            finally:
                self._finish_metrics()

    async def deprecate(
        self, scope_id: str, name: str, expected_version: int, requested_by: str
    ) -> FieldRequestResult:
        """Soft-delete a field and regenerate the view without it."""
        request_id = uuid4().hex[:12]
        normalized = normalize_field_name(name)
        with log_context(request_id=request_id, scope_id=scope_id):
            logger.info("deprecation_requested", name=normalized, requested_by=requested_by)
            return await self._shielded(
                self._deprecate(request_id, scope_id, normalized, expected_version)
            )

    async def regenerate(self, scope_id: str) -> SemanticViewDefinition:
        """Rebuild and publish a scope's view on operator request.

        Raises:
            RegenerationFailure: If the view cannot be published
        """
        return await self.engine.regenerate(scope_id)

    async def purge_deprecated(self, scope_id: str) -> list[str]:
        """Hard-delete deprecated fields no servable view references."""
        protected = self.engine.registry.live_field_names(scope_id)
        return await self.store.purge_deprecated(scope_id, protected)

    async def drain(self) -> None:
        """Wait for shielded commits whose callers have gone away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # --- Pipeline steps -------------------------------------------------

    async def _process(
        self,
        request_id: str,
        catalog: CatalogSnapshot,
        candidate: FieldCandidate,
        requested_by: str,
        expected_version: int | None = None,
        request_text: str | None = None,
        description: str | None = None,
    ) -> FieldRequestResult:
        draft = CalculatedFieldDefinition.draft(
            catalog.scope_id,
            candidate,
            created_by=requested_by,
            expected_version=expected_version,
            description=description,
        )

        started = time.perf_counter()
        validation = await self.validator.validate(candidate, catalog)
        record_stage_timing("validate", time.perf_counter() - started)

        if not validation.ok:
            rejected = draft.mark_rejected(validation)
            await self._record(
                FieldAttempt(
                    attempt_id=request_id,
                    scope_id=catalog.scope_id,
                    name=rejected.name,
                    request_text=request_text,
                    expression_text=rejected.expression_text,
                    outcome=AttemptOutcome.REJECTED,
                    errors=[issue.render() for issue in validation.errors],
                    requested_by=requested_by,
                )
            )
            return FieldRequestResult(
                request_id=request_id,
                scope_id=catalog.scope_id,
                status=PipelineStatus.REJECTED,
                candidate=candidate,
                definition=rejected,
                validation=validation,
            )

        validated = draft.mark_validated(validation)
        return await self._shielded(
            self._commit(request_id, candidate, validated, validation, request_text)
        )

    async def _shielded(self, work: Awaitable[FieldRequestResult]) -> FieldRequestResult:
        task = asyncio.ensure_future(work)
        self._inflight.add(task)
        task.add_done_callback(self._commit_done)
        return await asyncio.shield(task)

    def _commit_done(self, task: asyncio.Task[FieldRequestResult]) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("commit_task_failed", error=str(task.exception()))

    async def _commit(
        self,
        request_id: str,
        candidate: FieldCandidate,
        validated: CalculatedFieldDefinition,
        validation: ValidationResult,
        request_text: str | None,
    ) -> FieldRequestResult:
        started = time.perf_counter()
        outcome = await self.store.put_if_absent_or_same_version(validated)
        record_stage_timing("persist", time.perf_counter() - started)

        if isinstance(outcome, PersistenceConflict):
            await self._record(
                FieldAttempt(
                    attempt_id=request_id,
                    scope_id=validated.scope_id,
                    name=validated.name,
                    request_text=request_text,
                    expression_text=validated.expression_text,
                    outcome=AttemptOutcome.CONFLICT,
                    errors=[f"{outcome.kind.value}: {outcome.message}"],
                    version=outcome.current_version,
                    requested_by=validated.created_by,
                )
            )
            return FieldRequestResult(
                request_id=request_id,
                scope_id=validated.scope_id,
                status=PipelineStatus.CONFLICT,
                candidate=candidate,
                definition=validated,
                validation=validation,
                conflict=outcome,
            )

        persisted = outcome.definition
        await self._record(
            FieldAttempt(
                attempt_id=request_id,
                scope_id=persisted.scope_id,
                name=persisted.name,
                request_text=request_text,
                expression_text=persisted.expression_text,
                outcome=AttemptOutcome.PERSISTED,
                version=persisted.version,
                requested_by=validated.created_by,
            )
        )

        view, warnings = await self._regenerate_after_write(request_id, persisted)
        return FieldRequestResult(
            request_id=request_id,
            scope_id=persisted.scope_id,
            status=PipelineStatus.PERSISTED,
            candidate=candidate,
            definition=persisted,
            validation=validation,
            replayed=outcome.replayed,
            view_published=view is not None,
            generation_version=view.generation_version if view else None,
            warnings=warnings,
        )

    async def _deprecate(
        self, request_id: str, scope_id: str, name: str, expected_version: int
    ) -> FieldRequestResult:
        outcome = await self.store.deprecate(scope_id, name, expected_version)
        if isinstance(outcome, PersistenceConflict):
            return FieldRequestResult(
                request_id=request_id,
                scope_id=scope_id,
                status=PipelineStatus.CONFLICT,
                conflict=outcome,
            )

        view, warnings = await self._regenerate_after_write(request_id, outcome.definition)
        return FieldRequestResult(
            request_id=request_id,
            scope_id=scope_id,
            status=PipelineStatus.DEPRECATED,
            definition=outcome.definition,
            replayed=outcome.replayed,
            view_published=view is not None,
            generation_version=view.generation_version if view else None,
            warnings=warnings,
        )

    async def _regenerate_after_write(
        self, request_id: str, definition: CalculatedFieldDefinition
    ) -> tuple[SemanticViewDefinition | None, list[str]]:
        started = time.perf_counter()
        try:
            view = await self.engine.regenerate(definition.scope_id)
        except RegenerationFailure as e:
            # The write stands; the previous view stays published
            self.alerts.alert(
                Alert(
                    scope_id=definition.scope_id,
                    kind=e.kind.value,
                    message=e.message,
                    field_name=definition.name,
                    field_version=definition.version,
                    request_id=request_id,
                )
            )
            return None, [f"view not regenerated: {e.message}"]
        finally:
            record_stage_timing("regenerate", time.perf_counter() - started)
        return view, []

    async def _record(self, attempt: FieldAttempt) -> None:
        await self.store.record_attempt(attempt)

    @staticmethod
    def _finish_metrics() -> None:
        metrics = end_request_metrics()
        if metrics:
            logger.info("field_request_completed", **metrics.to_dict())
