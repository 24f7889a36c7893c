"""Structured logging infrastructure.

This module provides logging that works for:
- Local CLI development (rich console output)
- Server deployments (JSON structured logs)

Usage:
    from calcfields.core.logging import get_logger, configure_logging

    # Configure at startup
    configure_logging(log_level="INFO", log_format="console")

    # Get logger in any module
    logger = get_logger(__name__)

    # Log with structured context
    logger.info("field_persisted", scope_id="credit", name="EBITDA_X_LEVERAGE")

    # Bind request context for everything logged inside the block
    with log_context(request_id="req-123", scope_id="credit"):
        logger.info("generation_started")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

# Context variables for correlation
_request_context: ContextVar[dict[str, Any] | None] = ContextVar("request_context", default=None)


@dataclass
class RequestMetrics:
    """Metrics collected during one field pipeline run."""

    request_id: str
    scope_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    # Counters
    llm_calls: int = 0
    llm_input_tokens: int = 0
    llm_output_tokens: int = 0
    probe_calls: int = 0
    transient_retries: int = 0
    db_writes: int = 0

    # Stage timings (seconds)
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return (datetime.now(UTC) - self.start_time).total_seconds()

    def record_timing(self, stage: str, seconds: float) -> None:
        """Record timing for a pipeline stage."""
        self.timings[stage] = self.timings.get(stage, 0.0) + seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "request_id": self.request_id,
            "scope_id": self.scope_id,
            "duration_seconds": self.duration_seconds,
            "llm_calls": self.llm_calls,
            "llm_input_tokens": self.llm_input_tokens,
            "llm_output_tokens": self.llm_output_tokens,
            "probe_calls": self.probe_calls,
            "transient_retries": self.transient_retries,
            "db_writes": self.db_writes,
            "timings": self.timings,
        }


_current_metrics: ContextVar[RequestMetrics | None] = ContextVar("current_metrics", default=None)


def start_request_metrics(request_id: str, scope_id: str) -> RequestMetrics:
    """Start collecting metrics for a pipeline run."""
    metrics = RequestMetrics(request_id=request_id, scope_id=scope_id)
    _current_metrics.set(metrics)
    return metrics


def end_request_metrics() -> RequestMetrics | None:
    """End request metrics collection."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.end_time = datetime.now(UTC)
        _current_metrics.set(None)
    return metrics


def _add_request_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add request context to log events."""
    context = _request_context.get()
    if context:
        event_dict.update(context)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production)
        show_timestamps: Whether to show timestamps in console mode
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_request_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure stdlib logging for libraries
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        current = _request_context.get() or {}
        self.token = _request_context.set({**current, **self.context})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token:
            _request_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(request_id="abc", scope_id="credit"):
            logger.info("processing")  # Will include request_id and scope_id
    """
    return LogContext(**context)


# Convenience functions for metrics tracking
def increment_llm_call(input_tokens: int = 0, output_tokens: int = 0) -> None:
    """Increment LLM call counter in current request metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.llm_calls += 1
        metrics.llm_input_tokens += input_tokens
        metrics.llm_output_tokens += output_tokens


def increment_probe_call() -> None:
    """Increment engine probe counter in current request metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.probe_calls += 1


def increment_transient_retry() -> None:
    """Increment transient retry counter in current request metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.transient_retries += 1


def increment_db_write() -> None:
    """Increment metadata write counter in current request metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.db_writes += 1


def record_stage_timing(stage: str, seconds: float) -> None:
    """Record timing for a pipeline stage in current request metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.record_timing(stage, seconds)


# Initialize with default configuration
configure_logging()
