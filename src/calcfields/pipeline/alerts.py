"""Operator alerts.

A field that is persisted but not reflected in the published view is an
inconsistency an operator has to resolve. Such failures are not reported to
the requester (their write succeeded) but raised here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from calcfields.core.logging import get_logger

logger = get_logger(__name__)


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope_id: str
    kind: str
    message: str
    field_name: str | None = None
    field_version: int | None = None
    request_id: str | None = None
    raised_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AlertSink(ABC):
    """Destination for operator alerts."""

    @abstractmethod
    def alert(self, alert: Alert) -> None:
        pass


class LoggingAlertSink(AlertSink):
    """Emit alerts as critical structured log events."""

    def alert(self, alert: Alert) -> None:
        logger.critical(
            "operator_alert",
            scope_id=alert.scope_id,
            kind=alert.kind,
            message=alert.message,
            field_name=alert.field_name,
            field_version=alert.field_version,
            alert_request_id=alert.request_id,
        )
