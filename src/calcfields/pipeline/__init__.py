"""Field pipeline: coordinator, capability facade and operator alerts."""

from calcfields.pipeline.alerts import Alert, AlertSink, LoggingAlertSink
from calcfields.pipeline.capabilities import (
    CandidateGenerator,
    OrchestratorCapabilities,
    OrchestratorFacade,
)
from calcfields.pipeline.coordinator import (
    FieldPipelineCoordinator,
    FieldRequestResult,
    PipelineStatus,
)

__all__ = [
    "Alert",
    "AlertSink",
    "LoggingAlertSink",
    "CandidateGenerator",
    "OrchestratorCapabilities",
    "OrchestratorFacade",
    "FieldPipelineCoordinator",
    "FieldRequestResult",
    "PipelineStatus",
]
