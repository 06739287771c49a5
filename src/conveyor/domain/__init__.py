"""Domain types shared by every pipeline component."""

from conveyor.domain.errors import (
    ApprovalRejected,
    ApprovalTimedOut,
    CommandFailed,
    CredentialNotFound,
    CredentialScopeError,
    InvalidParameter,
    PipelineError,
    StageFailure,
    StatusDeliveryFailed,
    TemplateError,
)
from conveyor.domain.events import StatusEvent, StatusState
from conveyor.domain.models import (
    Environment,
    HookOutcome,
    PipelineParameters,
    PipelineRun,
    RunContext,
    RunStatus,
    StageResult,
    StageState,
)

__all__ = [
    "ApprovalRejected",
    "ApprovalTimedOut",
    "CommandFailed",
    "CredentialNotFound",
    "CredentialScopeError",
    "Environment",
    "HookOutcome",
    "InvalidParameter",
    "PipelineError",
    "PipelineParameters",
    "PipelineRun",
    "RunContext",
    "RunStatus",
    "StageFailure",
    "StageResult",
    "StageState",
    "StatusDeliveryFailed",
    "StatusEvent",
    "StatusState",
    "TemplateError",
]
