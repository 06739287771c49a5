"""Approval gate and the services that deliver approval decisions."""

from conveyor.approval.gate import (
    DEFAULT_APPROVAL_TIMEOUT_SECONDS,
    ApprovalDecision,
    ApprovalGate,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalService,
)
from conveyor.approval.services import (
    AutoApprovalService,
    EventApprovalService,
    FileApprovalService,
    pending_requests,
    write_decision,
)

__all__ = [
    "DEFAULT_APPROVAL_TIMEOUT_SECONDS",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalRequest",
    "ApprovalService",
    "AutoApprovalService",
    "EventApprovalService",
    "FileApprovalService",
    "pending_requests",
    "write_decision",
]
