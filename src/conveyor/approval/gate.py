"""
conveyor — approval gate

File: src/conveyor/approval/gate.py
Last updated: 2026-10-19

Purpose
- Block a gated stage until a human approves, rejects, or the wait times out.

Functional requirements
- Only the calling run's thread blocks; other runs are unaffected.
- The default wait is 60 minutes.
- ``require`` turns a timeout into ``ApprovalTimedOut`` and a rejection into
  ``ApprovalRejected`` so they follow normal stage failure propagation.
- Requests and decisions are logged through ``structlog`` as
  machine-parseable events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

import structlog

from conveyor.constants import DEFAULT_APPROVAL_MESSAGE, DEFAULT_APPROVAL_TIMEOUT_MINUTES
from conveyor.domain.errors import ApprovalRejected, ApprovalTimedOut

DEFAULT_APPROVAL_TIMEOUT_SECONDS: float = DEFAULT_APPROVAL_TIMEOUT_MINUTES * 60.0


class ApprovalOutcome(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    run_id: str
    stage: str
    message: str = DEFAULT_APPROVAL_MESSAGE
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    outcome: ApprovalOutcome
    approver: str | None = None


class ApprovalService(Protocol):
    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision: ...


class ApprovalGate:
    def __init__(
        self,
        service: ApprovalService,
        *,
        default_timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._service = service
        self._default_timeout_seconds = float(default_timeout_seconds)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.requests: list[ApprovalRequest] = []

    @property
    def default_timeout_seconds(self) -> float:
        return self._default_timeout_seconds

    def await_approval(self, request: ApprovalRequest) -> ApprovalOutcome:
        return self._decide(request).outcome

    def require(self, request: ApprovalRequest) -> ApprovalDecision:
        """Wait for a decision and raise unless the request was approved."""

        decision = self._decide(request)
        if decision.outcome is ApprovalOutcome.TIMED_OUT:
            raise ApprovalTimedOut(request.stage, self._timeout_for(request))
        if decision.outcome is ApprovalOutcome.REJECTED:
            raise ApprovalRejected(request.stage, decision.approver)
        return decision

    def _decide(self, request: ApprovalRequest) -> ApprovalDecision:
        timeout = self._timeout_for(request)
        self.requests.append(request)
        self._logger.info(
            "approval_requested",
            approval_run_id=request.run_id,
            approval_stage=request.stage,
            prompt=request.message,
            timeout_seconds=timeout,
        )
        decision = self._service.wait(request, timeout)
        self._logger.info(
            "approval_decided",
            approval_run_id=request.run_id,
            approval_stage=request.stage,
            outcome=decision.outcome.value,
            approver=decision.approver,
        )
        return decision

    def _timeout_for(self, request: ApprovalRequest) -> float:
        if request.timeout_seconds is None:
            return self._default_timeout_seconds
        return float(request.timeout_seconds)


__all__ = [
    "DEFAULT_APPROVAL_TIMEOUT_SECONDS",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalRequest",
    "ApprovalService",
]
