"""
conveyor — pipeline error taxonomy

File: src/conveyor/domain/errors.py
Last updated: 2026-10-19

Purpose
- Define the typed failures raised by parameter resolution, stage steps,
  credential scoping, approval gating, and status delivery.

Functional requirements
- Every stage-fatal failure derives from ``StageFailure`` so the executor can
  treat them uniformly.
- ``StatusDeliveryFailed`` is non-fatal and is never a ``StageFailure``.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for all conveyor runtime failures."""


class InvalidParameter(PipelineError, ValueError):
    """Raised when a runtime parameter is unknown or outside its enumeration."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(f"invalid parameter {name}: {message}")


class StageFailure(PipelineError):
    """Failure that aborts the current stage and halts the pipeline."""


class CommandFailed(StageFailure):
    """Raised when an external command exits non-zero or times out."""

    def __init__(
        self,
        command: str,
        exit_code: int | None,
        *,
        timed_out: bool = False,
        stderr_tail: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.stderr_tail = stderr_tail
        if timed_out:
            detail = "timed out"
        else:
            detail = f"exited with status {exit_code}"
        super().__init__(f"command {command!r} {detail}")


class TemplateError(StageFailure):
    """Raised when a command template references an undefined variable."""


class CredentialNotFound(StageFailure):
    """Raised when a credential name is not registered with the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"credential {name!r} is not registered")


class CredentialScopeError(PipelineError):
    """Raised when a credential is accessed outside of its scope."""


class ApprovalTimedOut(StageFailure):
    """Raised when nobody approves a gated stage before the timeout elapses."""

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(f"approval for stage {stage!r} timed out after {timeout_seconds:g}s")


class ApprovalRejected(StageFailure):
    """Raised when an approver explicitly rejects a gated stage."""

    def __init__(self, stage: str, approver: str | None = None) -> None:
        self.stage = stage
        self.approver = approver
        who = f" by {approver}" if approver else ""
        super().__init__(f"approval for stage {stage!r} was rejected{who}")


class StatusDeliveryFailed(PipelineError):
    """Raised by status sinks; logged and swallowed by the reporter."""


__all__ = [
    "ApprovalRejected",
    "ApprovalTimedOut",
    "CommandFailed",
    "CredentialNotFound",
    "CredentialScopeError",
    "InvalidParameter",
    "PipelineError",
    "StageFailure",
    "StatusDeliveryFailed",
    "TemplateError",
]
