"""
conveyor — core domain models

File: src/conveyor/domain/models.py
Last updated: 2026-10-19

Purpose
- Resolved runtime parameters, trigger metadata, per-stage results, and the
  mutable ``PipelineRun`` record owned by the executor.

Functional requirements
- ``PipelineParameters`` is immutable once resolved.
- A run that reached ``failed`` never transitions to any other status.
- Stage results are kept in execution order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from conveyor.constants import PARAM_DEPLOY, PARAM_ENVIRONMENT, PARAM_RUN_TESTS
from conveyor.domain.ids import validate_build_number, validate_run_id

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class HookOutcome(StrEnum):
    """Keys of the outcome-indexed post-hook tables."""

    SUCCESS = "success"
    FAILURE = "failure"
    ALWAYS = "always"


@dataclass(frozen=True, slots=True)
class PipelineParameters:
    """Fully resolved, read-only runtime parameters."""

    environment: Environment
    run_tests: bool
    deploy: bool

    def as_env(self) -> dict[str, str]:
        return {
            PARAM_ENVIRONMENT: self.environment.value,
            PARAM_RUN_TESTS: "true" if self.run_tests else "false",
            PARAM_DEPLOY: "true" if self.deploy else "false",
        }

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            PARAM_ENVIRONMENT: self.environment.value,
            PARAM_RUN_TESTS: self.run_tests,
            PARAM_DEPLOY: self.deploy,
        }


@dataclass(frozen=True, slots=True)
class RunContext:
    """Trigger metadata supplied by whoever started the run."""

    build_number: int
    repository: str | None = None
    repository_url: str | None = None
    commit_sha: str | None = None
    branch: str | None = None
    triggered_by: str | None = None
    commit_authors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        validate_build_number(self.build_number)

    @property
    def run_id(self) -> str:
        return str(self.build_number)


@dataclass(slots=True)
class StageResult:
    name: str
    state: StageState = StageState.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None
    exit_code: int | None = None
    hook_errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "state": self.state.value,
            "error": self.error,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "hook_errors": list(self.hook_errors),
        }


@dataclass(slots=True)
class PipelineRun:
    """One execution of a pipeline definition."""

    context: RunContext
    parameters: PipelineParameters
    status: RunStatus = RunStatus.PENDING
    current_stage: str | None = None
    stages: list[StageResult] = field(default_factory=list)
    failed_stage: str | None = None
    failure_reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    artifacts: list[str] = field(default_factory=list)
    test_summary: dict[str, int] | None = None
    hook_errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        validate_run_id(self.context.run_id)

    @property
    def run_id(self) -> str:
        return self.context.run_id

    @property
    def is_failed(self) -> bool:
        return self.status is RunStatus.FAILED

    def start(self) -> None:
        if self.status is not RunStatus.PENDING:
            raise RuntimeError(f"run {self.run_id} already started (status={self.status.value})")
        self.status = RunStatus.RUNNING
        self.started_at = _utc_now()

    def stage_result(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def record_stage(self, result: StageResult) -> None:
        if self.stage_result(result.name) is not None:
            raise ValueError(f"stage {result.name!r} already recorded for run {self.run_id}")
        self.stages.append(result)

    def fail(self, stage: str | None, reason: str) -> None:
        # First fatal failure wins; later calls keep the original cause.
        if self.status is RunStatus.FAILED:
            return
        self.status = RunStatus.FAILED
        self.failed_stage = stage
        self.failure_reason = reason

    def complete(self) -> None:
        if self.status is RunStatus.RUNNING:
            self.status = RunStatus.SUCCEEDED
        self.current_stage = None
        self.finished_at = _utc_now()

    def executed_stages(self) -> list[str]:
        return [
            result.name
            for result in self.stages
            if result.state in (StageState.SUCCEEDED, StageState.FAILED)
        ]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "parameters": self.parameters.to_dict(),
            "failed_stage": self.failed_stage,
            "failure_reason": self.failure_reason,
            "stages": [result.to_dict() for result in self.stages],
            "artifacts": list(self.artifacts),
            "test_summary": dict(self.test_summary) if self.test_summary is not None else None,
            "hook_errors": list(self.hook_errors),
        }


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "Environment",
    "HookOutcome",
    "JSONScalar",
    "JSONValue",
    "PipelineParameters",
    "PipelineRun",
    "RunContext",
    "RunStatus",
    "StageResult",
    "StageState",
]
