"""Stage and pipeline definitions: guards, bodies, and outcome-indexed hooks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from conveyor.domain.ids import validate_stage_name
from conveyor.domain.models import HookOutcome, PipelineParameters
from conveyor.pipeline.steps import Step

Guard = Callable[[PipelineParameters], bool]


def always_run(parameters: PipelineParameters) -> bool:
    return True


def run_tests_enabled(parameters: PipelineParameters) -> bool:
    return parameters.run_tests


def deploy_enabled(parameters: PipelineParameters) -> bool:
    return parameters.deploy


@dataclass(frozen=True, slots=True)
class HookTable:
    """Steps to run after a stage (or the whole pipeline), keyed by outcome."""

    success: tuple[Step, ...] = ()
    failure: tuple[Step, ...] = ()
    always: tuple[Step, ...] = ()

    def for_outcome(self, outcome: HookOutcome) -> tuple[Step, ...]:
        if outcome is HookOutcome.SUCCESS:
            return self.success
        if outcome is HookOutcome.FAILURE:
            return self.failure
        return self.always


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    steps: tuple[Step, ...]
    guard: Guard = always_run
    hooks: HookTable = field(default_factory=HookTable)

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("stage name must not be empty")
        validate_stage_name(self.name)
        object.__setattr__(self, "steps", tuple(self.steps))

    def should_run(self, parameters: PipelineParameters) -> bool:
        return bool(self.guard(parameters))


@dataclass(frozen=True, slots=True)
class PipelineDefinition:
    name: str
    stages: tuple[Stage, ...]
    hooks: HookTable = field(default_factory=HookTable)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        if not self.stages:
            raise ValueError("a pipeline needs at least one stage")
        names = [stage.name for stage in self.stages]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate stage names: {', '.join(duplicates)}")

    def stage(self, name: str) -> Stage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)


__all__ = [
    "Guard",
    "HookTable",
    "PipelineDefinition",
    "Stage",
    "always_run",
    "deploy_enabled",
    "run_tests_enabled",
]
