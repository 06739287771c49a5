"""
conveyor — stage executor

File: src/conveyor/pipeline/executor.py
Last updated: 2026-10-19

Purpose
- Drive one ``PipelineRun`` through a ``PipelineDefinition``: evaluate each
  stage's guard, run its body, run its outcome hooks, and report every
  transition.

What should be included in this file
- Stage state machine ``pending -> running -> succeeded | failed | skipped``.
- Outcome-indexed hook evaluation for stages and for the pipeline.
- Run environment construction for ``${VAR}`` templating.

Functional requirements
- A skipped stage runs no body and no hooks and emits no status events.
- The first stage failure marks the run failed; every later stage is skipped.
- Hook failures are recorded and logged; they never change an outcome.
- Pipeline ``always`` hooks run exactly once, even when the executor itself
  is interrupted.

Non-functional requirements
- Stages run strictly sequentially on the caller's thread; the approval gate
  is the only blocking point.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from conveyor.approval.gate import ApprovalGate
from conveyor.constants import PIPELINE_STATUS_CONTEXT, RESULTS_DIR
from conveyor.credentials.broker import CredentialBroker
from conveyor.credentials.stores import CredentialStore
from conveyor.domain.errors import CommandFailed, StageFailure
from conveyor.domain.events import StatusState
from conveyor.domain.models import (
    HookOutcome,
    PipelineParameters,
    PipelineRun,
    RunContext,
    StageResult,
    StageState,
)
from conveyor.observability.logging import correlation_scope
from conveyor.pipeline.stages import PipelineDefinition, Stage
from conveyor.pipeline.steps import Step, StepContext, run_steps
from conveyor.pipeline.workspace import Workspace
from conveyor.reporting.notifications import Notifier, RecipientPolicy
from conveyor.reporting.status import StatusReporter, StatusSink
from conveyor.sandbox.command_runner import CommandRunner
from conveyor.security.redaction import SecretMasker

logger = logging.getLogger(__name__)

_MAX_STATUS_DESCRIPTION: Final[int] = 140


@dataclass(frozen=True, slots=True)
class ExecutorSettings:
    workspace_root: Path
    artifacts_root: Path
    results_dir: str = RESULTS_DIR
    command_timeout_seconds: float | None = None
    status_retries: int = 2
    status_retry_delay_seconds: float = 0.5
    variables: Mapping[str, str] = field(default_factory=dict)


class PipelineExecutor:
    """Runs pipeline definitions; every collaborator is injected."""

    def __init__(
        self,
        definition: PipelineDefinition,
        settings: ExecutorSettings,
        *,
        runner: CommandRunner,
        credential_store: CredentialStore,
        approval_gate: ApprovalGate,
        status_sink: StatusSink,
        notifier: Notifier,
        recipient_policy: RecipientPolicy | None = None,
        masker: SecretMasker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._definition = definition
        self._settings = settings
        self._runner = runner
        self._credential_store = credential_store
        self._approval_gate = approval_gate
        self._status_sink = status_sink
        self._notifier = notifier
        self._recipient_policy = recipient_policy or RecipientPolicy()
        self._masker = masker or SecretMasker()
        self._sleep = sleep

    @property
    def definition(self) -> PipelineDefinition:
        return self._definition

    @property
    def masker(self) -> SecretMasker:
        return self._masker

    def execute(self, context: RunContext, parameters: PipelineParameters) -> PipelineRun:
        run = PipelineRun(context=context, parameters=parameters)
        reporter = StatusReporter(
            self._status_sink,
            retries=self._settings.status_retries,
            retry_delay_seconds=self._settings.status_retry_delay_seconds,
            sleep=self._sleep,
        )
        workspace = Workspace(self._settings.workspace_root, run.run_id)
        ctx = StepContext(
            run=run,
            stage=PIPELINE_STATUS_CONTEXT,
            workspace=workspace,
            env=self.run_environment(run, workspace),
            runner=self._runner,
            broker=CredentialBroker(self._credential_store, self._masker),
            gate=self._approval_gate,
            notifier=self._notifier,
            masker=self._masker,
            artifacts_dir=self._settings.artifacts_root / run.run_id,
            results_dir=self._settings.results_dir,
            recipient_policy=self._recipient_policy,
            command_timeout_seconds=self._settings.command_timeout_seconds,
        )

        with correlation_scope(run_id=run.run_id):
            logger.info(
                "run started",
                extra={"parameters": run.parameters.to_dict(), "pipeline": self._definition.name},
            )
            run.start()
            try:
                try:
                    workspace.create()
                    self._run_stages(run, ctx, reporter)
                except Exception as exc:
                    logger.exception("executor interrupted")
                    run.fail(run.current_stage, self._masker.mask(f"executor error: {exc}"))
                run.complete()
                self._finish(run, ctx, reporter)
            finally:
                self._run_hooks(
                    self._definition.hooks.always, ctx, HookOutcome.ALWAYS, run.hook_errors
                )
            logger.info("run finished: %s", run.status.value, extra={"run": run.to_dict()})
        return run

    def run_environment(self, run: PipelineRun, workspace: Workspace) -> dict[str, str]:
        """Variables visible to ``${VAR}`` templates and to every command."""

        context = run.context
        env: dict[str, str] = dict(self._settings.variables)
        env.update(run.parameters.as_env())
        env.update(
            {
                "BUILD_NUMBER": str(context.build_number),
                "RUN_ID": run.run_id,
                "WORKSPACE": str(workspace.path),
                "RESULTS_DIR": self._settings.results_dir,
                "IMAGE_TAG": str(context.build_number),
            }
        )
        optional = {
            "GIT_COMMIT": context.commit_sha,
            "GIT_BRANCH": context.branch,
            "REPOSITORY": context.repository,
            "REPOSITORY_URL": context.repository_url,
        }
        env.update({key: value for key, value in optional.items() if value})

        image_name = env.get("IMAGE_NAME")
        if image_name:
            registry = env.get("REGISTRY")
            env["IMAGE"] = f"{registry}/{image_name}" if registry else image_name
            env["IMAGE_REF"] = f"{env['IMAGE']}:{env['IMAGE_TAG']}"
        return env

    def _run_stages(self, run: PipelineRun, ctx: StepContext, reporter: StatusReporter) -> None:
        for stage in self._definition.stages:
            result = StageResult(name=stage.name)
            run.record_stage(result)

            if run.is_failed:
                result.state = StageState.SKIPPED
                logger.info("stage %s skipped: pipeline already failed", stage.name)
                continue
            if not stage.should_run(run.parameters):
                result.state = StageState.SKIPPED
                logger.info("stage %s skipped by guard", stage.name)
                continue

            self._run_stage(stage, run, dataclasses.replace(ctx, stage=stage.name), reporter, result)

    def _run_stage(
        self,
        stage: Stage,
        run: PipelineRun,
        ctx: StepContext,
        reporter: StatusReporter,
        result: StageResult,
    ) -> None:
        with correlation_scope(stage=stage.name):
            run.current_stage = stage.name
            result.state = StageState.RUNNING
            result.started_at = _utc_now()
            reporter.report(run.run_id, stage.name, StatusState.RUNNING, f"{stage.name} running")

            error: Exception | None = None
            try:
                run_steps(stage.steps, ctx)
            except StageFailure as exc:
                error = exc
                logger.error("stage %s failed: %s", stage.name, self._masker.mask(str(exc)))
            except Exception as exc:
                error = exc
                logger.exception("stage %s raised unexpectedly", stage.name)
            result.finished_at = _utc_now()

            if error is None:
                result.state = StageState.SUCCEEDED
                self._run_hooks(stage.hooks.success, ctx, HookOutcome.SUCCESS, result.hook_errors)
                self._run_hooks(stage.hooks.always, ctx, HookOutcome.ALWAYS, result.hook_errors)
                reporter.report(
                    run.run_id, stage.name, StatusState.SUCCESS, f"{stage.name} succeeded"
                )
            else:
                result.state = StageState.FAILED
                result.error = self._masker.mask(str(error) or type(error).__name__)
                if isinstance(error, CommandFailed):
                    result.exit_code = error.exit_code
                self._run_hooks(stage.hooks.failure, ctx, HookOutcome.FAILURE, result.hook_errors)
                self._run_hooks(stage.hooks.always, ctx, HookOutcome.ALWAYS, result.hook_errors)
                reporter.report(
                    run.run_id,
                    stage.name,
                    StatusState.FAILED,
                    result.error[:_MAX_STATUS_DESCRIPTION],
                )
                run.fail(stage.name, result.error)
            run.current_stage = None

    def _finish(self, run: PipelineRun, ctx: StepContext, reporter: StatusReporter) -> None:
        if run.is_failed:
            self._run_hooks(
                self._definition.hooks.failure, ctx, HookOutcome.FAILURE, run.hook_errors
            )
            description = f"failed at {run.failed_stage}" if run.failed_stage else "failed"
            reporter.report(run.run_id, PIPELINE_STATUS_CONTEXT, StatusState.FAILED, description)
        else:
            self._run_hooks(
                self._definition.hooks.success, ctx, HookOutcome.SUCCESS, run.hook_errors
            )
            reporter.report(
                run.run_id, PIPELINE_STATUS_CONTEXT, StatusState.SUCCESS, "pipeline succeeded"
            )

    def _run_hooks(
        self,
        steps: tuple[Step, ...],
        ctx: StepContext,
        outcome: HookOutcome,
        errors: list[str],
    ) -> None:
        for step in steps:
            try:
                with correlation_scope(hook=outcome.value):
                    run_steps((step,), ctx)
            except Exception as exc:
                message = self._masker.mask(
                    f"{outcome.value} hook {step.describe()} failed: {exc}"
                )
                errors.append(message)
                logger.error(message, exc_info=not isinstance(exc, StageFailure))


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = ["ExecutorSettings", "PipelineExecutor"]
