"""
conveyor — shared test fixtures

File: tests/conftest.py
Last updated: 2026-10-19

Purpose
- Offline doubles for every external collaborator the executor talks to: a
  scripted command runner, a recording status sink, and an executor factory
  wired against temporary directories.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from conveyor.approval.gate import ApprovalGate, ApprovalService
from conveyor.approval.services import AutoApprovalService
from conveyor.config.schema import default_config
from conveyor.credentials.broker import CredentialBroker
from conveyor.credentials.stores import CredentialStore, InMemoryCredentialStore
from conveyor.domain.errors import StatusDeliveryFailed
from conveyor.domain.events import StatusEvent
from conveyor.domain.models import PipelineRun, RunContext
from conveyor.pipeline.definition import build_ci_pipeline, pipeline_variables
from conveyor.pipeline.executor import ExecutorSettings, PipelineExecutor
from conveyor.pipeline.parameters import resolve_parameters
from conveyor.pipeline.stages import PipelineDefinition
from conveyor.pipeline.steps import StepContext
from conveyor.pipeline.workspace import Workspace
from conveyor.reporting.notifications import LoggingNotifier, Notifier, RecipientPolicy
from conveyor.sandbox.command_runner import CommandResult
from conveyor.security.redaction import SecretMasker

REGISTRY_USER = "ci-bot"
REGISTRY_PASSWORD = "s3cr3t-registry-pass"


@dataclass(frozen=True, slots=True)
class RecordedCall:
    argv: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str]
    stdin_text: str | None
    timeout_seconds: float | None


@dataclass(slots=True)
class _Failure:
    returncode: int | None
    stderr: str
    timed_out: bool


class ScriptedRunner:
    """Command runner double: records calls and fails on scripted argv tokens."""

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._failures: dict[str, _Failure] = {}
        self._effects: dict[str, Callable[[RecordedCall], None]] = {}

    def fail_when(
        self,
        token: str,
        *,
        returncode: int | None = 1,
        stderr: str = "boom",
        timed_out: bool = False,
    ) -> None:
        self._failures[token] = _Failure(returncode, stderr, timed_out)

    def on(self, token: str, effect: Callable[[RecordedCall], None]) -> None:
        self._effects[token] = effect

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        stdin_text: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        call = RecordedCall(tuple(argv), Path(cwd), dict(env or {}), stdin_text, timeout_seconds)
        self.calls.append(call)
        for token, effect in self._effects.items():
            if token in call.argv:
                effect(call)
        for token, failure in self._failures.items():
            if token in call.argv:
                return CommandResult(
                    argv=call.argv,
                    cwd=call.cwd,
                    returncode=None if failure.timed_out else failure.returncode,
                    stdout="",
                    stderr=failure.stderr,
                    timed_out=failure.timed_out,
                    duration_ms=1.0,
                )
        return CommandResult(
            argv=call.argv,
            cwd=call.cwd,
            returncode=0,
            stdout="ok\n",
            stderr="",
            timed_out=False,
            duration_ms=1.0,
        )

    def invoked(self, token: str) -> bool:
        return any(token in call.argv for call in self.calls)

    def subcommands(self, executable: str) -> list[str]:
        return [call.argv[1] for call in self.calls if call.argv[0] == executable]


class RecordingSink:
    """Status sink double that can fail the first ``failures`` deliveries."""

    def __init__(self, failures: int = 0) -> None:
        self.events: list[StatusEvent] = []
        self.attempts = 0
        self._failures = failures

    def deliver(self, event: StatusEvent) -> None:
        self.attempts += 1
        if self._failures > 0:
            self._failures -= 1
            raise StatusDeliveryFailed("sink unavailable")
        self.events.append(event)

    def transitions(self) -> list[tuple[str, str]]:
        return [(event.stage, event.state.value) for event in self.events]


@dataclass(slots=True)
class ExecutorHarness:
    executor: PipelineExecutor
    runner: ScriptedRunner
    sink: RecordingSink
    notifier: LoggingNotifier
    credential_store: CredentialStore
    masker: SecretMasker
    gate: ApprovalGate
    workspace_root: Path
    artifacts_root: Path


ExecutorFactory = Callable[..., ExecutorHarness]


def build_harness(
    root: Path,
    *,
    definition: PipelineDefinition | None = None,
    runner: ScriptedRunner | None = None,
    sink: RecordingSink | None = None,
    approval_service: ApprovalService | None = None,
    approval_timeout_seconds: float = 5.0,
    credential_store: CredentialStore | None = None,
    owners: tuple[str, ...] = ("owner@example.com",),
    notifier: Notifier | None = None,
) -> ExecutorHarness:
    """Build a ``PipelineExecutor`` over the built-in CI definition with offline doubles."""

    config = default_config()
    workspace_root = root / "workspaces"
    artifacts_root = root / "artifacts"
    workspace_root.mkdir(parents=True, exist_ok=True)

    store = credential_store
    if store is None:
        store = InMemoryCredentialStore(
            {"docker-registry-credentials": (REGISTRY_USER, REGISTRY_PASSWORD)}
        )
    scripted = runner or ScriptedRunner()
    recording = sink or RecordingSink()
    logging_notifier = LoggingNotifier()
    masker = SecretMasker()
    gate = ApprovalGate(
        approval_service or AutoApprovalService(),
        default_timeout_seconds=approval_timeout_seconds,
    )
    executor = PipelineExecutor(
        definition or build_ci_pipeline(config),
        ExecutorSettings(
            workspace_root=workspace_root,
            artifacts_root=artifacts_root,
            status_retry_delay_seconds=0.0,
            variables=pipeline_variables(config),
        ),
        runner=scripted,
        credential_store=store,
        approval_gate=gate,
        status_sink=recording,
        notifier=notifier or logging_notifier,
        recipient_policy=RecipientPolicy(owners=owners),
        masker=masker,
    )
    return ExecutorHarness(
        executor=executor,
        runner=scripted,
        sink=recording,
        notifier=logging_notifier,
        credential_store=store,
        masker=masker,
        gate=gate,
        workspace_root=workspace_root,
        artifacts_root=artifacts_root,
    )


def build_step_context(
    root: Path,
    *,
    runner: ScriptedRunner | None = None,
    notifier: Notifier | None = None,
    approval_service: ApprovalService | None = None,
    environment: str = "staging",
    stage: str = "Build",
    env: Mapping[str, str] | None = None,
) -> StepContext:
    """A ``StepContext`` for run #3 with a created workspace under ``root``."""

    masker = SecretMasker()
    store = InMemoryCredentialStore({"registry": (REGISTRY_USER, REGISTRY_PASSWORD)})
    run = PipelineRun(
        RunContext(build_number=3, repository="acme/app", commit_authors=("dev@example.com",)),
        resolve_parameters({"ENVIRONMENT": environment}),
    )
    return StepContext(
        run=run,
        stage=stage,
        workspace=Workspace(root / "workspaces", run.run_id).create(),
        env=dict(env) if env is not None else {
            "IMAGE": "registry.example.com/app",
            "IMAGE_TAG": "3",
            "IMAGE_REF": "registry.example.com/app:3",
            "ENVIRONMENT": environment,
        },
        runner=runner or ScriptedRunner(),
        broker=CredentialBroker(store, masker),
        gate=ApprovalGate(approval_service or AutoApprovalService()),
        notifier=notifier or LoggingNotifier(),
        masker=masker,
        artifacts_dir=root / "artifacts" / run.run_id,
        results_dir="test-results",
        recipient_policy=RecipientPolicy(owners=("owner@example.com",)),
        command_timeout_seconds=120.0,
    )


@pytest.fixture
def make_executor(tmp_path: Path) -> ExecutorFactory:
    def _factory(**kwargs: object) -> ExecutorHarness:
        return build_harness(tmp_path, **kwargs)  # type: ignore[arg-type]

    return _factory
