"""
conveyor — executor integration scenarios

File: tests/integration/test_pipeline_executor.py
Last updated: 2026-10-19

Purpose
- Drive the built-in CI definition end to end against offline doubles and
  check the externally visible contract: stage states, ordered status
  events, notifications, credential scoping, approval gating, and cleanup.

What this test file should cover
- Happy path with default parameters.
- Guard-driven skips for RUN_TESTS and DEPLOY.
- Halt-on-first-failure with skipped downstream stages.
- Production approval: approved, timed out, and rejected.
- Secrets never leaving their scope.
"""

from __future__ import annotations

import json
import threading

import pytest

from conveyor.approval.gate import ApprovalDecision, ApprovalOutcome, ApprovalRequest
from conveyor.approval.services import EventApprovalService
from conveyor.credentials.stores import InMemoryCredentialStore
from conveyor.domain.errors import StatusDeliveryFailed
from conveyor.domain.events import StatusEvent, StatusState
from conveyor.domain.models import (
    Environment,
    PipelineParameters,
    PipelineRun,
    RunContext,
    RunStatus,
    StageState,
)
from conveyor.pipeline.parameters import resolve_parameters
from tests.conftest import (
    REGISTRY_PASSWORD,
    REGISTRY_USER,
    ExecutorFactory,
    RecordedCall,
    ScriptedRunner,
)

ALL_STAGES = ["Checkout", "Build", "Test", "Publish", "Deploy"]


def _context(build_number: int = 7) -> RunContext:
    return RunContext(
        build_number=build_number,
        repository="acme/app",
        repository_url="https://git.example.com/acme/app.git",
        commit_sha="3f2c1ab",
        branch="main",
        triggered_by="release-manager@example.com",
        commit_authors=("dev@example.com",),
    )


def _params(**raw: object) -> PipelineParameters:
    return resolve_parameters(raw)


def _states(run: PipelineRun) -> dict[str, StageState]:
    return {result.name: result.state for result in run.stages}


class _FixedDecisionService:
    def __init__(self, decision: ApprovalDecision) -> None:
        self.decision = decision
        self.requests: list[tuple[ApprovalRequest, float]] = []

    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision:
        self.requests.append((request, timeout_seconds))
        return self.decision


@pytest.mark.integration
def test_default_parameters_run_every_stage_and_succeed(make_executor: ExecutorFactory) -> None:
    harness = make_executor()

    run = harness.executor.execute(_context(), _params())

    assert run.status is RunStatus.SUCCEEDED
    assert run.executed_stages() == ALL_STAGES
    assert all(state is StageState.SUCCEEDED for state in _states(run).values())
    assert run.parameters.environment is Environment.STAGING

    expected = [(stage, state) for stage in ALL_STAGES for state in ("running", "success")]
    expected.append(("pipeline", "success"))
    assert harness.sink.transitions() == expected

    sequences = [event.sequence for event in harness.sink.events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)


@pytest.mark.integration
def test_commands_follow_stage_order_with_templated_image_reference(
    make_executor: ExecutorFactory,
) -> None:
    harness = make_executor()

    harness.executor.execute(_context(build_number=12), _params())

    image_ref = "registry.example.com/app:12"
    argvs = [call.argv for call in harness.runner.calls]
    assert argvs[0] == ("git", "clone", "https://git.example.com/acme/app.git", ".")
    assert argvs[1] == ("git", "checkout", "3f2c1ab")
    assert argvs[2] == ("docker", "build", "-t", image_ref, ".")
    assert argvs[3][:3] == ("docker", "run", "--rm")
    assert harness.runner.subcommands("docker")[2:] == ["login", "push", "tag", "push"]
    assert argvs[-3] == ("docker", "tag", image_ref, "registry.example.com/app:latest")
    assert argvs[-1] == ("./deploy.sh", "staging", image_ref)


@pytest.mark.integration
def test_every_command_runs_inside_the_run_workspace(make_executor: ExecutorFactory) -> None:
    harness = make_executor()

    harness.executor.execute(_context(build_number=3), _params())

    cwds = {call.cwd for call in harness.runner.calls}
    assert cwds == {harness.workspace_root / "3"}
    assert all(call.env["BUILD_NUMBER"] == "3" for call in harness.runner.calls)
    assert all(call.env["ENVIRONMENT"] == "staging" for call in harness.runner.calls)


@pytest.mark.integration
def test_run_tests_false_skips_test_stage_without_events(make_executor: ExecutorFactory) -> None:
    harness = make_executor()

    run = harness.executor.execute(_context(), _params(RUN_TESTS="false"))

    assert run.status is RunStatus.SUCCEEDED
    assert _states(run)["Test"] is StageState.SKIPPED
    assert run.executed_stages() == ["Checkout", "Build", "Publish", "Deploy"]
    assert "Test" not in {event.stage for event in harness.sink.events}
    assert "run" not in harness.runner.subcommands("docker")


@pytest.mark.integration
def test_deploy_false_skips_deploy_and_never_asks_for_approval(
    make_executor: ExecutorFactory,
) -> None:
    service = _FixedDecisionService(ApprovalDecision(ApprovalOutcome.TIMED_OUT))
    harness = make_executor(approval_service=service)

    run = harness.executor.execute(_context(), _params(ENVIRONMENT="production", DEPLOY="no"))

    assert run.status is RunStatus.SUCCEEDED
    assert _states(run)["Deploy"] is StageState.SKIPPED
    assert service.requests == []
    assert not harness.runner.invoked("./deploy.sh")


@pytest.mark.integration
def test_build_failure_halts_pipeline_and_skips_downstream_stages(
    make_executor: ExecutorFactory,
) -> None:
    runner = ScriptedRunner()
    runner.fail_when("build", returncode=2, stderr="no such file: Dockerfile")
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(), _params())

    assert run.status is RunStatus.FAILED
    assert run.failed_stage == "Build"
    states = _states(run)
    assert states["Checkout"] is StageState.SUCCEEDED
    assert states["Build"] is StageState.FAILED
    assert [states[name] for name in ("Test", "Publish", "Deploy")] == [StageState.SKIPPED] * 3
    assert run.stage_result("Build").exit_code == 2

    assert harness.sink.transitions() == [
        ("Checkout", "running"),
        ("Checkout", "success"),
        ("Build", "running"),
        ("Build", "failed"),
        ("pipeline", "failed"),
    ]
    assert not harness.runner.invoked("push")


@pytest.mark.integration
def test_failure_notification_is_sent_once_to_authors_owners_and_actor(
    make_executor: ExecutorFactory,
) -> None:
    runner = ScriptedRunner()
    runner.fail_when("clone")
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(), _params())

    assert run.status is RunStatus.FAILED
    assert len(harness.notifier.sent) == 1
    notification = harness.notifier.sent[0]
    assert notification.status is RunStatus.FAILED
    assert "failed" in notification.subject
    assert notification.recipients == (
        "dev@example.com",
        "owner@example.com",
        "release-manager@example.com",
    )
    assert "Failed stage: Checkout" in notification.body


@pytest.mark.integration
def test_success_notification_reports_success(make_executor: ExecutorFactory) -> None:
    harness = make_executor()

    harness.executor.execute(_context(), _params())

    assert [item.status for item in harness.notifier.sent] == [RunStatus.SUCCEEDED]
    assert harness.notifier.sent[0].subject == "[conveyor] acme/app build #7 succeeded"


@pytest.mark.integration
@pytest.mark.parametrize("failing_token", [None, "clone", "build", "run", "push", "./deploy.sh"])
def test_workspace_is_cleaned_exactly_once_on_every_path(
    make_executor: ExecutorFactory, failing_token: str | None
) -> None:
    runner = ScriptedRunner()
    if failing_token is not None:
        runner.fail_when(failing_token)

    def _leave_file(call: RecordedCall) -> None:
        (call.cwd / "checkout.txt").write_text("sources\n", encoding="utf-8")

    runner.on("clone", _leave_file)
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(), _params())

    assert not (harness.workspace_root / run.run_id).exists()
    assert run.hook_errors == []


@pytest.mark.integration
def test_test_failure_still_archives_results(make_executor: ExecutorFactory) -> None:
    runner = ScriptedRunner()

    def _write_report(call: RecordedCall) -> None:
        results = call.cwd / "test-results"
        results.mkdir(parents=True, exist_ok=True)
        (results / "junit.xml").write_text(
            '<testsuite name="unit" tests="5" failures="2" errors="0" skipped="1"/>',
            encoding="utf-8",
        )

    runner.on("run", _write_report)
    runner.fail_when("run", returncode=1)
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(build_number=9), _params())

    assert run.failed_stage == "Test"
    assert run.test_summary == {"tests": 5, "failures": 2, "errors": 0, "skipped": 1}
    archived = harness.artifacts_root / "9" / "test-results" / "junit.xml"
    assert archived.is_file()
    assert run.artifacts == [str(archived)]
    assert _states(run)["Publish"] is StageState.SKIPPED


@pytest.mark.integration
def test_registry_password_only_reaches_login_stdin(make_executor: ExecutorFactory) -> None:
    harness = make_executor()

    run = harness.executor.execute(_context(), _params())

    login = next(call for call in harness.runner.calls if "login" in call.argv)
    assert login.stdin_text == REGISTRY_PASSWORD
    assert REGISTRY_USER in login.argv
    assert all(REGISTRY_PASSWORD not in " ".join(call.argv) for call in harness.runner.calls)

    outside = [
        call
        for call in harness.runner.calls
        if call.argv[0] == "git" or call.argv[0] == "./deploy.sh" or "build" in call.argv
    ]
    assert outside
    assert all("REGISTRY_PASSWORD" not in call.env for call in outside)
    assert harness.masker.active_count == 0
    assert REGISTRY_PASSWORD not in str(run.to_dict())


@pytest.mark.integration
def test_publish_failure_message_never_carries_the_secret(make_executor: ExecutorFactory) -> None:
    runner = ScriptedRunner()
    runner.fail_when("login", stderr=f"denied for password {REGISTRY_PASSWORD}")
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(), _params())

    result = run.stage_result("Publish")
    assert result.state is StageState.FAILED
    assert REGISTRY_PASSWORD not in (result.error or "")
    assert all(REGISTRY_PASSWORD not in event.description for event in harness.sink.events)
    assert REGISTRY_PASSWORD not in harness.notifier.sent[0].body


@pytest.mark.integration
def test_missing_registry_credential_fails_publish(make_executor: ExecutorFactory) -> None:
    store = InMemoryCredentialStore()
    harness = make_executor(credential_store=store)

    run = harness.executor.execute(_context(), _params())

    assert run.failed_stage == "Publish"
    assert "docker-registry-credentials" in (run.failure_reason or "")
    assert store.fetch_count == 1
    assert not harness.runner.invoked("push")
    assert _states(run)["Deploy"] is StageState.SKIPPED


@pytest.mark.integration
def test_production_deploy_runs_after_approval(make_executor: ExecutorFactory) -> None:
    service = EventApprovalService()
    harness = make_executor(approval_service=service)
    context = _context(build_number=21)
    approver = threading.Thread(target=service.approve, args=(context.run_id, "Deploy", "alice"))
    approver.start()

    run = harness.executor.execute(context, _params(ENVIRONMENT="production"))
    approver.join(timeout=5)

    assert run.status is RunStatus.SUCCEEDED
    assert harness.runner.calls[-1].argv == (
        "./deploy.sh",
        "production",
        "registry.example.com/app:21",
    )
    assert [request.stage for request in harness.gate.requests] == ["Deploy"]


@pytest.mark.integration
def test_production_approval_timeout_fails_deploy_and_still_cleans_up(
    make_executor: ExecutorFactory,
) -> None:
    service = _FixedDecisionService(ApprovalDecision(ApprovalOutcome.TIMED_OUT))
    harness = make_executor(approval_service=service)

    run = harness.executor.execute(_context(), _params(ENVIRONMENT="production"))

    assert run.status is RunStatus.FAILED
    assert run.failed_stage == "Deploy"
    assert "timed out" in (run.failure_reason or "")
    assert not harness.runner.invoked("./deploy.sh")
    assert harness.sink.transitions()[-2:] == [("Deploy", "failed"), ("pipeline", "failed")]
    assert [notification.status for notification in harness.notifier.sent] == [RunStatus.FAILED]
    assert not (harness.workspace_root / run.run_id).exists()
    # The configured approval timeout (60 minutes) is what the service is asked to wait.
    assert service.requests[0][1] == 3600.0


@pytest.mark.integration
def test_production_rejection_fails_deploy(make_executor: ExecutorFactory) -> None:
    service = _FixedDecisionService(ApprovalDecision(ApprovalOutcome.REJECTED, "bob"))
    harness = make_executor(approval_service=service)

    run = harness.executor.execute(_context(), _params(ENVIRONMENT="production"))

    assert run.failed_stage == "Deploy"
    assert "rejected by bob" in (run.failure_reason or "")
    assert not harness.runner.invoked("./deploy.sh")


@pytest.mark.integration
@pytest.mark.parametrize("environment", ["development", "staging"])
def test_non_production_deploys_never_wait_for_approval(
    make_executor: ExecutorFactory, environment: str
) -> None:
    service = _FixedDecisionService(ApprovalDecision(ApprovalOutcome.TIMED_OUT))
    harness = make_executor(approval_service=service)

    run = harness.executor.execute(_context(), _params(ENVIRONMENT=environment))

    assert run.status is RunStatus.SUCCEEDED
    assert service.requests == []
    assert harness.runner.calls[-1].argv[1] == environment


@pytest.mark.integration
def test_status_sink_outage_never_changes_the_outcome(make_executor: ExecutorFactory) -> None:
    class _DownSink:
        def __init__(self) -> None:
            self.attempts = 0

        def deliver(self, event: StatusEvent) -> None:
            self.attempts += 1
            raise StatusDeliveryFailed("503 from status API")

    sink = _DownSink()
    harness = make_executor(sink=sink)

    run = harness.executor.execute(_context(), _params())

    assert run.status is RunStatus.SUCCEEDED
    # 11 events (5 stages x 2 + pipeline), each tried 1 + 2 retries.
    assert sink.attempts == 33


@pytest.mark.integration
def test_timed_out_command_reports_timeout(make_executor: ExecutorFactory) -> None:
    runner = ScriptedRunner()
    runner.fail_when("push", timed_out=True)
    harness = make_executor(runner=runner)

    run = harness.executor.execute(_context(), _params())

    assert run.failed_stage == "Publish"
    assert "timed out" in (run.failure_reason or "")
    assert run.stage_result("Publish").exit_code is None
    failed = [event for event in harness.sink.events if event.state is StatusState.FAILED]
    assert [event.stage for event in failed] == ["Publish", "pipeline"]


@pytest.mark.integration
def test_run_record_is_json_serializable_without_secrets(make_executor: ExecutorFactory) -> None:
    runner = ScriptedRunner()
    runner.fail_when("login", stderr=f"token={REGISTRY_PASSWORD}")
    harness = make_executor(runner=runner)

    payload = harness.executor.execute(_context(), _params()).to_dict()
    rendered = json.dumps(payload, sort_keys=True)

    assert payload["status"] == "failed"
    assert payload["failed_stage"] == "Publish"
    assert [stage["name"] for stage in payload["stages"]] == ALL_STAGES
    assert payload["parameters"] == {"DEPLOY": True, "ENVIRONMENT": "staging", "RUN_TESTS": True}
    assert REGISTRY_PASSWORD not in rendered
