"""
conveyor — property checks for the stage executor

File: tests/integration/test_executor_properties.py
Last updated: 2026-10-19

Purpose
- Generate parameter combinations and failure points and check the
  invariants that must hold for every run, not just hand-picked ones.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, seed, settings
from hypothesis import strategies as st

from conveyor.approval.gate import ApprovalDecision, ApprovalOutcome, ApprovalRequest
from conveyor.domain.models import RunContext, RunStatus, StageState
from conveyor.pipeline.parameters import resolve_parameters
from tests.conftest import ScriptedRunner, build_harness

STAGE_ORDER = ("Checkout", "Build", "Test", "Publish", "Deploy")
_FAILURE_TOKENS = (None, "clone", "checkout", "build", "run", "login", "push", "./deploy.sh")


class _DecidedApprovals:
    def __init__(self, outcome: ApprovalOutcome) -> None:
        self._outcome = outcome

    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision:
        return ApprovalDecision(self._outcome, "release-manager")


@pytest.mark.integration
@settings(max_examples=40, derandomize=True, deadline=None)
@seed(20261019)
@given(
    environment=st.sampled_from(("development", "staging", "production")),
    approval=st.sampled_from((ApprovalOutcome.APPROVED, ApprovalOutcome.TIMED_OUT)),
    run_tests=st.booleans(),
    deploy=st.booleans(),
    failing_token=st.sampled_from(_FAILURE_TOKENS),
)
def test_property_run_invariants_hold_for_any_parameters_and_failure(
    environment: str,
    run_tests: bool,
    deploy: bool,
    approval: ApprovalOutcome,
    failing_token: str | None,
) -> None:
    runner = ScriptedRunner()
    if failing_token is not None:
        runner.fail_when(failing_token)

    with tempfile.TemporaryDirectory() as tmp:
        harness = build_harness(
            Path(tmp), runner=runner, approval_service=_DecidedApprovals(approval)
        )
        parameters = resolve_parameters(
            {"ENVIRONMENT": environment, "RUN_TESTS": run_tests, "DEPLOY": deploy}
        )
        run = harness.executor.execute(
            RunContext(
                build_number=1,
                repository="acme/app",
                repository_url="https://git.example.com/acme/app.git",
                commit_sha="abc123",
            ),
            parameters,
        )
        workspace_exists = (harness.workspace_root / run.run_id).exists()

    # Every stage is accounted for, in definition order.
    assert tuple(result.name for result in run.stages) == STAGE_ORDER
    states = {result.name: result.state for result in run.stages}

    # Guards decide skips only; a guarded-off stage never runs.
    if not run_tests:
        assert states["Test"] is StageState.SKIPPED
    if not deploy:
        assert states["Deploy"] is StageState.SKIPPED

    # At most one failed stage, and nothing runs after it.
    failed = [name for name in STAGE_ORDER if states[name] is StageState.FAILED]
    assert len(failed) <= 1
    if failed:
        assert run.status is RunStatus.FAILED
        assert run.failed_stage == failed[0]
        after = STAGE_ORDER[STAGE_ORDER.index(failed[0]) + 1 :]
        assert all(states[name] is StageState.SKIPPED for name in after)
    else:
        assert run.status is RunStatus.SUCCEEDED

    # Only production deploys consult the approval gate; a timeout fails the deploy.
    deploy_reached = states["Deploy"] is not StageState.SKIPPED
    if environment == "production" and deploy_reached:
        assert len(harness.gate.requests) == 1
        if approval is ApprovalOutcome.TIMED_OUT:
            assert states["Deploy"] is StageState.FAILED
            assert not runner.invoked("./deploy.sh")
    else:
        assert harness.gate.requests == []

    # Status events: only for executed stages, strictly increasing, pipeline event last.
    events = harness.sink.events
    sequences = [event.sequence for event in events]
    assert sequences == sorted(set(sequences))
    assert events[-1].stage == "pipeline"
    reported = {event.stage for event in events[:-1]}
    assert reported == set(run.executed_stages())

    # Exactly one notification, matching the outcome; workspace always removed.
    assert [item.status for item in harness.notifier.sent] == [run.status]
    assert not workspace_exists
    assert harness.masker.active_count == 0
