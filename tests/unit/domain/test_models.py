"""
conveyor — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-19

Purpose
- Validate run status transitions, stage bookkeeping, and serialization.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from conveyor.domain.models import (
    Environment,
    PipelineParameters,
    PipelineRun,
    RunContext,
    RunStatus,
    StageResult,
    StageState,
)


def _run(build_number: int = 5) -> PipelineRun:
    return PipelineRun(
        context=RunContext(build_number=build_number),
        parameters=PipelineParameters(Environment.STAGING, run_tests=True, deploy=False),
    )


@pytest.mark.unit
def test_parameters_render_as_environment_strings() -> None:
    params = PipelineParameters(Environment.PRODUCTION, run_tests=False, deploy=True)

    assert params.as_env() == {
        "ENVIRONMENT": "production",
        "RUN_TESTS": "false",
        "DEPLOY": "true",
    }
    assert params.to_dict()["RUN_TESTS"] is False


@pytest.mark.unit
@pytest.mark.parametrize("build_number", [0, -3, True])
def test_run_context_rejects_invalid_build_numbers(build_number: int) -> None:
    with pytest.raises(ValueError):
        RunContext(build_number=build_number)


@pytest.mark.unit
def test_run_id_is_the_build_number() -> None:
    assert _run(42).run_id == "42"


@pytest.mark.unit
def test_run_lifecycle_success() -> None:
    run = _run()
    run.start()
    run.complete()

    assert run.status is RunStatus.SUCCEEDED
    assert run.started_at is not None
    assert run.finished_at is not None


@pytest.mark.unit
def test_first_failure_wins_and_is_never_cleared() -> None:
    run = _run()
    run.start()
    run.fail("Build", "exit 2")
    run.fail("Deploy", "later failure")
    run.complete()

    assert run.status is RunStatus.FAILED
    assert (run.failed_stage, run.failure_reason) == ("Build", "exit 2")


@pytest.mark.unit
def test_start_twice_is_rejected() -> None:
    run = _run()
    run.start()

    with pytest.raises(RuntimeError, match="already started"):
        run.start()


@pytest.mark.unit
def test_stage_results_are_recorded_once_in_order() -> None:
    run = _run()
    run.record_stage(StageResult("Checkout", StageState.SUCCEEDED))
    run.record_stage(StageResult("Test", StageState.SKIPPED))
    run.record_stage(StageResult("Build", StageState.FAILED))

    assert run.executed_stages() == ["Checkout", "Build"]
    assert run.stage_result("Test").state is StageState.SKIPPED
    assert run.stage_result("Deploy") is None
    with pytest.raises(ValueError, match="already recorded"):
        run.record_stage(StageResult("Checkout"))


@pytest.mark.unit
def test_stage_duration_and_serialization() -> None:
    started = datetime(2026, 1, 1, tzinfo=UTC)
    result = StageResult(
        "Build",
        StageState.FAILED,
        started_at=started,
        finished_at=started + timedelta(seconds=12.5),
        error="boom",
        exit_code=2,
    )

    assert result.duration_seconds == 12.5
    assert result.to_dict() == {
        "name": "Build",
        "state": "failed",
        "error": "boom",
        "exit_code": 2,
        "duration_seconds": 12.5,
        "hook_errors": [],
    }
    assert StageResult("Test").duration_seconds is None


@pytest.mark.unit
def test_run_to_dict_includes_artifacts_and_summary() -> None:
    run = _run()
    run.artifacts.append("/artifacts/5/test-results/junit.xml")
    run.test_summary = {"tests": 3, "failures": 0, "errors": 0, "skipped": 0}

    payload = run.to_dict()

    assert payload["run_id"] == "5"
    assert payload["status"] == "pending"
    assert payload["artifacts"] == ["/artifacts/5/test-results/junit.xml"]
    assert payload["test_summary"] == {"tests": 3, "failures": 0, "errors": 0, "skipped": 0}
    assert payload["hook_errors"] == []
