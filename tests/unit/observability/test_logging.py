"""
conveyor — unit tests for per-run structured logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate JSON-lines output, run/stage correlation, secret masking, and
  queue drain on shutdown.

What this test file should cover
- JSON line validity and masking guarantees.
- Correlation field propagation across scopes and threads.
- Shutdown idempotency and logger restoration.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from uuid import uuid4

import pytest
import structlog

from conveyor.constants import REDACTED_VALUE
from conveyor.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_run_logging,
)
from conveyor.security.redaction import SecretMasker


def _logger_name() -> str:
    return f"conveyor.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _config(tmp_path: Path, logger_name: str, **overrides: object) -> LoggingConfig:
    values: dict[str, object] = {
        "run_id": "42",
        "base_log_dir": tmp_path,
        "logger_name": logger_name,
        "log_to_stdout": False,
    }
    values.update(overrides)
    return LoggingConfig(**values)  # type: ignore[arg-type]


@pytest.mark.unit
def test_records_are_json_lines_with_run_and_stage_correlation(tmp_path: Path) -> None:
    name = _logger_name()
    handle = setup_run_logging(_config(tmp_path, name))
    logger = logging.getLogger(name)

    logger.info("pipeline started")
    with correlation_scope(stage="Build", step="image-build"):
        logger.info("building %s", "app:42", extra={"image": "app:42", "attempt": 1})
    handle.shutdown()

    assert handle.log_path == tmp_path / "42" / "pipeline.jsonl"
    first, second = _read_json_lines(handle.log_path)
    assert first["run_id"] == "42"
    assert first["message"] == "pipeline started"
    assert "stage" not in first
    assert second["stage"] == "Build"
    assert second["step"] == "image-build"
    assert second["message"] == "building app:42"
    assert second["fields"] == {"attempt": 1, "image": "app:42"}
    assert str(second["timestamp"]).endswith("Z")


@pytest.mark.unit
def test_in_scope_secrets_and_secret_patterns_are_masked(tmp_path: Path) -> None:
    name = _logger_name()
    masker = SecretMasker()
    handle = setup_run_logging(_config(tmp_path, name), masker=masker)
    logger = logging.getLogger(name)

    with masker.scoped("registry-pass-123"):
        logger.info(
            "login with registry-pass-123 token=abcdef123456",
            extra={"nested": {"password": "plain", "note": "registry-pass-123"}},
        )
    handle.shutdown()

    text = handle.log_path.read_text(encoding="utf-8")
    assert "registry-pass-123" not in text
    assert "abcdef123456" not in text
    (record,) = _read_json_lines(handle.log_path)
    assert record["fields"] == {"nested": {"note": REDACTED_VALUE, "password": REDACTED_VALUE}}


@pytest.mark.unit
def test_literal_masking_survives_disabled_pattern_redaction(tmp_path: Path) -> None:
    name = _logger_name()
    masker = SecretMasker()
    handle = setup_run_logging(_config(tmp_path, name, redact_secrets=False), masker=masker)
    logger = logging.getLogger(name)

    with masker.scoped("registry-pass-123"):
        logger.info("pw registry-pass-123 token=abcdef123456")
    handle.shutdown()

    (record,) = _read_json_lines(handle.log_path)
    assert record["message"] == f"pw {REDACTED_VALUE} token=abcdef123456"


@pytest.mark.unit
def test_level_filtering(tmp_path: Path) -> None:
    name = _logger_name()
    handle = setup_run_logging(_config(tmp_path, name, level="warning"))
    logger = logging.getLogger(name)

    logger.info("hidden")
    logger.warning("shown")
    handle.shutdown()

    assert [line["message"] for line in _read_json_lines(handle.log_path)] == ["shown"]


@pytest.mark.unit
def test_shutdown_drains_queue_and_is_idempotent(tmp_path: Path) -> None:
    name = _logger_name()
    logger = logging.getLogger(name)
    logger.propagate = True
    handle = setup_run_logging(_config(tmp_path, name))
    assert logger.propagate is False

    for index in range(200):
        logger.info("line %d", index)
    handle.shutdown()
    handle.shutdown()

    assert handle.is_shutdown
    assert len(_read_json_lines(handle.log_path)) == 200
    assert logger.propagate is True
    assert logger.handlers == []


@pytest.mark.unit
def test_threads_keep_their_own_correlation(tmp_path: Path) -> None:
    name = _logger_name()
    handle = setup_run_logging(_config(tmp_path, name))
    logger = logging.getLogger(name)
    barrier = threading.Barrier(4)

    def _worker(stage: str) -> None:
        with correlation_scope(stage=stage):
            barrier.wait()
            for _ in range(25):
                logger.info("tick")

    threads = [
        threading.Thread(target=_worker, args=(stage,))
        for stage in ("Checkout", "Build", "Test", "Publish")
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    handle.shutdown()

    lines = _read_json_lines(handle.log_path)
    assert len(lines) == 100
    counts: dict[str, int] = {}
    for line in lines:
        counts[str(line["stage"])] = counts.get(str(line["stage"]), 0) + 1
    assert counts == {"Build": 25, "Checkout": 25, "Publish": 25, "Test": 25}


@pytest.mark.unit
def test_correlation_scope_nests_and_restores() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(run_id="7", stage="Build"):
        with correlation_scope(stage="Test", step="run-tests"):
            assert get_correlation_context() == {
                "run_id": "7",
                "stage": "Test",
                "step": "run-tests",
            }
        with correlation_scope(stage=None):
            assert get_correlation_context() == {"run_id": "7"}
        assert get_correlation_context() == {"run_id": "7", "stage": "Build"}

    assert get_correlation_context() == {}


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"run_id": "  "}, "run_id must not be empty"),
        ({"queue_size": 0}, "queue_size must be > 0"),
        ({"log_filename": "nested/run.jsonl"}, "path separators"),
        ({"level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config_is_rejected(
    tmp_path: Path, overrides: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        setup_run_logging(_config(tmp_path, _logger_name(), **overrides))


@pytest.mark.unit
def test_structlog_events_are_routed_into_the_run_log(tmp_path: Path) -> None:
    name = _logger_name()
    masker = SecretMasker()
    handle = setup_run_logging(_config(tmp_path, name), masker=masker)
    decisions = structlog.get_logger(f"{name}.decisions")

    with masker.scoped("registry-pass-123"), correlation_scope(stage="Deploy"):
        decisions.info("approval_decided", outcome="approved", note="registry-pass-123")
    handle.shutdown()

    (record,) = _read_json_lines(handle.log_path)
    assert record["message"] == "approval_decided"
    assert record["stage"] == "Deploy"
    assert record["fields"] == {"note": REDACTED_VALUE, "outcome": "approved"}
