"""Build a ready-to-run executor from validated config."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from conveyor.approval.gate import ApprovalGate, ApprovalService
from conveyor.approval.services import AutoApprovalService, FileApprovalService
from conveyor.credentials.stores import CredentialStore, EnvCredentialStore
from conveyor.domain.models import RunContext
from conveyor.pipeline.definition import build_ci_pipeline, pipeline_variables
from conveyor.pipeline.executor import ExecutorSettings, PipelineExecutor
from conveyor.pipeline.loader import load_pipeline_definition
from conveyor.pipeline.stages import PipelineDefinition
from conveyor.reporting.commit_status import CommitStatusSink
from conveyor.reporting.notifications import (
    LoggingNotifier,
    Notifier,
    RecipientPolicy,
    SmtpNotifier,
)
from conveyor.reporting.status import LoggingStatusSink, StatusSink
from conveyor.sandbox.command_runner import CommandRunner, SubprocessCommandRunner
from conveyor.security.redaction import SecretMasker


def executor_settings(config: Mapping[str, Any]) -> ExecutorSettings:
    pipeline = config["pipeline"]
    paths = config["paths"]
    timeout = pipeline["command_timeout_seconds"]
    return ExecutorSettings(
        workspace_root=Path(paths["workspace_root"]),
        artifacts_root=Path(paths["artifacts_root"]),
        results_dir=pipeline["results_dir"],
        command_timeout_seconds=float(timeout) if timeout else None,
        status_retries=config["status"]["retries"],
        variables=pipeline_variables(config),
    )


def pipeline_definition(config: Mapping[str, Any]) -> PipelineDefinition:
    """The YAML definition named by ``pipeline.definition_file``, else the built-in CI one."""

    definition_file = config["pipeline"].get("definition_file")
    if definition_file:
        return load_pipeline_definition(definition_file, config)
    return build_ci_pipeline(config)


def build_approval_service(config: Mapping[str, Any]) -> ApprovalService:
    approval = config["approval"]
    if approval["service"] == "auto":
        return AutoApprovalService()
    return FileApprovalService(
        config["paths"]["approvals_dir"],
        poll_interval_seconds=approval["poll_interval_seconds"],
    )


def build_status_sink(
    config: Mapping[str, Any],
    context: RunContext,
    environ: Mapping[str, str],
) -> StatusSink:
    status = config["status"]
    if status["sink"] == "logging":
        return LoggingStatusSink()
    if not context.repository or not context.commit_sha:
        raise ValueError("the commit_status sink needs a repository slug and a commit SHA")
    return CommitStatusSink(
        api_url=status["api_url"],
        repository=context.repository,
        commit_sha=context.commit_sha,
        token=environ.get(status["token_env"]),
        context_prefix=status["context_prefix"],
        timeout_seconds=status["timeout_seconds"],
    )


def build_notifier(config: Mapping[str, Any], environ: Mapping[str, str]) -> Notifier:
    notifications = config["notifications"]
    if notifications["notifier"] == "logging":
        return LoggingNotifier()
    username_env = notifications.get("smtp_username_env")
    password_env = notifications.get("smtp_password_env")
    return SmtpNotifier(
        host=notifications["smtp_host"],
        port=notifications["smtp_port"],
        sender=notifications["sender"],
        username=environ.get(username_env) if username_env else None,
        password=environ.get(password_env) if password_env else None,
    )


def build_executor(
    config: Mapping[str, Any],
    context: RunContext,
    *,
    masker: SecretMasker,
    environ: Mapping[str, str] | None = None,
    definition: PipelineDefinition | None = None,
    runner: CommandRunner | None = None,
    credential_store: CredentialStore | None = None,
    approval_service: ApprovalService | None = None,
    status_sink: StatusSink | None = None,
    notifier: Notifier | None = None,
) -> PipelineExecutor:
    """Wire the configured collaborators; any argument given explicitly wins."""

    env_map = os.environ if environ is None else environ
    settings = executor_settings(config)
    settings.workspace_root.mkdir(parents=True, exist_ok=True)
    approval = config["approval"]

    return PipelineExecutor(
        definition or pipeline_definition(config),
        settings,
        runner=runner or SubprocessCommandRunner(settings.workspace_root),
        credential_store=credential_store or EnvCredentialStore(env_map),
        approval_gate=ApprovalGate(
            approval_service or build_approval_service(config),
            default_timeout_seconds=approval["timeout_minutes"] * 60.0,
        ),
        status_sink=status_sink or build_status_sink(config, context, env_map),
        notifier=notifier or build_notifier(config, env_map),
        recipient_policy=RecipientPolicy(owners=tuple(config["notifications"]["owners"])),
        masker=masker,
    )


__all__ = [
    "build_approval_service",
    "build_executor",
    "build_notifier",
    "build_status_sink",
    "executor_settings",
    "pipeline_definition",
]
