"""Command-line interface router for conveyor."""

from __future__ import annotations

import argparse
import contextlib
import json
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from conveyor.approval.services import pending_requests, write_decision
from conveyor.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
    redact_config,
)
from conveyor.constants import STAGE_DEPLOY
from conveyor.domain.errors import InvalidParameter
from conveyor.domain.ids import allocate_build_number, validate_run_id
from conveyor.domain.models import PipelineParameters, RunContext, RunStatus
from conveyor.observability.logging import LoggingConfig, setup_run_logging
from conveyor.pipeline.assembly import build_executor, build_status_sink
from conveyor.pipeline.parameters import (
    defaults_from_config,
    parse_parameter_assignments,
    resolve_parameters,
)
from conveyor.reporting.commit_status import CommitStatusSink
from conveyor.security.redaction import SecretMasker
from conveyor.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="conveyor",
        description=(
            "conveyor: sequential-stage CI/CD pipeline runner.\n\n"
            "Common workflows:\n"
            "  conveyor run -p ENVIRONMENT=staging    Run the CI pipeline\n"
            "  conveyor params -p RUN_TESTS=false      Show resolved parameters\n"
            "  conveyor approve 42                     Approve a waiting production deploy\n"
            "  conveyor config                         Show effective config (redacted)\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to conveyor TOML config (default: ./conveyor.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    params_parent = argparse.ArgumentParser(add_help=False)
    params_parent.add_argument(
        "-p",
        "--param",
        dest="params",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Runtime parameter (ENVIRONMENT, RUN_TESTS, DEPLOY); repeatable.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common, params_parent],
        help="Execute the CI pipeline once",
        description=(
            "Run Checkout, Build, Test, Publish, and Deploy for one commit.\n\n"
            "Examples:\n"
            "  conveyor run --repository-url https://git.example.com/acme/app.git \\\n"
            "      --commit 3f2c1ab -p ENVIRONMENT=development\n"
            "  conveyor run -p RUN_TESTS=false -p DEPLOY=false --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--build-number",
        type=int,
        default=None,
        help="Build number to use (default: next number from the state directory).",
    )
    run_parser.add_argument("--repository", default=None, help="Repository slug (owner/name).")
    run_parser.add_argument("--repository-url", default=None, help="Clone URL.")
    run_parser.add_argument(
        "--commit",
        dest="commit_sha",
        default=None,
        help="Commit SHA to check out (default: --branch, else the cloned default branch).",
    )
    run_parser.add_argument("--branch", default=None, help="Branch name.")
    run_parser.add_argument(
        "--triggered-by", default=None, help="Actor who triggered the run (notified)."
    )
    run_parser.add_argument(
        "--author",
        dest="authors",
        action="append",
        default=[],
        help="Commit author address (notified); repeatable.",
    )
    run_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    run_parser.set_defaults(handler=_cmd_run)

    # params --------------------------------------------------------------
    params_parser = subparsers.add_parser(
        "params",
        parents=[common, params_parent],
        help="Show resolved runtime parameters",
    )
    params_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    params_parser.set_defaults(handler=_cmd_params)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, and env.\n"
            "Sensitive values are redacted.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # approve -------------------------------------------------------------
    approve_parser = subparsers.add_parser(
        "approve",
        parents=[common],
        help="Approve or reject a stage waiting on the approval gate",
        description=(
            "Write an approval decision for a run that is waiting on a gated stage.\n\n"
            "Examples:\n"
            "  conveyor approve --list\n"
            "  conveyor approve 42 --approver alice\n"
            "  conveyor approve 42 --reject\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    approve_parser.add_argument("run_id", nargs="?", default=None, help="Run id (build number).")
    approve_parser.add_argument(
        "--stage", default=STAGE_DEPLOY, help=f"Gated stage name (default: {STAGE_DEPLOY})."
    )
    approve_parser.add_argument("--reject", action="store_true", help="Reject instead of approve.")
    approve_parser.add_argument("--approver", default=None, help="Name recorded as the approver.")
    approve_parser.add_argument(
        "--list", dest="list_pending", action="store_true", help="List waiting requests."
    )
    approve_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    approve_parser.set_defaults(handler=_cmd_approve)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    parameters = _resolve_cli_parameters(args, config)
    context = _run_context(args, config)
    masker = SecretMasker()

    observability = config["observability"]
    handle = setup_run_logging(
        LoggingConfig(
            run_id=context.run_id,
            base_log_dir=observability["log_dir"],
            level=observability["log_level"],
            log_to_stdout=observability["log_to_stdout"],
            redact_secrets=observability["redact_secrets"],
        ),
        masker=masker,
    )
    with contextlib.ExitStack() as resources:
        resources.callback(handle.shutdown)
        try:
            status_sink = build_status_sink(config, context, os.environ)
            executor = build_executor(config, context, masker=masker, status_sink=status_sink)
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
        if isinstance(status_sink, CommitStatusSink):
            resources.enter_context(status_sink)
        run = executor.execute(context, parameters)

    exit_code = 0 if run.status is RunStatus.SUCCEEDED else 1
    payload: dict[str, object] = {
        "command": "run",
        **run.to_dict(),
        "log_path": str(handle.log_path),
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Run ID", run.run_id)
    renderer.kv("Status", renderer.state(run.status.value))
    renderer.kv("Environment", parameters.environment.value)
    renderer.table(
        ("Stage", "State", "Exit", "Seconds"),
        [
            (
                result.name,
                result.state.value,
                "" if result.exit_code is None else str(result.exit_code),
                "" if result.duration_seconds is None else f"{result.duration_seconds:.1f}",
            )
            for result in run.stages
        ],
        title="Stages:",
    )
    if run.failure_reason:
        renderer.section("Failure:")
        renderer.text(f"  {run.failure_reason}")
    if renderer.verbose:
        stage_errors = [f"{result.name}: {result.error}" for result in run.stages if result.error]
        if stage_errors:
            renderer.section("Stage errors:")
            renderer.items(stage_errors)
    hook_errors = [error for result in run.stages for error in result.hook_errors]
    hook_errors.extend(run.hook_errors)
    if hook_errors:
        renderer.section("Hook errors:")
        renderer.items(hook_errors)
    if run.test_summary is not None:
        renderer.kv(
            "Tests",
            ", ".join(f"{key}={value}" for key, value in sorted(run.test_summary.items())),
        )
    renderer.kv("Log", handle.log_path)
    return exit_code


def _cmd_params(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    parameters = _resolve_cli_parameters(args, config)

    if _flag(args, "json"):
        _emit_json({"command": "params", "parameters": parameters.to_dict()})
        return 0

    renderer = _get_renderer(args)
    for key, value in parameters.as_env().items():
        renderer.kv(key, value)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redact_config(config)})
        return 0

    _get_renderer(args).text(dump_effective_config(config))
    return 0


def _cmd_approve(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    approvals_dir = Path(config["paths"]["approvals_dir"])

    if _flag(args, "list_pending"):
        pending = pending_requests(approvals_dir)
        if _flag(args, "json"):
            _emit_json({"command": "approve", "pending": pending})
            return 0
        renderer = _get_renderer(args)
        if not pending:
            renderer.text("No runs are waiting for approval.")
            return 0
        renderer.table(
            ("Run", "Stage", "Message"),
            [
                (item.get("run_id", ""), item.get("stage", ""), item.get("message", ""))
                for item in pending
            ],
        )
        first = pending[0]
        approve_cmd = f"conveyor approve {first.get('run_id', '')} --stage {first.get('stage', '')}"
        renderer.next_steps([approve_cmd, f"{approve_cmd} --reject"])
        return 0

    run_id = _optional_str(getattr(args, "run_id", None))
    if run_id is None:
        raise CLIError("run_id is required unless --list is given", exit_code=2)
    try:
        validate_run_id(run_id)
        marker = write_decision(
            approvals_dir,
            run_id,
            args.stage,
            approved=not _flag(args, "reject"),
            approver=_optional_str(args.approver) or os.environ.get("USER"),
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    decision = "rejected" if _flag(args, "reject") else "approved"
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "approve",
                "run_id": run_id,
                "stage": args.stage,
                "decision": decision,
                "marker": str(marker),
            }
        )
        return 0
    _get_renderer(args).text(f"Run {run_id} stage {args.stage}: {decision}")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    try:
        return load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _resolve_cli_parameters(
    args: argparse.Namespace, config: Mapping[str, Any]
) -> PipelineParameters:
    try:
        supplied = parse_parameter_assignments(getattr(args, "params", []) or [])
        return resolve_parameters(supplied, defaults=defaults_from_config(config))
    except InvalidParameter as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _run_context(args: argparse.Namespace, config: Mapping[str, Any]) -> RunContext:
    pipeline = config["pipeline"]
    build_number = getattr(args, "build_number", None)
    if build_number is None:
        build_number = allocate_build_number(config["paths"]["state_dir"])
    try:
        return RunContext(
            build_number=build_number,
            repository=_optional_str(args.repository) or pipeline.get("repository"),
            repository_url=_optional_str(args.repository_url) or pipeline.get("repository_url"),
            commit_sha=_optional_str(args.commit_sha),
            branch=_optional_str(args.branch),
            triggered_by=_optional_str(args.triggered_by),
            commit_authors=tuple(args.authors or ()),
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
