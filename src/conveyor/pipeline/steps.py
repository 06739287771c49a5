"""
conveyor — pipeline steps

File: src/conveyor/pipeline/steps.py
Last updated: 2026-10-19

Purpose
- Define the units a stage body and its hooks are made of, and the
  ``StepContext`` they run against.

What should be included in this file
- ``Command``: templated argv, stdin, and env executed through a runner.
- ``CheckoutRevision``: checks out the triggering commit or branch when known.
- ``WithCredentials``: binds a scoped credential for nested steps only.
- ``ArchiveResults``, ``Notify``, ``CleanWorkspace``, and ``Action``.

Functional requirements
- Commands are argument vectors; nothing is passed through a shell.
- Command lines, output, and error messages are masked before logging.
- The first failing step raises and aborts the remaining steps.
"""

from __future__ import annotations

import dataclasses
import logging
import shutil
import xml.etree.ElementTree as ET
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Protocol

from conveyor.approval.gate import ApprovalGate
from conveyor.credentials.broker import CredentialBroker
from conveyor.domain.errors import CommandFailed, StageFailure
from conveyor.domain.models import PipelineRun
from conveyor.observability.logging import correlation_scope
from conveyor.pipeline.templating import render, render_argv
from conveyor.pipeline.workspace import Workspace
from conveyor.reporting.notifications import (
    NotificationFailed,
    NotificationTemplates,
    Notifier,
    RecipientPolicy,
    build_notification,
)
from conveyor.sandbox.command_runner import CommandRunner
from conveyor.security.redaction import SecretMasker

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS: Final[int] = 2000
_JUNIT_COUNTERS: Final[tuple[str, ...]] = ("tests", "failures", "errors", "skipped")


@dataclass(frozen=True, slots=True)
class StepContext:
    """Everything a step may touch while it runs."""

    run: PipelineRun
    stage: str
    workspace: Workspace
    env: Mapping[str, str]
    runner: CommandRunner
    broker: CredentialBroker
    gate: ApprovalGate
    notifier: Notifier
    masker: SecretMasker
    artifacts_dir: Path
    results_dir: str
    recipient_policy: RecipientPolicy = field(default_factory=RecipientPolicy)
    command_timeout_seconds: float | None = None

    def with_env(self, extra: Mapping[str, str]) -> StepContext:
        return dataclasses.replace(self, env={**self.env, **extra})


class Step(Protocol):
    def describe(self) -> str: ...

    def run(self, ctx: StepContext) -> None: ...


def run_steps(steps: Sequence[Step], ctx: StepContext) -> None:
    for step in steps:
        with correlation_scope(step=step.describe()):
            step.run(ctx)


@dataclass(frozen=True, slots=True)
class Command:
    argv: tuple[str, ...]
    stdin: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    cwd: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, str):
            raise TypeError("Command.argv must be a sequence of arguments, not a shell string")
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ValueError("Command.argv must not be empty")

    def describe(self) -> str:
        return self.name or self.argv[0]

    def run(self, ctx: StepContext) -> None:
        argv = render_argv(self.argv, ctx.env)
        stdin_text = render(self.stdin, ctx.env) if self.stdin is not None else None
        extra_env = {key: render(value, ctx.env) for key, value in self.env.items()}
        display = " ".join(ctx.masker.mask_args(argv))

        cwd = ctx.workspace.path
        if self.cwd is not None:
            cwd = cwd / render(self.cwd, ctx.env)

        timeout = self.timeout_seconds
        if timeout is None:
            timeout = ctx.command_timeout_seconds

        logger.info("run: %s", display)
        result = ctx.runner.run(
            argv,
            cwd=cwd,
            env={**ctx.env, **extra_env},
            stdin_text=stdin_text,
            timeout_seconds=timeout,
        )
        if result.stdout:
            logger.debug("stdout: %s", ctx.masker.mask(result.stdout))
        if result.stderr:
            logger.debug("stderr: %s", ctx.masker.mask(result.stderr))

        if result.succeeded:
            return
        stderr_tail = ctx.masker.mask(result.stderr[-_STDERR_TAIL_CHARS:])
        raise CommandFailed(
            display,
            result.returncode,
            timed_out=result.timed_out,
            stderr_tail=stderr_tail,
        )


@dataclass(frozen=True, slots=True)
class CheckoutRevision:
    """Check out ``GIT_COMMIT``, else ``GIT_BRANCH``; without either keep the clone as is."""

    git: str = "git"

    def describe(self) -> str:
        return "git-checkout"

    def run(self, ctx: StepContext) -> None:
        revision = ctx.env.get("GIT_COMMIT") or ctx.env.get("GIT_BRANCH")
        if not revision:
            logger.info("no commit or branch given; keeping the cloned default branch")
            return
        Command((self.git, "checkout", revision), name=self.describe()).run(ctx)


@dataclass(frozen=True, slots=True)
class WithCredentials:
    """Bind a username/password pair to env vars for the nested steps only."""

    credential_id: str
    steps: tuple[Step, ...]
    username_var: str = "USERNAME"
    password_var: str = "PASSWORD"

    def describe(self) -> str:
        return f"with-credentials:{self.credential_id}"

    def run(self, ctx: StepContext) -> None:
        with ctx.broker.scoped(self.credential_id) as credential:
            scoped_ctx = ctx.with_env(
                {self.username_var: credential.username, self.password_var: credential.secret}
            )
            try:
                run_steps(self.steps, scoped_ctx)
            except Exception as exc:
                # Mask while the secret is still registered; the scope ends before
                # the executor records the error.
                message = str(exc)
                masked = ctx.masker.mask_literals(message)
                if masked != message:
                    raise StageFailure(masked) from None
                raise


@dataclass(frozen=True, slots=True)
class Action:
    """Run a Python callable as a step."""

    name: str
    func: Callable[[StepContext], None]

    def describe(self) -> str:
        return self.name

    def run(self, ctx: StepContext) -> None:
        self.func(ctx)


@dataclass(frozen=True, slots=True)
class ArchiveResults:
    """Copy result files into the run's artifact directory and total JUnit counts."""

    pattern: str = "*.xml"
    allow_empty: bool = True

    def describe(self) -> str:
        return "archive-results"

    def run(self, ctx: StepContext) -> None:
        source_dir = ctx.workspace.path / ctx.results_dir
        matches = sorted(path for path in source_dir.glob(self.pattern) if path.is_file())
        if not matches:
            if self.allow_empty:
                logger.info("no results matched %s", self.pattern)
                return
            raise StageFailure(f"no results matched {self.pattern!r} in {ctx.results_dir}")

        target_dir = ctx.artifacts_dir / ctx.results_dir
        totals = dict.fromkeys(_JUNIT_COUNTERS, 0)
        for path in matches:
            relative = path.relative_to(source_dir)
            destination = target_dir / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, destination)
            ctx.run.artifacts.append(str(destination))
            if path.suffix == ".xml":
                counts = junit_counts(path)
                for key in _JUNIT_COUNTERS:
                    totals[key] += counts.get(key, 0)

        ctx.run.test_summary = totals
        logger.info(
            "archived %d result file(s)", len(matches), extra={"test_summary": dict(totals)}
        )


def junit_counts(path: Path) -> dict[str, int]:
    """Sum tests/failures/errors/skipped over every ``<testsuite>`` in a JUnit file."""

    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as exc:
        logger.warning("unreadable JUnit report %s: %s", path.name, exc)
        return {}

    suites = [root] if root.tag == "testsuite" else list(root.iter("testsuite"))
    totals = dict.fromkeys(_JUNIT_COUNTERS, 0)
    for suite in suites:
        for key in _JUNIT_COUNTERS:
            raw = suite.get(key, "0")
            try:
                totals[key] += int(float(raw))
            except ValueError:
                logger.warning("ignoring non-numeric %s=%r in %s", key, raw, path.name)
    return totals


@dataclass(frozen=True, slots=True)
class Notify:
    """Send the end-of-run notification; template and delivery failures are logged only."""

    templates: NotificationTemplates = NotificationTemplates()

    def describe(self) -> str:
        return "notify"

    def run(self, ctx: StepContext) -> None:
        try:
            notification = build_notification(ctx.run, ctx.recipient_policy, self.templates)
            ctx.notifier.send(notification)
        except NotificationFailed as exc:
            logger.error("notification not delivered: %s", ctx.masker.mask(str(exc)))


@dataclass(frozen=True, slots=True)
class CleanWorkspace:
    def describe(self) -> str:
        return "clean-workspace"

    def run(self, ctx: StepContext) -> None:
        ctx.workspace.cleanup()


__all__ = [
    "Action",
    "ArchiveResults",
    "CheckoutRevision",
    "CleanWorkspace",
    "Command",
    "Notify",
    "Step",
    "StepContext",
    "WithCredentials",
    "junit_counts",
    "run_steps",
]
