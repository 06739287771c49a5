"""Subprocess execution for pipeline commands with workspace containment."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from conveyor.utils.fs import is_within

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class CommandRunnerError(RuntimeError):
    """Base error for command runner failures."""


class WorkspacePolicyError(CommandRunnerError):
    """Raised when a command would run outside the workspace root."""


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized outcome of one external command."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: float

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0


class CommandRunner(Protocol):
    """Executes an argument vector; never interprets a shell string."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        stdin_text: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Run commands as local subprocesses confined to ``workspace_root``.

    The host environment is inherited except for variables whose names start
    with one of ``excluded_env_prefixes``; conveyor's own credential and
    token variables therefore never reach child processes unless a step binds
    them explicitly.
    """

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        inherit_host_env: bool = True,
        excluded_env_prefixes: tuple[str, ...] = ("CONVEYOR_",),
    ) -> None:
        self._workspace_root = Path(workspace_root)
        self._inherit_host_env = bool(inherit_host_env)
        self._excluded_env_prefixes = excluded_env_prefixes

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        stdin_text: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        parsed_argv = _normalize_argv(argv)
        resolved_cwd = self._resolve_cwd(cwd)
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        run_env = self._build_environment(env)
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                list(parsed_argv),
                cwd=resolved_cwd,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_seconds,
                env=run_env,
                input=stdin_text,
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                argv=parsed_argv,
                cwd=resolved_cwd,
                returncode=None,
                stdout=_coerce_timeout_stream(exc.stdout),
                stderr=_coerce_timeout_stream(exc.stderr),
                timed_out=True,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
        except FileNotFoundError:
            # Missing executable behaves like a shell's "command not found".
            return CommandResult(
                argv=parsed_argv,
                cwd=resolved_cwd,
                returncode=127,
                stdout="",
                stderr=f"{parsed_argv[0]}: command not found",
                timed_out=False,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )

        return CommandResult(
            argv=parsed_argv,
            cwd=resolved_cwd,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            timed_out=False,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _resolve_cwd(self, cwd: Path | str) -> Path:
        path = Path(cwd).resolve(strict=True)
        if not path.is_dir():
            raise NotADirectoryError(f"{path!s} is not a directory")
        if not is_within(path, self._workspace_root):
            raise WorkspacePolicyError(
                f"working directory {path!s} is outside workspace root {self._workspace_root!s}"
            )
        return path

    def _build_environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        if self._inherit_host_env:
            merged = {
                key: value
                for key, value in os.environ.items()
                if not key.startswith(self._excluded_env_prefixes)
            }
        else:
            merged = {}
            host_path = os.environ.get("PATH")
            if host_path:
                merged["PATH"] = host_path
        if env is not None:
            merged.update(env)
        return merged


def _normalize_argv(argv: Sequence[str]) -> tuple[str, ...]:
    if not isinstance(argv, (list, tuple)):
        raise ValueError("argv must be a sequence of strings")
    normalized = tuple(argv)
    if not normalized or not normalized[0].strip():
        raise ValueError("argv must not be empty")
    return normalized


def _coerce_timeout_stream(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "CommandResult",
    "CommandRunner",
    "CommandRunnerError",
    "SubprocessCommandRunner",
    "WorkspacePolicyError",
]
