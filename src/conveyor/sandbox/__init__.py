"""Local subprocess execution for pipeline commands."""

from conveyor.sandbox.command_runner import (
    CommandResult,
    CommandRunner,
    CommandRunnerError,
    SubprocessCommandRunner,
    WorkspacePolicyError,
)

__all__ = [
    "CommandResult",
    "CommandRunner",
    "CommandRunnerError",
    "SubprocessCommandRunner",
    "WorkspacePolicyError",
]
