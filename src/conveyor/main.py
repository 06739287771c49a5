"""Process entrypoint: runs the CLI router and turns whatever escapes it into an exit code."""

from __future__ import annotations

import sys
import traceback
from collections.abc import Iterator, Sequence
from enum import IntEnum
from typing import Final

from conveyor.config.loader import ConfigLoadError
from conveyor.config.schema import ConfigValidationError
from conveyor.domain.errors import InvalidParameter
from conveyor.pipeline.loader import PipelineDefinitionError


class ExitCode(IntEnum):
    SUCCESS = 0
    PIPELINE_FAILED = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4


# Problems the operator fixes in config, parameters, or the filesystem.
_OPERATOR_ERRORS: Final[tuple[type[BaseException], ...]] = (
    ConfigLoadError,
    ConfigValidationError,
    InvalidParameter,
    PipelineDefinitionError,
    FileNotFoundError,
    NotADirectoryError,
    PermissionError,
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m conveyor`` and the console script."""

    from conveyor.ui.cli import run_cli

    try:
        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.INTERNAL_ERROR)
    except Exception as exc:
        if any(isinstance(link, _OPERATOR_ERRORS) for link in _causes(exc)):
            _write_stderr(str(exc).strip() or type(exc).__name__)
            return int(ExitCode.CONFIG_ERROR)
        traceback.print_exception(exc, file=sys.stderr)
        return int(ExitCode.INTERNAL_ERROR)


def _as_exit_code(code: object) -> int:
    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int) and code in {int(member) for member in ExitCode}:
        return code
    # argparse and ``sys.exit("message")`` land here with a message instead of a code.
    if isinstance(code, str) and code.strip():
        _write_stderr(code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and the exceptions it was raised from, stopping on cycles."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )


def _write_stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint"]
