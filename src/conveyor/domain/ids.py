"""Build number allocation and run identifier validation."""

from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Final

from conveyor.utils.fs import atomic_write

BUILD_NUMBER_FILENAME: Final[str] = "next-build-number"

_RUN_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_STAGE_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
_ALLOCATION_LOCK = threading.Lock()

__all__ = [
    "BUILD_NUMBER_FILENAME",
    "allocate_build_number",
    "validate_build_number",
    "validate_run_id",
    "validate_stage_name",
]


def validate_run_id(run_id: str) -> None:
    """Validate a run identifier usable as a directory name and log correlation key."""
    if not isinstance(run_id, str):
        raise ValueError(f"run_id must be a string, got {type(run_id).__name__}")
    if not _RUN_ID_RE.fullmatch(run_id):
        raise ValueError(
            f"run_id must be 1-128 characters of [A-Za-z0-9._-] starting alphanumeric (got {run_id!r})"
        )


def validate_stage_name(stage: str) -> None:
    """Stage names double as approval marker file names and status contexts."""
    if not _STAGE_NAME_RE.fullmatch(stage):
        raise ValueError(
            f"stage name must be 1-64 characters of [A-Za-z0-9._-] starting alphanumeric (got {stage!r})"
        )


def validate_build_number(build_number: int) -> None:
    if isinstance(build_number, bool) or not isinstance(build_number, int):
        raise ValueError(f"build_number must be an integer, got {type(build_number).__name__}")
    if build_number <= 0:
        raise ValueError("build_number must be > 0")


def allocate_build_number(state_dir: str | Path) -> int:
    """Return the next build number for ``state_dir`` and persist the increment.

    The counter file holds the number the *next* allocation will return, so the
    first build in a fresh state directory is build 1.
    """
    root = Path(state_dir)
    root.mkdir(parents=True, exist_ok=True)
    counter_path = root / BUILD_NUMBER_FILENAME

    with _ALLOCATION_LOCK:
        current = _read_counter(counter_path)
        atomic_write(counter_path, f"{current + 1}\n")
    return current


def _read_counter(path: Path) -> int:
    if not path.exists():
        return 1
    raw = path.read_text(encoding="utf-8").strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"corrupt build number file {path}: {raw!r}") from exc
    validate_build_number(value)
    return value
