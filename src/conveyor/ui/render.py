"""
conveyor — human-readable CLI output

File: src/conveyor/ui/render.py
Last updated: 2026-10-19

Purpose
- Print run summaries, effective config, and pending approvals as plain text.
- Color only run and stage states, and only on a terminal without
  ``NO_COLOR`` or ``--no-color``.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Sequence
from typing import Final, TextIO

_ANSI: Final[dict[str, str]] = {
    "succeeded": "\033[32m",
    "failed": "\033[31m",
    "skipped": "\033[2m",
}
_ANSI_RESET: Final[str] = "\033[0m"
_INDENT: Final[str] = "  "
_GAP: Final[str] = "  "


class CLIRenderer:
    """Writes to ``stream`` (stdout by default); output is stable for a given input."""

    def __init__(
        self, *, color: bool = False, verbose: bool = False, stream: TextIO | None = None
    ) -> None:
        self.verbose = verbose
        self.color = color
        self._stream = stream

    def _emit(self, lines: Iterable[str]) -> None:
        out = self._stream or sys.stdout
        for line in lines:
            out.write(line + "\n")

    def kv(self, key: str, value: object) -> None:
        self._emit([f"{key}: {value}"])

    def text(self, line: str) -> None:
        self._emit([line])

    def section(self, title: str) -> None:
        self._emit(["", title])

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        self._emit(f"{_INDENT}{prefix}{entry}" for entry in entries)

    def state(self, value: str) -> str:
        code = _ANSI.get(value) if self.color else None
        return value if code is None else f"{code}{value}{_ANSI_RESET}"

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns; cells past the header count are dropped."""
        if not rows:
            return
        grid = [[str(cell) for cell in headers]]
        grid += [_fit(row, len(headers)) for row in rows]
        widths = [max(len(line[column]) for line in grid) for column in range(len(headers))]

        if title:
            self.section(title)
        rule = [_GAP.join("-" * width for width in widths)]
        formatted = [_row_text(line, widths) for line in grid]
        self._emit(_INDENT + line for line in formatted[:1] + rule + formatted[1:])

    def next_steps(self, commands: Sequence[str]) -> None:
        if commands:
            self.section("Next steps:")
            self._emit(f"{_INDENT}$ {command}" for command in commands)


def _fit(row: Sequence[object], width: int) -> list[str]:
    cells = [str(cell) for cell in row[:width]]
    return cells + [""] * (width - len(cells))


def _row_text(cells: Sequence[str], widths: Sequence[int]) -> str:
    return _GAP.join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()


def _wants_color(no_color: bool, stream: TextIO) -> bool:
    if no_color or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(color=_wants_color(no_color, sys.stdout), verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
