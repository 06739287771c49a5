"""Module entrypoint for ``python -m conveyor``."""

from __future__ import annotations

from conveyor.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
