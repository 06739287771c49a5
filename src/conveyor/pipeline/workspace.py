"""Per-run workspace directories."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from conveyor.domain.ids import validate_run_id
from conveyor.utils.fs import safe_delete

logger = logging.getLogger(__name__)


class Workspace:
    """``<root>/<run_id>``; owned by exactly one run.

    ``cleanup`` is idempotent: only the first call removes anything and
    ``cleanup_count`` records how many times removal actually happened.
    """

    def __init__(self, root: Path | str, run_id: str) -> None:
        validate_run_id(run_id)
        self.root = Path(root)
        self.run_id = run_id
        self.path = self.root / run_id
        self.cleanup_count = 0
        self._lock = threading.Lock()
        self._cleaned = False

    @property
    def exists(self) -> bool:
        return self.path.is_dir()

    def create(self) -> Workspace:
        self.path.mkdir(parents=True, exist_ok=True)
        logger.debug("workspace created", extra={"workspace": str(self.path)})
        return self

    def cleanup(self) -> bool:
        with self._lock:
            if self._cleaned:
                return False
            self._cleaned = True
            if self.path.exists() or self.path.is_symlink():
                safe_delete(self.path, self.root)
            self.cleanup_count += 1
        logger.info("workspace cleaned", extra={"workspace": str(self.path)})
        return True


__all__ = ["Workspace"]
