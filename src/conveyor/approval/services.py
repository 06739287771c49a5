"""Approval services: in-process events, marker files, and auto-approval."""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from conveyor.approval.gate import ApprovalDecision, ApprovalOutcome, ApprovalRequest
from conveyor.domain.ids import validate_run_id, validate_stage_name
from conveyor.utils.fs import atomic_write

PENDING_SUFFIX: Final[str] = ".pending"
APPROVED_SUFFIX: Final[str] = ".approved"
REJECTED_SUFFIX: Final[str] = ".rejected"

# Finished waits remembered so late decisions for them are dropped.
_FINISHED_MEMORY: Final[int] = 1024


class EventApprovalService:
    """In-process approvals driven by ``approve``/``reject`` calls from another thread.

    A decision may be recorded before the run starts waiting; it is consumed
    by the next ``wait`` for the same run and stage. A decision arriving after
    that wait has ended is dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[tuple[str, str], _Slot] = {}
        self._finished: OrderedDict[tuple[str, str], None] = OrderedDict()

    def approve(self, run_id: str, stage: str, approver: str | None = None) -> None:
        self._decide((run_id, stage), ApprovalDecision(ApprovalOutcome.APPROVED, approver))

    def reject(self, run_id: str, stage: str, approver: str | None = None) -> None:
        self._decide((run_id, stage), ApprovalDecision(ApprovalOutcome.REJECTED, approver))

    def is_waiting(self, run_id: str, stage: str) -> bool:
        with self._lock:
            slot = self._slots.get((run_id, stage))
            return slot is not None and slot.waiting

    @property
    def open_requests(self) -> int:
        """Slots held for a waiter or for a decision recorded ahead of its wait."""
        with self._lock:
            return len(self._slots)

    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision:
        key = (request.run_id, request.stage)
        with self._lock:
            self._finished.pop(key, None)
            slot = self._slots.setdefault(key, _Slot())
            slot.waiting = True
        try:
            if slot.event.wait(timeout_seconds) and slot.decision is not None:
                return slot.decision
            return ApprovalDecision(ApprovalOutcome.TIMED_OUT)
        finally:
            with self._lock:
                slot.waiting = False
                self._slots.pop(key, None)
                self._finished[key] = None
                if len(self._finished) > _FINISHED_MEMORY:
                    self._finished.popitem(last=False)

    def _decide(self, key: tuple[str, str], decision: ApprovalDecision) -> None:
        with self._lock:
            if key in self._finished:
                return
            self._slots.setdefault(key, _Slot()).decide(decision)


class _Slot:
    __slots__ = ("decision", "event", "waiting")

    def __init__(self) -> None:
        self.event = threading.Event()
        self.decision: ApprovalDecision | None = None
        self.waiting = False

    def decide(self, decision: ApprovalDecision) -> None:
        if self.event.is_set():
            return
        self.decision = decision
        self.event.set()


class FileApprovalService:
    """Poll ``<approvals_dir>/<run_id>/<stage>.approved|.rejected`` marker files.

    While waiting, a ``<stage>.pending`` marker describes the request so an
    operator can find it; it is removed once the wait ends.
    """

    def __init__(
        self,
        approvals_dir: Path | str,
        *,
        poll_interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self._approvals_dir = Path(approvals_dir)
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._clock = clock
        self._sleep = sleep

    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision:
        run_dir = marker_dir(self._approvals_dir, request.run_id)
        run_dir.mkdir(parents=True, exist_ok=True)
        stem = _stage_stem(request.stage)
        pending = run_dir / f"{stem}{PENDING_SUFFIX}"
        atomic_write(
            pending,
            json.dumps(
                {"run_id": request.run_id, "stage": request.stage, "message": request.message},
                sort_keys=True,
            )
            + "\n",
        )

        deadline = self._clock() + timeout_seconds
        try:
            while True:
                decision = _read_decision(run_dir, stem)
                if decision is not None:
                    return decision
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return ApprovalDecision(ApprovalOutcome.TIMED_OUT)
                self._sleep(min(self._poll_interval_seconds, remaining))
        finally:
            pending.unlink(missing_ok=True)


class AutoApprovalService:
    """Approves every request immediately; for non-interactive environments."""

    def __init__(self, approver: str = "auto") -> None:
        self._approver = approver

    def wait(self, request: ApprovalRequest, timeout_seconds: float) -> ApprovalDecision:
        return ApprovalDecision(ApprovalOutcome.APPROVED, self._approver)


def marker_dir(approvals_dir: Path | str, run_id: str) -> Path:
    validate_run_id(run_id)
    return Path(approvals_dir) / run_id


def write_decision(
    approvals_dir: Path | str,
    run_id: str,
    stage: str,
    *,
    approved: bool,
    approver: str | None = None,
) -> Path:
    """Record an operator decision for a run's gated stage and return the marker path."""

    run_dir = marker_dir(approvals_dir, run_id)
    run_dir.mkdir(parents=True, exist_ok=True)
    suffix = APPROVED_SUFFIX if approved else REJECTED_SUFFIX
    marker = run_dir / f"{_stage_stem(stage)}{suffix}"
    payload = {
        "approver": approver,
        "decided_at": datetime.now(tz=UTC).isoformat().replace("+00:00", "Z"),
    }
    atomic_write(marker, json.dumps(payload, sort_keys=True) + "\n")
    return marker


def pending_requests(approvals_dir: Path | str) -> list[dict[str, str]]:
    """List requests currently waiting on a marker-file decision."""

    root = Path(approvals_dir)
    if not root.is_dir():
        return []
    out: list[dict[str, str]] = []
    for marker in sorted(root.glob(f"*/*{PENDING_SUFFIX}")):
        try:
            payload = json.loads(marker.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            continue
        if isinstance(payload, dict):
            out.append({str(key): str(value) for key, value in payload.items()})
    return out


def _read_decision(run_dir: Path, stem: str) -> ApprovalDecision | None:
    # Rejection wins if both markers exist.
    for suffix, outcome in (
        (REJECTED_SUFFIX, ApprovalOutcome.REJECTED),
        (APPROVED_SUFFIX, ApprovalOutcome.APPROVED),
    ):
        marker = run_dir / f"{stem}{suffix}"
        if marker.exists():
            return ApprovalDecision(outcome, _read_approver(marker))
    return None


def _read_approver(marker: Path) -> str | None:
    try:
        payload = json.loads(marker.read_text(encoding="utf-8") or "{}")
    except (OSError, json.JSONDecodeError):
        return None
    approver = payload.get("approver") if isinstance(payload, dict) else None
    return approver if isinstance(approver, str) and approver else None


def _stage_stem(stage: str) -> str:
    validate_stage_name(stage)
    return stage


__all__ = [
    "APPROVED_SUFFIX",
    "PENDING_SUFFIX",
    "REJECTED_SUFFIX",
    "AutoApprovalService",
    "EventApprovalService",
    "FileApprovalService",
    "marker_dir",
    "pending_requests",
    "write_decision",
]
