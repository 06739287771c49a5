"""Status event definitions and serialization."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from conveyor.domain.models import JSONValue


class StatusState(StrEnum):
    """Stage transition states reported to status sinks."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """One stage transition for one run.

    ``sequence`` is assigned by the reporter and increases strictly in
    emission order within a run.
    """

    run_id: str
    stage: str
    state: StatusState
    description: str = ""
    sequence: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        if not self.run_id.strip():
            raise ValueError("StatusEvent.run_id must not be empty")
        if not self.stage.strip():
            raise ValueError("StatusEvent.stage must not be empty")
        object.__setattr__(self, "state", StatusState(self.state))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "stage": self.stage,
            "state": self.state.value,
            "description": self.description,
            "sequence": self.sequence,
            "timestamp": self.timestamp.astimezone(UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = ["StatusEvent", "StatusState"]
