"""
conveyor — status reporting

File: src/conveyor/reporting/status.py
Last updated: 2026-10-19

Purpose
- Turn stage transitions into ordered ``StatusEvent`` records and deliver
  them to a ``StatusSink``.

Functional requirements
- Events are delivered synchronously in emission order with strictly
  increasing sequence numbers.
- Delivery is retried a bounded number of times; a final failure is logged
  and never aborts the pipeline.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

from conveyor.domain.errors import StatusDeliveryFailed
from conveyor.domain.events import StatusEvent, StatusState

logger = logging.getLogger(__name__)


class StatusSink(Protocol):
    def deliver(self, event: StatusEvent) -> None:
        """Deliver one event; raise ``StatusDeliveryFailed`` on failure."""
        ...


class LoggingStatusSink:
    """Writes each status event to the ``conveyor`` log."""

    def deliver(self, event: StatusEvent) -> None:
        logger.info(
            "status %s %s",
            event.stage,
            event.state.value,
            extra={"status_event": event.to_dict()},
        )


class StatusReporter:
    """Single-producer reporter owned by one run."""

    def __init__(
        self,
        sink: StatusSink,
        *,
        retries: int = 2,
        retry_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self._sink = sink
        self._retries = retries
        self._retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._lock = threading.Lock()
        self._sequence = 0
        self.events: list[StatusEvent] = []
        self.undelivered: list[StatusEvent] = []

    def report(
        self,
        run_id: str,
        stage: str,
        state: StatusState,
        description: str = "",
    ) -> StatusEvent:
        with self._lock:
            self._sequence += 1
            event = StatusEvent(
                run_id=run_id,
                stage=stage,
                state=state,
                description=description,
                sequence=self._sequence,
            )
            self.events.append(event)
            self._deliver(event)
        return event

    def _deliver(self, event: StatusEvent) -> None:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._sink.deliver(event)
                return
            except StatusDeliveryFailed as exc:
                logger.warning(
                    "status delivery failed (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    exc,
                    extra={"status_stage": event.stage, "status_state": event.state.value},
                )
            except Exception:
                logger.exception(
                    "status sink raised unexpectedly (attempt %d/%d)",
                    attempt,
                    attempts,
                    extra={"status_stage": event.stage, "status_state": event.state.value},
                )
            if attempt < attempts and self._retry_delay_seconds > 0:
                self._sleep(self._retry_delay_seconds * attempt)

        self.undelivered.append(event)
        logger.error(
            "status event dropped after %d attempts",
            attempts,
            extra={"status_event": event.to_dict()},
        )


__all__ = ["LoggingStatusSink", "StatusReporter", "StatusSink"]
