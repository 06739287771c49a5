"""Per-run structured logging with JSON-lines output and secret masking.

``structlog`` loggers are routed into the same stdlib pipeline while a run is
active, so their key-value events land in the run log masked like any record.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

from conveyor.security.redaction import SecretMasker, redact_structure, redact_text

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
TextMasker = Callable[[str], str]

DEFAULT_LOGGER_NAME: Final[str] = "conveyor"
DEFAULT_LOG_FILENAME: Final[str] = "pipeline.jsonl"
_DEFAULT_QUEUE_SIZE: Final[int] = 4096

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "stage", "step")

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
        "correlation",
    }
)

_CorrelationState = tuple[tuple[str, str], ...]
_CORRELATION_CONTEXT: contextvars.ContextVar[_CorrelationState] = contextvars.ContextVar(
    "conveyor_log_correlation", default=()
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for one run's queue-backed structured logging."""

    run_id: str
    base_log_dir: Path | str = Path(".conveyor/logs")
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_to_stdout: bool = True
    log_filename: str = DEFAULT_LOG_FILENAME
    redact_secrets: bool = True
    queue_size: int = _DEFAULT_QUEUE_SIZE


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that snapshots correlation context and masks on the producer thread.

    A credential scope can close before the listener thread formats the
    record, so in-scope secrets are masked here while they are still registered.
    """

    def __init__(self, log_queue: queue.Queue[logging.LogRecord], *, mask: TextMasker) -> None:
        super().__init__(log_queue)
        self._mask = mask

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        context = get_correlation_context()
        if context:
            record.correlation = context
        prepared = super().prepare(record)
        if isinstance(prepared.msg, str):
            prepared.msg = self._mask(prepared.msg)
            prepared.message = prepared.msg
        for key, value in _extract_extra_fields(prepared).items():
            setattr(prepared, key, _mask_json(value, self._mask))
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            # Logging must never block a stage; the record is dropped.
            pass


class JsonLineFormatter(logging.Formatter):
    """Formatter that emits one canonical JSON object per record."""

    def __init__(self, *, mask: TextMasker, base_context: Mapping[str, str]) -> None:
        super().__init__()
        self._mask = mask
        self._base_context = dict(base_context)

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": self._mask(record.getMessage()),
        }

        correlation = dict(self._base_context)
        user_context = getattr(record, "correlation", None)
        if isinstance(user_context, Mapping):
            correlation.update(
                {str(key): str(value) for key, value in user_context.items() if value}
            )
        for key in _CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                correlation[key] = value.strip()
        for key, value in sorted(correlation.items()):
            event[key] = value

        extras = _extract_extra_fields(record)
        if extras:
            event["fields"] = _mask_json(extras, self._mask)

        if record.exc_info is not None:
            event["exception"] = self._mask(self.formatException(record.exc_info))

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class RunLoggingHandle:
    """Active logging setup for a single run; call ``shutdown`` when the run ends."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: logging.Handler,
        sink_handlers: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
        restore_propagate: bool = True,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._sink_handlers = sink_handlers
        self._listener = listener
        self._restore_propagate = restore_propagate
        self._lock = threading.Lock()
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def shutdown(self) -> None:
        with self._lock:
            if self._is_shutdown:
                return
            # QueueListener.stop drains everything already enqueued.
            self._listener.stop()
            structlog.reset_defaults()
            self.logger.removeHandler(self._queue_handler)
            self.logger.propagate = self._restore_propagate
            self._queue_handler.close()
            for handler in self._sink_handlers:
                handler.flush()
                handler.close()
            self._is_shutdown = True


def setup_run_logging(
    config: LoggingConfig,
    *,
    masker: SecretMasker | None = None,
) -> RunLoggingHandle:
    """Configure JSON-lines logging into ``<base_log_dir>/<run_id>/<log_filename>``."""

    run_id = config.run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    if Path(config.log_filename).name != config.log_filename:
        raise ValueError("log_filename must not include path separators")

    level = _parse_log_level(config.level)
    run_log_dir = Path(config.base_log_dir) / run_id
    run_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_log_dir / config.log_filename

    mask = _build_mask(masker, redact_secrets=config.redact_secrets)
    formatter = JsonLineFormatter(mask=mask, base_context={"run_id": run_id})

    sink_handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sink_handlers.append(logging.StreamHandler())
    for handler in sink_handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    previous_propagate = logger.propagate
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue, mask=mask)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        log_queue, *sink_handlers, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)
    _route_structlog_to_stdlib()

    return RunLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        sink_handlers=tuple(sink_handlers),
        listener=listener,
        restore_propagate=previous_propagate,
    )


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION_CONTEXT.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``run_id``, ``stage``, ...) for log records."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = value
    token = _CORRELATION_CONTEXT.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION_CONTEXT.reset(token)


def _route_structlog_to_stdlib() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _build_mask(masker: SecretMasker | None, *, redact_secrets: bool) -> TextMasker:
    if masker is not None:
        # In-scope credentials are always masked, even with redaction disabled.
        if redact_secrets:
            return masker.mask
        return masker.mask_literals
    if redact_secrets:
        return redact_text
    return _identity


def _identity(text: str) -> str:
    return text


def _mask_json(value: JSONValue, mask: TextMasker) -> JSONValue:
    redacted = redact_structure(value)
    return _apply_mask(_normalize_json_value(redacted), mask)


def _apply_mask(value: JSONValue, mask: TextMasker) -> JSONValue:
    if isinstance(value, str):
        return mask(value)
    if isinstance(value, list):
        return [_apply_mask(item, mask) for item in value]
    if isinstance(value, dict):
        return {key: _apply_mask(item, mask) for key, item in value.items()}
    return value


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    fields: dict[str, JSONValue] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_LOG_RECORD_FIELDS or key in _CORRELATION_KEYS:
            continue
        if key.startswith("_"):
            continue
        fields[key] = _normalize_json_value(value)
    return fields


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize_json_value(item) for item in value]
    return repr(value)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _iso8601z(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "JsonLineFormatter",
    "LoggingConfig",
    "RunLoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "setup_run_logging",
]
