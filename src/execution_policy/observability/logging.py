"""
execution-policy — session logging.

Purpose
- Write one JSON object per line to ``<base_log_dir>/<session_id>/execution.jsonl``
  without blocking the orchestrating coroutine on file I/O.
- Route structlog events from the control plane and runner into that sink.

What should be included in this file
- A ``QueueHandler`` on the session logger feeding a ``QueueListener`` that owns
  the file (optionally rotating) and stdout handlers.
- Correlation context (``session_id``, ``round``, ``strategy``, ``target``) held in a
  ``contextvars.ContextVar`` so concurrent target coroutines keep their own values.

Functional requirements
- Records are dropped and counted, never blocking, when the queue is full.
- Only one session pipeline is active at a time; a new setup retires the old one.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Final

import structlog

LOG_FILENAME: Final[str] = "execution.jsonl"
ROOT_LOGGER_NAME: Final[str] = "execution_policy"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("session_id", "round", "strategy", "target")

_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_EMPTY: Final[Mapping[str, str]] = MappingProxyType({})
_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "execution_policy_correlation", default=_EMPTY
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False
    rotating_file: bool = False
    max_bytes: int = 10_000_000
    backup_count: int = 5


class _SessionQueueHandler(logging.handlers.QueueHandler):
    """Snapshots correlation at emit time; counts instead of blocking on overflow."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.pending = log_queue
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = dict(_correlation.get())
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, session_id: str) -> None:
        super().__init__()
        self._session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, object] = {
            "timestamp": _utc_text(datetime.fromtimestamp(record.created, tz=UTC), "milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": self._session_id,
        }
        line.update(getattr(record, "correlation", None) or {})

        fields = {
            key: _finite(value)
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
        }
        if fields:
            line["fields"] = fields
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            line["stack"] = record.stack_info
        return json.dumps(line, sort_keys=True, separators=(",", ":"), default=_json_default)


class StructuredLoggingHandle:
    """Live pipeline for one session: queue handler, listener thread, sink handlers."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        log_path: Path,
        queue_handler: _SessionQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._closed = threading.Event()

    @property
    def session_log_dir(self) -> Path:
        return self.log_path.parent

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed.is_set()

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending = self._queue_handler.pending
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.005)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self.flush(timeout_seconds=timeout_seconds)
        self._listener.stop()
        self.logger.removeHandler(self._queue_handler)
        self._queue_handler.close()
        for sink in self._sinks:
            sink.close()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start the queue-backed pipeline for ``config.session_id``, retiring any active one."""

    session_id = _non_blank(config.session_id, "session_id")
    logger_name = _non_blank(config.logger_name, "logger_name")
    filename = _non_blank(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size < 1:
        raise ValueError("queue_size must be >= 1")
    level = _level_number(config.level)

    shutdown_logging()

    log_path = Path(config.base_log_dir) / session_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)
    sinks = _sink_handlers(config, log_path, level, _JsonLinesFormatter(session_id))

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    queue_handler = _SessionQueueHandler(queue.Queue(maxsize=config.queue_size))
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=sinks,
    )
    global _active
    with _active_lock:
        _active = handle
    return handle


def configure_structlog() -> None:
    """
    Send structlog events through the stdlib logger of the same name.

    Keyword arguments become record extras, which the JSON-lines sink emits
    under ``fields``.
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def flush_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    target = handle or get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0
) -> None:
    global _active
    with _active_lock:
        target = handle or _active
        if target is not None and target is _active:
            _active = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


def set_correlation_fields(
    **fields: str | int | None,
) -> contextvars.Token[Mapping[str, str]]:
    """Overlay correlation fields for the current context; ``None`` removes a key."""

    updated = dict(_correlation.get())
    for key, value in fields.items():
        if key not in CORRELATION_KEYS:
            raise ValueError(f"unknown correlation key {key!r}; expected one of {CORRELATION_KEYS}")
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = _non_blank(str(value), key)
    return _correlation.set(MappingProxyType(updated))


def reset_correlation_fields(token: contextvars.Token[Mapping[str, str]]) -> None:
    _correlation.reset(token)


@contextmanager
def correlation_scope(**fields: str | int | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        _correlation.reset(token)


def _sink_handlers(
    config: LoggingConfig,
    log_path: Path,
    level: int,
    formatter: logging.Formatter,
) -> tuple[logging.Handler, ...]:
    file_handler: logging.Handler
    if config.rotating_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max(config.max_bytes, 1),
            backupCount=max(config.backup_count, 1),
            encoding="utf-8",
        )
    else:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    handlers: list[logging.Handler] = [file_handler]
    if config.log_to_stdout:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return tuple(handlers)


def _non_blank(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _level_number(level: int | str) -> int:
    if isinstance(level, int) and not isinstance(level, bool):
        return level
    if isinstance(level, str):
        mapped = logging.getLevelNamesMapping().get(level.strip().upper())
        if mapped is not None:
            return mapped
    raise ValueError(f"unsupported logging level {level!r}")


def _utc_text(moment: datetime, timespec: str) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec=timespec).replace("+00:00", "Z")


def _finite(value: object) -> object:
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        return _utc_text(value, "microseconds")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if isinstance(value, (set, frozenset)):
        return sorted(map(str, value))
    return repr(value)


atexit.register(shutdown_logging)


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "ROOT_LOGGER_NAME",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
