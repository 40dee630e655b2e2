"""
Job log capture.

While a job runs, every record emitted under the ``feedsync`` logger is copied
into that run's buffer and later stored on the JobRun row. The active buffer
lives in a context variable, so concurrent runs (and the tasks and threads
they spawn) only see their own lines.
"""

import json
import logging
from collections import deque
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

MAX_LOG_ENTRIES = 500
MAX_DATA_CHARS = 1024

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}

_current_buffer: ContextVar["JobLogBuffer | None"] = ContextVar("job_log_buffer", default=None)


def sanitize_data(data: Any) -> Any:
    """JSON-safe copy of structured log data, truncated to MAX_DATA_CHARS."""
    try:
        encoded = json.dumps(data, default=str)
    except (TypeError, ValueError):
        return {"_error": "Could not serialize data"}
    if len(encoded) > MAX_DATA_CHARS:
        return {"_truncated": True, "preview": encoded[:MAX_DATA_CHARS]}
    return json.loads(encoded)


class JobLogBuffer:
    """Bounded list of log entries for one run. The oldest entries are dropped first."""

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)

    def add(self, level: str, message: str, data: Any = None, timestamp: datetime | None = None):
        entry: dict[str, Any] = {
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
            "level": level,
            "message": message,
        }
        if data is not None:
            entry["data"] = sanitize_data(data)
        self._entries.append(entry)

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def activate(self):
        """Make this the buffer for the current context. Returns a reset token."""
        return _current_buffer.set(self)

    @staticmethod
    def deactivate(token):
        _current_buffer.reset(token)


class JobLogHandler(logging.Handler):
    """Routes records into whichever JobLogBuffer is active in the caller's context."""

    def emit(self, record: logging.LogRecord):
        buffer = _current_buffer.get()
        if buffer is None:
            return
        try:
            data = getattr(record, "data", None)
            if record.exc_info and record.exc_info[1] is not None:
                exc = record.exc_info[1]
                data = dict(data or {}, exception=f"{type(exc).__name__}: {exc}")
            buffer.add(
                _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
                record.getMessage(),
                data,
                datetime.fromtimestamp(record.created, timezone.utc),
            )
        except Exception:
            self.handleError(record)


_handler: JobLogHandler | None = None


def install_handler(logger_name: str = "feedsync") -> JobLogHandler:
    """
    Attach the capture handler to the package logger once.

    The logger must pass INFO records for job logs to be useful, so an unset
    or stricter level is lowered to INFO.
    """
    global _handler
    package_logger = logging.getLogger(logger_name)
    if _handler is None:
        _handler = JobLogHandler(level=logging.DEBUG)
    if _handler not in package_logger.handlers:
        package_logger.addHandler(_handler)
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return _handler
