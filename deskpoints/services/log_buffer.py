"""
deskpoints.services.log_buffer — In-memory log tail for the admin endpoint
===========================================================================

A bounded, thread-safe buffer of recent log records, fed by a
:class:`logging.Handler` on the root logger.  ``GET /api/admin/logs``
reads it; ``PUT /api/admin/logs/level`` changes what gets captured.
Nothing is persisted: a restart starts with an empty buffer.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_buffer: LogBuffer | None = None
_lock = threading.Lock()


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: str
    level: str
    logger: str
    message: str


class LogBuffer:
    """Ring buffer of :class:`LogEntry` backed by :class:`collections.deque`."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def tail(
        self,
        count: int = 200,
        min_level: str | None = None,
        logger_prefix: str | None = None,
    ) -> list[dict[str, str]]:
        """Newest *count* entries at or above *min_level* under *logger_prefix*."""
        threshold = logging.getLevelName(min_level.upper()) if min_level else 0
        if not isinstance(threshold, int):
            threshold = 0

        with self._lock:
            snapshot = list(self._entries)

        matched = [
            asdict(e) for e in snapshot
            if logging.getLevelName(e.level) >= threshold
            and (not logger_prefix or e.logger.startswith(logger_prefix))
        ]
        return matched[-count:] if count else matched

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BufferHandler(logging.Handler):
    """Copies each record into a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
            ))
        except Exception:
            self.handleError(record)


def get_buffer() -> LogBuffer:
    """Return (or create) the process-global buffer."""
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def _installed() -> BufferHandler | None:
    for handler in logging.getLogger().handlers:
        if isinstance(handler, BufferHandler):
            return handler
    return None


def install_handler(level: int = logging.INFO) -> BufferHandler:
    """Attach the buffer handler to the root logger (once).

    Uvicorn's loggers are switched to propagate so their records reach it.
    """
    handler = _installed()
    if handler is None:
        handler = BufferHandler(get_buffer(), level=level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(handler)
    root = logging.getLogger()
    if root.level > level or root.level == logging.NOTSET:
        root.setLevel(level)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).propagate = True
    return handler


def get_logs(
    tail: int = 200,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, str]]:
    return get_buffer().tail(count=tail, min_level=level, logger_prefix=logger_filter)


def get_current_level() -> str:
    handler = _installed()
    if handler is not None:
        return logging.getLevelName(handler.level)
    return logging.getLevelName(logging.getLogger().level)


def set_capture_level(level_name: str) -> str:
    """Change the captured minimum level; installs the handler if needed."""
    level_name = level_name.upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")
    numeric = logging.getLevelName(level_name)
    handler = install_handler(level=numeric)
    handler.setLevel(numeric)
    return level_name
