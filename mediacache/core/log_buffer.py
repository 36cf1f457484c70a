"""
Console logging setup plus an in-memory ring of recent records for the
operator log endpoint.

Fill records carry ``outcome``, ``asset`` and ``cache_key`` through
``extra=``; the ring keeps them as fields so operators can follow one
asset or one outcome without grepping messages.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Tuple

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

FILL_LOGGER_PREFIX = "mediacache.services"
RECORD_FIELDS = ("outcome", "asset", "cache_key")
LOG_SCOPES = ("all", "fill", "errors")

# Loggers that never propagate to root but still belong in the ring
_UVICORN_LOGGERS = ("uvicorn",)
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "PIL")

Entry = Dict[str, object]


class LogRing:
    """Bounded, id-numbered record store shared by every request thread."""

    def __init__(self, capacity: int = 2000):
        self._entries: Deque[Entry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._next_id = 1

    def add(self, record: logging.LogRecord, message: str) -> None:
        entry: Entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "levelno": record.levelno,
            "logger": record.name,
            "message": message,
        }
        for field in RECORD_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        with self._lock:
            entry["id"] = self._next_id
            self._next_id += 1
            self._entries.append(entry)

    def snapshot(self) -> Tuple[List[Entry], Optional[int]]:
        with self._lock:
            entries = list(self._entries)
            newest = self._next_id - 1 if entries else None
        return entries, newest

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._next_id = 1


ring = LogRing()


class RingHandler(logging.Handler):
    def __init__(self, target: LogRing):
        super().__init__(level=logging.INFO)
        self.target = target

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if record.exc_info:
                if not record.exc_text:
                    record.exc_text = logging.Formatter().formatException(record.exc_info)
                message = f"{message}\n{record.exc_text}"
            self.target.add(record, message)
        except Exception:
            self.handleError(record)


_handler: Optional[RingHandler] = None


def configure_logging(level: str = "INFO") -> None:
    """Set the root level and a console handler unless one is configured."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(console)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def install_log_buffer() -> None:
    """Attach the ring handler once. Fill loggers are raised to INFO."""
    global _handler
    if _handler is not None:
        return
    _handler = RingHandler(ring)
    for name in ("",) + _UVICORN_LOGGERS:
        target = logging.getLogger(name)
        if _handler not in target.handlers:
            target.addHandler(_handler)
    fill_logger = logging.getLogger(FILL_LOGGER_PREFIX)
    if fill_logger.getEffectiveLevel() > logging.INFO:
        fill_logger.setLevel(logging.INFO)


def _in_scope(entry: Entry, scope: str, outcome: Optional[str], asset: Optional[str]) -> bool:
    if outcome is not None and entry.get("outcome") != outcome:
        return False
    if asset is not None and entry.get("asset") != asset:
        return False
    if scope == "fill":
        return "outcome" in entry or str(entry["logger"]).startswith(FILL_LOGGER_PREFIX)
    if scope == "errors":
        return int(entry["levelno"]) >= logging.WARNING
    return True


def get_log_entries(
    since_id: Optional[int] = None,
    limit: int = 200,
    scope: str = "all",
    *,
    outcome: Optional[str] = None,
    asset: Optional[str] = None,
) -> Tuple[List[Entry], Optional[int]]:
    """Newest ``limit`` entries after ``since_id`` matching the filters.

    The returned id is the newest id in the ring, so pollers advance
    past records filtered out of this page.
    """
    if scope not in LOG_SCOPES:
        raise ValueError(f"unknown log scope {scope!r}")
    entries, newest = ring.snapshot()
    items = [
        entry for entry in entries
        if (since_id is None or int(entry["id"]) > since_id)
        and _in_scope(entry, scope, outcome, asset)
    ]
    if limit and len(items) > limit:
        items = items[-limit:]
    return items, newest


def clear_log_entries() -> None:
    ring.clear()
