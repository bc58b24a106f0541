"""
TaskTrack Logging — Structured JSON-lines event log at the service boundary.

Implements:
- LogEntry: one structured event destined for a category file
- FileLogger: per-category log files with daily rotation
- Entry builders for task queries, record operations, security denials
  and system events
- Module-level ``log()`` that mirrors every entry to the stdlib logger and,
  once ``init_logging()`` has run, appends it to the JSONL file

Layout: {log_dir}/{category}/{YYYY-MM-DD}.jsonl
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("tasktrack.engine.logging")

CATEGORIES = ("queries", "records", "security", "system")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class LogEntry:
    """A structured log entry destined for a specific category file."""

    __slots__ = ("category", "data")

    def __init__(self, category: str, data: Dict[str, Any]):
        if category not in CATEGORIES:
            raise ValueError(f"Unknown log category '{category}'. Valid: {CATEGORIES}")
        self.category = category
        self.data = data

    @property
    def level(self) -> str:
        return self.data.get("level", "INFO")

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-category files.
    Files rotate daily: logs/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for cat in CATEGORIES:
            (self._log_dir / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        file_path = self._resolve_path(entry.category)
        with self._file_locks[str(file_path)]:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(entry.to_json())
                f.write("\n")

    def _resolve_path(self, category: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._log_dir / category / f"{day.isoformat()}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        category: str,
        *,
        days: int = 7,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read back entries of one category from the last ``days`` days.

        Only entries whose top-level keys equal every item in ``filters``
        are returned, oldest first.
        """
        results: List[Dict[str, Any]] = []
        today = date.today()
        for offset in range(days - 1, -1, -1):
            path = self._resolve_path(category, today - timedelta(days=offset))
            if not path.exists():
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            continue
                        if filters and not all(data.get(k) == v for k, v in filters.items()):
                            continue
                        results.append(data)
            except OSError as exc:
                logger.warning("Could not read log file %s: %s", path, exc)
        return results[-limit:]


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if execution_id:
        entry["execution_id"] = execution_id
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update(extra)
    return entry


def log_task_query(
    user_id: str,
    username: str,
    filters: Dict[str, Any],
    result_count: int,
    total_count: int,
    execution_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
) -> LogEntry:
    """Build a task list/search log entry."""
    data = _base_entry(
        event="tasks_listed",
        level="INFO",
        execution_id=execution_id,
        user_id=user_id,
        username=username,
        filters=filters,
        result_count=result_count,
        total_count=total_count,
    )
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    return LogEntry("queries", data)


def log_record_operation(
    operation: str,
    record_type: str,
    record_id: Any,
    user_id: Any,
    execution_id: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
    **extra: Any,
) -> LogEntry:
    """Build a record create/update/delete log entry."""
    data = _base_entry(
        event=f"{record_type}_{operation}",
        level="INFO",
        execution_id=execution_id,
        user_id=user_id,
        operation=operation,
        record_type=record_type,
        record_id=record_id,
        **extra,
    )
    if fields_changed:
        data["fields_changed"] = fields_changed
    return LogEntry("records", data)


def log_security_event(
    event: str,
    record_type: str,
    record_id: Any,
    permission_needed: str,
    user_id: Any,
    username: Optional[str] = None,
    execution_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event log entry (access denied)."""
    data = _base_entry(
        event=event,
        level=level,
        execution_id=execution_id,
        user_id=user_id,
        record_type=record_type,
        record_id=record_id,
        permission_needed=permission_needed,
    )
    if username:
        data["username"] = username
    return LogEntry("security", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (init, storage failures, rollbacks)."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", data)


# ---------------------------------------------------------------------------
# Global File Logger
# ---------------------------------------------------------------------------

_file_logger: Optional[FileLogger] = None


def init_logging(log_dir: str = "logs", level: str = "INFO") -> FileLogger:
    """Initialize the global structured file logger and the package log level."""
    global _file_logger
    _file_logger = FileLogger(log_dir=log_dir)
    logging.getLogger("tasktrack").setLevel(_LEVELS.get(level.upper(), logging.INFO))
    return _file_logger


def get_file_logger() -> Optional[FileLogger]:
    """Get the global structured file logger."""
    return _file_logger


def log(entry: LogEntry) -> bool:
    """
    Emit a structured entry.

    Always mirrored to the ``tasktrack.events.<category>`` stdlib logger.
    Returns True if the entry was also written to the JSONL file.
    """
    logging.getLogger(f"tasktrack.events.{entry.category}").log(
        _LEVELS.get(entry.level, logging.INFO), entry.to_json()
    )
    if _file_logger is None:
        return False
    try:
        _file_logger.write(entry)
        return True
    except OSError as e:
        logger.error(f"Structured log write failed: {e}")
        return False


def shutdown_logging() -> None:
    """Detach the global file logger."""
    global _file_logger
    _file_logger = None
