"""
TaskTrack Error Hierarchy — Structured exceptions crossing the core boundary.

Every error carries a ``kind`` and a human-readable message. Context is
limited to identifiers the caller already knows (task ids, user ids); the
underlying storage exception is chained via ``raise ... from exc`` but is
never serialized.

Hierarchy:
    TaskTrackError
    ├── ValidationError   — Missing/invalid field, bad query parameter
    ├── NotFoundError     — Referenced task/comment/attachment does not exist
    ├── ForbiddenError    — Identity lacks the required access
    └── StorageError      — Persistence or blob operation failed
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class TaskTrackError(Exception):
    """Base error for all TaskTrack core failures."""

    kind: str = "error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for callers and logs."""
        return {
            "kind": self.kind,
            "error_type": self.error_type,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": {k: str(v) for k, v in self.context.items()},
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.context:
            parts.extend(f"{k}={v}" for k, v in self.context.items())
        return " | ".join(parts)


class ValidationError(TaskTrackError):
    """
    Input validation failed (empty title, non-enum status, limit <= 0, ...).
    Includes field-level error details.
    """

    kind = "validation"

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None, **context: Any):
        self.validation_errors: List[Dict[str, Any]] = validation_errors or []
        super().__init__(message, **context)

    @classmethod
    def from_pydantic(cls, exc: Any, message: str = "Invalid input") -> "ValidationError":
        """Build from a ``pydantic.ValidationError``, keeping field paths and messages only."""
        details = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        summary = "; ".join(f"{d['field']}: {d['message']}" if d["field"] else d["message"] for d in details)
        return cls(f"{message}: {summary}" if summary else message, validation_errors=details)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class NotFoundError(TaskTrackError):
    """Referenced task, comment or attachment id does not exist."""

    kind = "not_found"

    def __init__(self, message: str, **context: Any):
        self.resource: Optional[str] = context.get("resource")
        self.resource_id: Optional[str] = context.get("resource_id")
        super().__init__(message, **context)


class ForbiddenError(TaskTrackError):
    """
    Access denied. Carries the user id and the permission that was needed
    ("view", "update", "delete", ...).
    """

    kind = "forbidden"

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[str] = context.get("user_id")
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["required_permission"] = self.required_permission
        return d


class StorageError(TaskTrackError):
    """Underlying persistence or blob operation failed."""

    kind = "storage"

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)
