"""TaskTrack Engine — Errors, configuration, identity and structured logging."""

from tasktrack.engine.context import Identity  # noqa: F401
from tasktrack.engine.errors import (  # noqa: F401
    ForbiddenError,
    NotFoundError,
    StorageError,
    TaskTrackError,
    ValidationError,
)

__all__ = [
    "Identity",
    "TaskTrackError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "StorageError",
]
