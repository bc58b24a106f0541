"""
TaskTrack Services — the public API of the core.

    TaskService        — create / get_one / list / update / delete
    CommentService     — comments on tasks
    AttachmentService  — files on tasks (BlobStore-backed)
    StatsService       — status / priority summary
"""

from tasktrack.services.attachments import AttachmentService  # noqa: F401
from tasktrack.services.comments import CommentService  # noqa: F401
from tasktrack.services.stats import StatsService  # noqa: F401
from tasktrack.services.tasks import TaskService  # noqa: F401

__all__ = ["TaskService", "CommentService", "AttachmentService", "StatsService"]
