"""TaskTrack Database — SQLAlchemy base, tables and session management."""

from tasktrack.db.base import AuditMixin, Base, new_id  # noqa: F401
from tasktrack.db.models import (  # noqa: F401
    AttachmentRow,
    CommentRow,
    TaskAssigneeRow,
    TaskRow,
    UserRow,
)
from tasktrack.db.session import Database  # noqa: F401
