"""
TaskTrack Models — SQLAlchemy tables for the task store.

Tables:
1. users           — Creator directory (id + username), fed from identities
2. tasks           — Task records; creator_id is a plain column so a task
                     survives the deletion of its creator's user row
3. task_assignees  — Ordered username list per task (assigned_to)
4. comments        — Task comments, keyed by task + author
5. attachments     — File metadata; bytes live in the BlobStore
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tasktrack.db.base import AuditMixin, Base, UTCDateTime, new_id, utcnow


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(100), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UserRow(id='{self.id}', username='{self.username}')>"


# ---------------------------------------------------------------------------
# 2. Tasks
# ---------------------------------------------------------------------------

class TaskRow(Base, AuditMixin):
    __tablename__ = "tasks"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="todo", nullable=False, index=True)
    priority = Column(String(10), default="medium", nullable=False, index=True)
    due_date = Column(Date, nullable=True)
    tags = Column(JSON, default=list, nullable=False)
    creator_id = Column(String(64), nullable=False, index=True)

    assignees = relationship(
        "TaskAssigneeRow",
        order_by="TaskAssigneeRow.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('todo', 'in-progress', 'completed')",
            name="ck_tasks_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ck_tasks_priority",
        ),
        CheckConstraint("length(title) > 0", name="ck_tasks_title_not_empty"),
    )

    @property
    def assigned_to(self) -> list:
        return [a.username for a in self.assignees]

    def __repr__(self) -> str:
        return f"<TaskRow(id='{self.id}', title='{self.title}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 3. Task assignees
# ---------------------------------------------------------------------------

class TaskAssigneeRow(Base):
    __tablename__ = "task_assignees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    username = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("task_id", "username", name="uq_task_assignee"),
        Index("idx_ta_username", "username"),
        Index("idx_ta_task_id", "task_id"),
    )


# ---------------------------------------------------------------------------
# 4. Comments
# ---------------------------------------------------------------------------

class CommentRow(Base, AuditMixin):
    __tablename__ = "comments"

    id = Column(String(32), primary_key=True, default=new_id)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<CommentRow(id='{self.id}', task_id='{self.task_id}')>"


# ---------------------------------------------------------------------------
# 5. Attachments
# ---------------------------------------------------------------------------

class AttachmentRow(Base):
    __tablename__ = "attachments"

    id = Column(String(32), primary_key=True, default=new_id)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    uploader_id = Column(String(64), nullable=False, index=True)
    original_name = Column(String(255), nullable=False)
    storage_key = Column(String(500), nullable=False)
    content_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AttachmentRow(id='{self.id}', name='{self.original_name}')>"
