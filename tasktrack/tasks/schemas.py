"""
TaskTrack Schemas — Pydantic models crossing the service boundary.

Input models (TaskCreate, TaskPatch, CommentCreate, UploadFile) validate
caller data; output models (Task, Comment, Attachment, TaskPage, TaskStats)
are what services return.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TITLE_MAX_LENGTH = 200
TAG_MAX_LENGTH = 50
COMMENT_MAX_LENGTH = 2000


class TaskStatus(str, Enum):
    """Task lifecycle status. Transitions between values are unconstrained."""
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _clean_title(v: str) -> str:
    if v is None:
        raise ValueError("Title is required")
    v = v.strip()
    if not v:
        raise ValueError("Title must not be empty")
    if len(v) > TITLE_MAX_LENGTH:
        raise ValueError(f"Title must be {TITLE_MAX_LENGTH} characters or fewer")
    return v


def _unique_labels(values: List[str], max_length: Optional[int] = None) -> List[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    seen = set()
    out: List[str] = []
    for raw in values:
        label = raw.strip()
        if not label or label in seen:
            continue
        if max_length is not None and len(label) > max_length:
            raise ValueError(f"'{label[:20]}...' exceeds {max_length} characters")
        seen.add(label)
        out.append(label)
    return out


def _reject_null(v, field_name: str):
    if v is None:
        raise ValueError(f"{field_name} may not be null")
    return v


# ---------------------------------------------------------------------------
# Task inputs
# ---------------------------------------------------------------------------

class TaskCreate(BaseModel):
    """Fields accepted by TaskService.create()."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(description="Task title")
    description: Optional[str] = Field(default=None)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: Optional[date] = Field(default=None)
    tags: List[str] = Field(default_factory=list, description="Display labels, order preserved")
    assigned_to: List[str] = Field(default_factory=list, description="Assignee usernames")

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v):
        if v is not None and not isinstance(v, str):
            raise ValueError("Title must be a string")
        return _clean_title(v)

    @field_validator("status", "priority", mode="before")
    @classmethod
    def default_on_null(cls, v, info):
        # Omitted and explicit null both mean "use the default"
        if v is None or v == "":
            return TaskStatus.TODO if info.field_name == "status" else TaskPriority.MEDIUM
        return v

    @field_validator("tags", "assigned_to", mode="before")
    @classmethod
    def empty_on_null(cls, v):
        return [] if v is None else v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _unique_labels(v, TAG_MAX_LENGTH)

    @field_validator("assigned_to")
    @classmethod
    def validate_assignees(cls, v: List[str]) -> List[str]:
        return _unique_labels(v)


class TaskPatch(BaseModel):
    """
    Partial update accepted by TaskService.update().

    Only fields present in the input are applied (``model_fields_set``).
    ``id``, ``creator`` and timestamps are not patchable.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    tags: Optional[List[str]] = None
    assigned_to: Optional[List[str]] = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v):
        if v is not None and not isinstance(v, str):
            raise ValueError("Title must be a string")
        return _clean_title(v)

    @field_validator("status", "priority", "tags", "assigned_to", mode="before")
    @classmethod
    def not_null(cls, v, info):
        return _reject_null(v, info.field_name)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _unique_labels(v, TAG_MAX_LENGTH) if v is not None else v

    @field_validator("assigned_to")
    @classmethod
    def validate_assignees(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _unique_labels(v) if v is not None else v

    def changes(self) -> Dict[str, object]:
        """Only the fields the caller actually sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

class Creator(BaseModel):
    """Populated creator/author reference; None on the owner when the user row is gone."""
    id: str
    username: str


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None
    tags: List[str] = Field(default_factory=list)
    assigned_to: List[str] = Field(default_factory=list)
    creator_id: str
    creator: Optional[Creator] = None
    created_at: datetime
    updated_at: datetime


class TaskPage(BaseModel):
    """One page of a task listing plus pagination metadata."""
    items: List[Task] = Field(default_factory=list)
    total_count: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total_pages: int = Field(ge=0)


class TaskStats(BaseModel):
    status_counts: Dict[str, int] = Field(default_factory=dict)
    priority_counts: Dict[str, int] = Field(default_factory=dict)
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0


# ---------------------------------------------------------------------------
# Comments & attachments
# ---------------------------------------------------------------------------

class CommentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(description="Comment body")

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Content is required")
        v = v.strip()
        if len(v) > COMMENT_MAX_LENGTH:
            raise ValueError(f"Content must be {COMMENT_MAX_LENGTH} characters or fewer")
        return v


class Comment(BaseModel):
    id: str
    task_id: str
    author_id: str
    author: Optional[Creator] = None
    content: str
    created_at: datetime
    updated_at: datetime


class UploadFile(BaseModel):
    """One file handed to AttachmentService.upload()."""
    filename: str = Field(min_length=1, max_length=255)
    content: bytes
    content_type: Optional[str] = None


class Attachment(BaseModel):
    id: str
    task_id: str
    uploader_id: str
    original_name: str
    storage_key: str
    content_type: str
    size_bytes: int = Field(ge=0)
    created_at: datetime
