"""
TaskTrack Tasks — schemas, predicates, access policy, stores and query engine.

The services in ``tasktrack.services`` are the intended callers of
everything here.
"""

from tasktrack.tasks.policy import AccessPolicy, access_policy  # noqa: F401
from tasktrack.tasks.predicates import And, ContainsText, Eq, Has, Or, Predicate  # noqa: F401
from tasktrack.tasks.query import TaskQuery, TaskQueryEngine  # noqa: F401
from tasktrack.tasks.related import AttachmentStore, CommentStore  # noqa: F401
from tasktrack.tasks.schemas import (  # noqa: F401
    Attachment,
    Comment,
    Creator,
    Task,
    TaskCreate,
    TaskPage,
    TaskPatch,
    TaskPriority,
    TaskStats,
    TaskStatus,
    UploadFile,
)
from tasktrack.tasks.store import TaskStore, UserStore  # noqa: F401
