"""
TaskTrack Comment Service — discussion threads on tasks.

Access:
    list / add  — task creator only (assignees may view the task but not
                  its comments)
    delete      — comment author only
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Union

from tasktrack.db.session import Database
from tasktrack.engine.context import Identity
from tasktrack.engine.errors import NotFoundError
from tasktrack.services.base import ServiceBase, parse_input
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.related import CommentStore
from tasktrack.tasks.schemas import Comment, CommentCreate
from tasktrack.tasks.store import unit_of_work

logger = logging.getLogger("tasktrack.services.comments")


class CommentService(ServiceBase):

    def __init__(self, database: Database, policy: AccessPolicy = access_policy):
        super().__init__(database, policy)
        self._comments = CommentStore(database, users=self._users)

    def list_for_task(self, identity: Identity, task_id: str) -> List[Comment]:
        """Comments on a task, oldest first, authors populated."""
        with unit_of_work(self._db, "comment list") as session:
            self._require_task(identity, task_id, "view comments on", self._policy.can_access_children, session)
            return self._comments.find_by_task(task_id, session=session)

    def add(self, identity: Identity, task_id: str, content: Union[str, CommentCreate, Mapping[str, Any]]) -> Comment:
        if isinstance(content, str):
            content = {"content": content}
        with unit_of_work(self._db, "comment add") as session:
            self._require_task(identity, task_id, "comment on", self._policy.can_access_children, session)
            data = parse_input(CommentCreate, content, "Invalid comment")
            self._users.ensure(identity, session=session)
            comment = self._comments.create(task_id, identity.id, data.content, session=session)

        self._audit(identity, "create", "comment", comment.id, task_id=task_id)
        return comment

    def delete(self, identity: Identity, comment_id: str) -> None:
        with unit_of_work(self._db, "comment delete") as session:
            comment = self._comments.get(comment_id, session=session)
            if comment is None:
                raise NotFoundError("Comment not found", resource="comment", resource_id=comment_id)
            if comment.author_id != identity.id:
                self._deny(identity, "comment", comment_id, "delete")
            self._comments.delete_by_id(comment_id, session=session)

        self._audit(identity, "delete", "comment", comment_id, task_id=comment.task_id)
        logger.info(f"Comment deleted: {comment_id} by {identity.username}")
