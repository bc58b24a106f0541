"""
TaskTrack Task Service — the single entry point for task reads and writes.

Operations:
    create(identity, fields)          → Task (creator = identity)
    get_one(identity, task_id)        → Task, viewable by creator or assignee
    list(identity, query)             → TaskPage, always scoped to identity
    update(identity, task_id, patch)  → Task, creator only, last write wins
    delete(identity, task_id)         → None, creator only, cascades

Cascading delete runs in one transaction:
    1. fetch every attachment blob (missing blob → StorageError, no change)
    2. delete comment, attachment and task rows, flush
    3. delete the blobs and commit; on any failure or interruption roll
       back, re-store the blobs already removed and re-point their
       attachment rows (errors become StorageError, interrupts re-raise)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasktrack.db.session import Database
from tasktrack.engine.config import TaskTrackConfig, get_config
from tasktrack.engine.context import Identity
from tasktrack.engine.errors import StorageError
from tasktrack.engine.logging import log, log_system_event, log_task_query
from tasktrack.services.attachments import restore_blob
from tasktrack.services.base import ServiceBase, parse_input
from tasktrack.storage.blobs import BlobStore
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.query import TaskQuery, TaskQueryEngine
from tasktrack.tasks.related import AttachmentStore, CommentStore
from tasktrack.tasks.schemas import Attachment, Task, TaskCreate, TaskPage, TaskPatch
from tasktrack.tasks.store import unit_of_work

logger = logging.getLogger("tasktrack.services.tasks")


class TaskService(ServiceBase):
    """Enforces the access policy and validation around the task store."""

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore,
        config: Optional[TaskTrackConfig] = None,
        policy: AccessPolicy = access_policy,
    ):
        super().__init__(database, policy)
        self._config = config or get_config()
        self._blobs = blob_store
        self._comments = CommentStore(database, users=self._users)
        self._attachments = AttachmentStore(database)
        self._engine = TaskQueryEngine(
            self._tasks,
            policy=policy,
            default_limit=self._config.query.default_limit,
        )

    # -------------------------------------------------------------------
    # CREATE
    # -------------------------------------------------------------------

    def create(self, identity: Identity, fields: Union[TaskCreate, Mapping[str, Any]]) -> Task:
        data = parse_input(TaskCreate, fields, "Invalid task")
        with unit_of_work(self._db, "task create") as session:
            self._users.ensure(identity, session=session)
            task = self._tasks.insert(data.model_dump(), creator_id=identity.id, session=session)

        self._audit(identity, "create", "task", task.id, fields_changed=sorted(data.model_fields_set))
        logger.info(f"Task created: {task.id} by {identity.username}")
        return task

    # -------------------------------------------------------------------
    # READ
    # -------------------------------------------------------------------

    def get_one(self, identity: Identity, task_id: str) -> Task:
        with unit_of_work(self._db, "task get") as session:
            return self._require_task(identity, task_id, "view", self._policy.can_view, session)

    def list(
        self,
        identity: Identity,
        query: Union[TaskQuery, Mapping[str, Any], None] = None,
    ) -> TaskPage:
        parsed = TaskQuery.parse(query)
        started = time.monotonic()
        with unit_of_work(self._db, "task list") as session:
            page = self._engine.execute(identity, parsed, session=session)

        log(log_task_query(
            user_id=identity.id,
            username=identity.username,
            filters=parsed.filters(),
            result_count=len(page.items),
            total_count=page.total_count,
            execution_id=identity.execution_id,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        ))
        return page

    # -------------------------------------------------------------------
    # UPDATE
    # -------------------------------------------------------------------

    def update(
        self,
        identity: Identity,
        task_id: str,
        patch: Union[TaskPatch, Mapping[str, Any]],
    ) -> Task:
        with unit_of_work(self._db, "task update") as session:
            current = self._require_task(identity, task_id, "update", self._policy.can_mutate, session)
            changes = parse_input(TaskPatch, patch, "Invalid task update").changes()
            if not changes:
                return current
            task = self._tasks.update(task_id, changes, session=session)

        self._audit(identity, "update", "task", task_id, fields_changed=sorted(changes))
        return task

    # -------------------------------------------------------------------
    # DELETE
    # -------------------------------------------------------------------

    def delete(self, identity: Identity, task_id: str) -> None:
        with unit_of_work(self._db, "task delete") as session:
            self._require_task(identity, task_id, "delete", self._policy.can_mutate, session)

            attachments = self._attachments.find_by_task(task_id, session=session)
            contents = self._fetch_blobs(task_id, attachments)

            comments_removed = self._comments.delete_by_task(task_id, session=session)
            self._attachments.delete_by_task(task_id, session=session)
            self._tasks.delete(task_id, session=session)

            try:
                for attachment in attachments:
                    self._blobs.delete(attachment.storage_key)
                session.commit()
            except SQLAlchemyError as exc:
                self._undo_delete(session, task_id, attachments, contents)
                raise StorageError("Could not delete task", operation="task delete", resource_id=task_id) from exc
            except Exception as exc:
                self._undo_delete(session, task_id, attachments, contents)
                raise StorageError(
                    "Could not delete task attachments", operation="task delete", resource_id=task_id
                ) from exc
            except BaseException:
                self._undo_delete(session, task_id, attachments, contents)
                raise

        self._audit(
            identity, "delete", "task", task_id,
            comments_removed=comments_removed,
            attachments_removed=len(attachments),
        )
        logger.info(f"Task deleted: {task_id} by {identity.username}")

    def _fetch_blobs(self, task_id: str, attachments: List[Attachment]) -> Dict[str, bytes]:
        """Read every attachment blob up front so removed ones can be put back."""
        contents: Dict[str, bytes] = {}
        for attachment in attachments:
            try:
                contents[attachment.id] = self._blobs.fetch(attachment.storage_key)
            except Exception as exc:
                raise StorageError(
                    "Attachment content unavailable", operation="task delete", resource_id=task_id
                ) from exc
        return contents

    def _undo_delete(
        self,
        session: Session,
        task_id: str,
        attachments: List[Attachment],
        contents: Dict[str, bytes],
    ) -> None:
        """
        Compensate a failed or interrupted cascade: the rows are back after
        rollback, so store every blob that is already gone again and point
        its row at the new key.
        """
        session.rollback()
        removed = [a for a in attachments if not self._blobs.exists(a.storage_key)]
        restored = 0
        for attachment in removed:
            try:
                restore_blob(self._blobs, self._attachments, attachment, contents[attachment.id], session)
                restored += 1
            except Exception as exc:
                logger.error(f"Could not restore blob for attachment {attachment.id}: {exc}")
        session.commit()

        log(log_system_event(
            "cascade_delete_rolled_back",
            level="ERROR",
            details={"task_id": task_id, "blobs_removed": len(removed), "blobs_restored": restored},
        ))
