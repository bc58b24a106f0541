"""
TaskTrack Related Stores — comments and attachment metadata.

Simple create / find_by_task / get / delete_by_id primitives. Access rules
are applied by the services, not here. ``delete_by_task`` exists for the
cascading task delete.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from tasktrack.db.models import AttachmentRow, CommentRow
from tasktrack.db.session import Database
from tasktrack.tasks.schemas import Attachment, Comment
from tasktrack.tasks.store import StoreBase, UserStore

logger = logging.getLogger("tasktrack.tasks.related")


class CommentStore(StoreBase):

    def __init__(self, database: Database, users: Optional[UserStore] = None):
        super().__init__(database)
        self._users = users or UserStore(database)

    def _to_comments(self, session: Session, rows: List[CommentRow]) -> List[Comment]:
        authors = self._users.get_many((r.author_id for r in rows), session=session)
        return [
            Comment(
                id=r.id,
                task_id=r.task_id,
                author_id=r.author_id,
                author=authors.get(r.author_id),
                content=r.content,
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for r in rows
        ]

    def create(self, task_id: str, author_id: str, content: str, session: Optional[Session] = None) -> Comment:
        with self._use_session(session, "comment create") as s:
            row = CommentRow(task_id=task_id, author_id=author_id, content=content)
            s.add(row)
            s.flush()
            return self._to_comments(s, [row])[0]

    def get(self, comment_id: str, session: Optional[Session] = None) -> Optional[Comment]:
        if not comment_id:
            return None
        with self._use_session(session, "comment get") as s:
            row = s.get(CommentRow, comment_id)
            return self._to_comments(s, [row])[0] if row else None

    def find_by_task(self, task_id: str, session: Optional[Session] = None) -> List[Comment]:
        """Comments on a task, oldest first."""
        with self._use_session(session, "comment find") as s:
            rows = (
                s.query(CommentRow)
                .filter(CommentRow.task_id == task_id)
                .order_by(CommentRow.created_at.asc(), CommentRow.id.asc())
                .all()
            )
            return self._to_comments(s, rows)

    def delete_by_id(self, comment_id: str, session: Optional[Session] = None) -> bool:
        with self._use_session(session, "comment delete") as s:
            deleted = s.query(CommentRow).filter(CommentRow.id == comment_id).delete(synchronize_session=False)
            return deleted > 0

    def delete_by_task(self, task_id: str, session: Optional[Session] = None) -> int:
        with self._use_session(session, "comment delete_by_task") as s:
            deleted = s.query(CommentRow).filter(CommentRow.task_id == task_id).delete(synchronize_session=False)
            logger.debug(f"Removed {deleted} comment(s) of task {task_id}")
            return deleted


class AttachmentStore(StoreBase):

    @staticmethod
    def _to_attachment(row: AttachmentRow) -> Attachment:
        return Attachment(
            id=row.id,
            task_id=row.task_id,
            uploader_id=row.uploader_id,
            original_name=row.original_name,
            storage_key=row.storage_key,
            content_type=row.content_type,
            size_bytes=row.size_bytes,
            created_at=row.created_at,
        )

    def create(
        self,
        task_id: str,
        uploader_id: str,
        original_name: str,
        storage_key: str,
        content_type: str,
        size_bytes: int,
        session: Optional[Session] = None,
    ) -> Attachment:
        with self._use_session(session, "attachment create") as s:
            row = AttachmentRow(
                task_id=task_id,
                uploader_id=uploader_id,
                original_name=original_name,
                storage_key=storage_key,
                content_type=content_type,
                size_bytes=size_bytes,
            )
            s.add(row)
            s.flush()
            return self._to_attachment(row)

    def get(self, attachment_id: str, session: Optional[Session] = None) -> Optional[Attachment]:
        if not attachment_id:
            return None
        with self._use_session(session, "attachment get") as s:
            row = s.get(AttachmentRow, attachment_id)
            return self._to_attachment(row) if row else None

    def find_by_task(self, task_id: str, session: Optional[Session] = None) -> List[Attachment]:
        with self._use_session(session, "attachment find") as s:
            rows = (
                s.query(AttachmentRow)
                .filter(AttachmentRow.task_id == task_id)
                .order_by(AttachmentRow.created_at.asc(), AttachmentRow.id.asc())
                .all()
            )
            return [self._to_attachment(r) for r in rows]

    def update_storage_key(self, attachment_id: str, storage_key: str, session: Optional[Session] = None) -> bool:
        with self._use_session(session, "attachment rekey") as s:
            row = s.get(AttachmentRow, attachment_id)
            if row is None:
                return False
            row.storage_key = storage_key
            s.flush()
            return True

    def delete_by_id(self, attachment_id: str, session: Optional[Session] = None) -> bool:
        with self._use_session(session, "attachment delete") as s:
            deleted = (
                s.query(AttachmentRow)
                .filter(AttachmentRow.id == attachment_id)
                .delete(synchronize_session=False)
            )
            return deleted > 0

    def delete_by_task(self, task_id: str, session: Optional[Session] = None) -> int:
        with self._use_session(session, "attachment delete_by_task") as s:
            deleted = (
                s.query(AttachmentRow)
                .filter(AttachmentRow.task_id == task_id)
                .delete(synchronize_session=False)
            )
            logger.debug(f"Removed {deleted} attachment record(s) of task {task_id}")
            return deleted
