"""
TaskTrack Task Store — SQLAlchemy-backed persistence for tasks and users.

Provides:
    - unit_of_work(): one session per operation, SQLAlchemy failures
      surfaced as StorageError
    - StoreBase: own-session-or-caller-session helper shared by all stores
    - TaskStore: CRUD primitives, predicate compilation, count / find /
      count_by for the query engine and statistics
    - UserStore: creator directory used to populate ``Task.creator``

Every method accepts an optional ``session`` so a service can group
several store calls into one transaction (cascading delete).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import and_, exists, false, func, or_, true
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasktrack.db.base import utcnow
from tasktrack.db.models import TaskAssigneeRow, TaskRow, UserRow
from tasktrack.db.session import Database
from tasktrack.engine.context import Identity
from tasktrack.engine.errors import StorageError, ValidationError
from tasktrack.tasks.predicates import And, ContainsText, Eq, Has, Or, Predicate
from tasktrack.tasks.schemas import Creator, Task

logger = logging.getLogger("tasktrack.tasks.store")

# (field, descending) pairs, applied in order
OrderSpec = Sequence[Tuple[str, bool]]

_COLUMNS = {
    "id": TaskRow.id,
    "title": TaskRow.title,
    "description": TaskRow.description,
    "status": TaskRow.status,
    "priority": TaskRow.priority,
    "due_date": TaskRow.due_date,
    "creator_id": TaskRow.creator_id,
    "created_at": TaskRow.created_at,
    "updated_at": TaskRow.updated_at,
}


# Dialect inserts that support ON CONFLICT DO NOTHING
_CONFLICT_FREE_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


@contextmanager
def unit_of_work(database: Database, operation: str) -> Generator[Session, None, None]:
    """Session scope for one service operation; storage failures become StorageError."""
    try:
        with database.session_scope() as session:
            yield session
    except SQLAlchemyError as exc:
        logger.error(f"{operation} failed: {exc.__class__.__name__}")
        raise StorageError(f"Storage failure during {operation}", operation=operation) from exc


class StoreBase:
    """Shared session handling: use the caller's session or open a unit of work."""

    def __init__(self, database: Database):
        self._db = database

    @contextmanager
    def _use_session(self, session: Optional[Session], operation: str) -> Generator[Session, None, None]:
        if session is None:
            with unit_of_work(self._db, operation) as own:
                yield own
            return
        try:
            yield session
        except SQLAlchemyError as exc:
            logger.error(f"{operation} failed: {exc.__class__.__name__}")
            raise StorageError(f"Storage failure during {operation}", operation=operation) from exc


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------

class UserStore(StoreBase):
    """Creator directory: one row per identity that has created a task."""

    def ensure(self, identity: Identity, session: Optional[Session] = None) -> None:
        """
        Insert the identity, or refresh its username if it changed.

        On SQLite and PostgreSQL the insert is ``ON CONFLICT DO NOTHING`` so
        two first calls for the same identity in different sessions both
        succeed.
        """
        with self._use_session(session, "user ensure") as s:
            insert_stmt = _CONFLICT_FREE_INSERTS.get(s.get_bind().dialect.name)
            if insert_stmt is not None:
                s.execute(
                    insert_stmt(UserRow)
                    .values(id=identity.id, username=identity.username, created_at=utcnow())
                    .on_conflict_do_nothing(index_elements=[UserRow.id])
                )
            row = s.get(UserRow, identity.id)
            if row is None:
                s.add(UserRow(id=identity.id, username=identity.username))
            elif row.username != identity.username:
                row.username = identity.username
            s.flush()

    def get(self, user_id: str, session: Optional[Session] = None) -> Optional[Creator]:
        with self._use_session(session, "user get") as s:
            row = s.get(UserRow, user_id)
            return Creator(id=row.id, username=row.username) if row else None

    def get_many(self, user_ids: Iterable[str], session: Optional[Session] = None) -> Dict[str, Creator]:
        ids = {u for u in user_ids if u}
        if not ids:
            return {}
        with self._use_session(session, "user lookup") as s:
            rows = s.query(UserRow).filter(UserRow.id.in_(ids)).all()
            return {r.id: Creator(id=r.id, username=r.username) for r in rows}

    def delete(self, user_id: str, session: Optional[Session] = None) -> bool:
        """Remove a user record. Their tasks stay, with no populated creator."""
        with self._use_session(session, "user delete") as s:
            row = s.get(UserRow, user_id)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            return True


# ---------------------------------------------------------------------------
# Task store
# ---------------------------------------------------------------------------

class TaskStore(StoreBase):
    """Persistent collection of Task records."""

    def __init__(self, database: Database, users: Optional[UserStore] = None):
        super().__init__(database)
        self._users = users or UserStore(database)

    # -------------------------------------------------------------------
    # Predicate compilation
    # -------------------------------------------------------------------

    def compile(self, predicate: Predicate) -> Any:
        """Translate a Predicate into an SQLAlchemy boolean clause."""
        if isinstance(predicate, And):
            return and_(*(self.compile(t) for t in predicate.terms)) if predicate.terms else true()
        if isinstance(predicate, Or):
            return or_(*(self.compile(t) for t in predicate.terms)) if predicate.terms else false()
        if isinstance(predicate, Eq):
            clause = _COLUMNS[predicate.field] == predicate.value
            if predicate.field == "creator_id":
                # A deleted creator record means the task has no creator
                clause = and_(clause, exists().where(UserRow.id == TaskRow.creator_id))
            return clause
        if isinstance(predicate, ContainsText):
            column = _COLUMNS[predicate.field]
            return column.ilike(f"%{_escape_like(predicate.text)}%", escape="\\")
        if isinstance(predicate, Has):
            return TaskRow.assignees.any(TaskAssigneeRow.username == predicate.member)
        raise ValidationError(f"Unsupported predicate {type(predicate).__name__}")

    @staticmethod
    def order_clauses(order: OrderSpec) -> List[Any]:
        clauses = []
        for field_name, descending in order:
            column = _COLUMNS.get(field_name)
            if column is None:
                raise ValidationError(f"Cannot sort by '{field_name}'", field=field_name)
            clauses.append(column.desc() if descending else column.asc())
        return clauses

    # -------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------

    def _to_tasks(self, session: Session, rows: Sequence[TaskRow]) -> List[Task]:
        creators = self._users.get_many((r.creator_id for r in rows), session=session)
        return [
            Task(
                id=r.id,
                title=r.title,
                description=r.description,
                status=r.status,
                priority=r.priority,
                due_date=r.due_date,
                tags=list(r.tags or []),
                assigned_to=r.assigned_to,
                creator_id=r.creator_id,
                creator=creators.get(r.creator_id),
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for r in rows
        ]

    # -------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------

    def get(self, task_id: str, session: Optional[Session] = None) -> Optional[Task]:
        """Load a task by id with its creator populated (None if the user is gone)."""
        if not task_id:
            return None
        with self._use_session(session, "task get") as s:
            row = s.get(TaskRow, task_id)
            return self._to_tasks(s, [row])[0] if row else None

    def insert(self, fields: Mapping[str, Any], creator_id: str, session: Optional[Session] = None) -> Task:
        with self._use_session(session, "task insert") as s:
            row = TaskRow(
                title=fields["title"],
                description=fields.get("description"),
                status=_value(fields.get("status", "todo")),
                priority=_value(fields.get("priority", "medium")),
                due_date=fields.get("due_date"),
                tags=list(fields.get("tags") or []),
                creator_id=creator_id,
            )
            row.assignees = [
                TaskAssigneeRow(position=i, username=u)
                for i, u in enumerate(fields.get("assigned_to") or [])
            ]
            s.add(row)
            s.flush()
            logger.debug(f"Inserted task id={row.id} creator={creator_id}")
            return self._to_tasks(s, [row])[0]

    def update(self, task_id: str, changes: Mapping[str, Any], session: Optional[Session] = None) -> Optional[Task]:
        """Apply a partial update (last write wins). Returns None if the task is gone."""
        with self._use_session(session, "task update") as s:
            row = s.get(TaskRow, task_id)
            if row is None:
                return None
            for field_name, value in changes.items():
                if field_name == "assigned_to":
                    self._replace_assignees(row, value or [])
                elif field_name == "tags":
                    row.tags = list(value or [])
                elif field_name in ("title", "description", "status", "priority", "due_date"):
                    setattr(row, field_name, _value(value))
                else:
                    raise ValidationError(f"Field '{field_name}' cannot be updated", field=field_name)
            row.updated_at = utcnow()
            s.flush()
            logger.debug(f"Updated task id={task_id}: {sorted(changes)}")
            return self._to_tasks(s, [row])[0]

    @staticmethod
    def _replace_assignees(row: TaskRow, usernames: Sequence[str]) -> None:
        # Reuse existing rows so the (task_id, username) constraint never sees a transient duplicate
        existing = {a.username: a for a in row.assignees}
        new_rows = []
        for position, username in enumerate(usernames):
            assignee = existing.get(username) or TaskAssigneeRow(username=username)
            assignee.position = position
            new_rows.append(assignee)
        row.assignees = new_rows

    def delete(self, task_id: str, session: Optional[Session] = None) -> bool:
        """Hard delete of the task row and its assignee rows."""
        with self._use_session(session, "task delete") as s:
            row = s.get(TaskRow, task_id)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            logger.debug(f"Deleted task id={task_id}")
            return True

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def count(self, predicate: Predicate, session: Optional[Session] = None) -> int:
        with self._use_session(session, "task count") as s:
            return s.query(func.count(TaskRow.id)).filter(self.compile(predicate)).scalar() or 0

    def find(
        self,
        predicate: Predicate,
        order: OrderSpec,
        offset: int = 0,
        limit: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> List[Task]:
        with self._use_session(session, "task find") as s:
            query = (
                s.query(TaskRow)
                .filter(self.compile(predicate))
                .order_by(*self.order_clauses(order))
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            return self._to_tasks(s, query.all())

    def count_by(self, field_name: str, predicate: Predicate, session: Optional[Session] = None) -> Dict[str, int]:
        """Group matching tasks by a scalar field and count each group."""
        column = _COLUMNS.get(field_name)
        if column is None:
            raise ValidationError(f"Cannot group by '{field_name}'", field=field_name)
        with self._use_session(session, "task count_by") as s:
            rows = (
                s.query(column, func.count(TaskRow.id))
                .filter(self.compile(predicate))
                .group_by(column)
                .all()
            )
            return {str(key): int(n) for key, n in rows}


def _value(v: Any) -> Any:
    return getattr(v, "value", v)
