"""
TaskTrack Service Base — shared access checks, input parsing and audit logging.

Every public service method:
    1. loads the referenced record (NotFoundError if absent)
    2. applies the AccessPolicy rule for the operation (ForbiddenError,
       with a security log entry, if denied)
    3. validates input with the pydantic schema (ValidationError)
    4. runs the store calls inside one unit of work
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from tasktrack.db.session import Database
from tasktrack.engine.context import Identity
from tasktrack.engine.errors import ForbiddenError, NotFoundError, ValidationError
from tasktrack.engine.logging import log, log_record_operation, log_security_event
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.schemas import Task
from tasktrack.tasks.store import TaskStore, UserStore

logger = logging.getLogger("tasktrack.services")

M = TypeVar("M", bound=BaseModel)

AccessRule = Callable[[Identity, Any], bool]


def parse_input(model: Type[M], data: Union[M, Mapping[str, Any], None], message: str) -> M:
    """Validate caller data against a schema, converting pydantic errors."""
    if isinstance(data, model):
        return data
    if data is not None and not isinstance(data, Mapping):
        raise ValidationError(f"{message}: expected an object, got {type(data).__name__}")
    try:
        return model(**dict(data or {}))
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, message) from None


class ServiceBase:
    """Holds the database, policy and the stores every service reads tasks through."""

    def __init__(self, database: Database, policy: AccessPolicy = access_policy):
        self._db = database
        self._policy = policy
        self._users = UserStore(database)
        self._tasks = TaskStore(database, users=self._users)

    # -------------------------------------------------------------------
    # Access checks
    # -------------------------------------------------------------------

    def _deny(self, identity: Identity, record_type: str, record_id: str, permission: str) -> None:
        log(log_security_event(
            event="access_denied",
            record_type=record_type,
            record_id=record_id,
            permission_needed=permission,
            user_id=identity.id,
            username=identity.username,
            execution_id=identity.execution_id,
        ))
        raise ForbiddenError(
            f"Not authorized to {permission} this {record_type}",
            user_id=identity.id,
            required_permission=permission,
            resource=record_type,
            resource_id=record_id,
        )

    def _require_task(
        self,
        identity: Identity,
        task_id: str,
        permission: str,
        rule: AccessRule,
        session: Optional[Session] = None,
    ) -> Task:
        task = self._tasks.get(task_id, session=session)
        if task is None:
            raise NotFoundError("Task not found", resource="task", resource_id=task_id)
        if not rule(identity, task):
            self._deny(identity, "task", task_id, permission)
        return task

    # -------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------

    @staticmethod
    def _audit(identity: Identity, operation: str, record_type: str, record_id: str, **kwargs: Any) -> None:
        log(log_record_operation(
            operation=operation,
            record_type=record_type,
            record_id=record_id,
            user_id=identity.id,
            execution_id=identity.execution_id,
            **kwargs,
        ))
