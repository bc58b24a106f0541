"""
TaskTrack Query Engine — access-scoped filtering, search, sort, pagination.

Plan for one (identity, TaskQuery) pair:
    1. base predicate = AccessPolicy.list_predicate(identity)
    2. AND status / priority exact matches
    3. AND (title contains search OR description contains search), case-insensitive
    4. count total matches before skip/limit
    5. order: ``sort`` ascending then id ascending; default created_at
       descending then id descending, so pages never overlap
    6. offset (page - 1) * limit, take limit

Count and fetch run in the same session but without snapshot isolation: a
concurrent insert between them may shift a page by one row.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from tasktrack.engine.context import Identity
from tasktrack.engine.errors import ValidationError
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.predicates import And, ContainsText, Eq, Or, Predicate, describe
from tasktrack.tasks.schemas import TaskPage, TaskPriority, TaskStatus
from tasktrack.tasks.store import TaskStore

logger = logging.getLogger("tasktrack.tasks.query")

DEFAULT_LIMIT = 10

# Accepted sort names → store field. camelCase aliases match the API layer.
SORTABLE_FIELDS = {
    "title": "title",
    "status": "status",
    "priority": "priority",
    "due_date": "due_date",
    "dueDate": "due_date",
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
}

DEFAULT_ORDER: List[Tuple[str, bool]] = [("created_at", True), ("id", True)]


class TaskQuery(BaseModel):
    """User-supplied filter set. Everything is optional."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    sort: Optional[str] = None

    @field_validator("status", "priority", "sort", "limit", mode="before")
    @classmethod
    def blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("search")
    @classmethod
    def normalize_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("sort")
    @classmethod
    def validate_sort(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if v not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by '{v}'. Sortable: {sorted(set(SORTABLE_FIELDS.values()))}")
        return SORTABLE_FIELDS[v]

    @classmethod
    def parse(cls, params: Union["TaskQuery", Mapping[str, Any], None]) -> "TaskQuery":
        """Build from a mapping of query parameters, raising ValidationError."""
        if isinstance(params, cls):
            return params
        try:
            return cls(**dict(params or {}))
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "Invalid task query") from None

    def filters(self) -> Dict[str, Any]:
        """Non-empty filters, JSON-friendly (for logs)."""
        data = self.model_dump(exclude_none=True, mode="json")
        return data


class TaskQueryEngine:
    """Translates (identity, TaskQuery) into a deterministic page of tasks."""

    def __init__(
        self,
        store: TaskStore,
        policy: AccessPolicy = access_policy,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self._store = store
        self._policy = policy
        self._default_limit = default_limit

    def build_predicate(self, identity: Identity, query: TaskQuery) -> Predicate:
        terms: List[Predicate] = [self._policy.list_predicate(identity)]
        if query.status is not None:
            terms.append(Eq("status", query.status))
        if query.priority is not None:
            terms.append(Eq("priority", query.priority))
        if query.search:
            terms.append(Or(
                ContainsText("title", query.search),
                ContainsText("description", query.search),
            ))
        return And(*terms)

    @staticmethod
    def order_for(query: TaskQuery) -> List[Tuple[str, bool]]:
        if query.sort:
            return [(query.sort, False), ("id", False)]
        return list(DEFAULT_ORDER)

    def effective_limit(self, query: TaskQuery) -> int:
        return query.limit or self._default_limit

    def execute(
        self,
        identity: Identity,
        query: Union[TaskQuery, Mapping[str, Any], None] = None,
        session: Optional[Session] = None,
    ) -> TaskPage:
        query = TaskQuery.parse(query)
        predicate = self.build_predicate(identity, query)
        limit = self.effective_limit(query)
        offset = (query.page - 1) * limit
        logger.debug(f"Task query for {identity.id}: {describe(predicate)}")

        total = self._store.count(predicate, session=session)
        items = []
        if offset < total:
            items = self._store.find(
                predicate,
                order=self.order_for(query),
                offset=offset,
                limit=limit,
                session=session,
            )

        return TaskPage(
            items=items,
            total_count=total,
            page=query.page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )
