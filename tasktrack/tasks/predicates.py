"""
TaskTrack Predicates — Composable boolean expressions over task fields.

A predicate is built once (by the access policy and the query engine) and
handed to the store, which compiles it to SQL. The same object can be
evaluated in memory against a ``Task`` with ``matches()``, so the access
rule used for point reads and the one pushed into list queries are one and
the same expression.

    Eq("status", "todo") & (ContainsText("title", "report") | ContainsText("description", "report"))
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Set, Tuple

from tasktrack.engine.errors import ValidationError

SCALAR_FIELDS = frozenset({
    "id", "title", "description", "status", "priority",
    "due_date", "creator_id", "created_at", "updated_at",
})
TEXT_FIELDS = frozenset({"title", "description"})
LIST_FIELDS = frozenset({"assigned_to"})


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def field_value(task: Any, field: str) -> Any:
    """
    Resolve a field on a task for in-memory evaluation.

    ``creator_id`` resolves through the populated creator: a task whose
    creator record is gone matches no identity.
    """
    if field == "creator_id":
        creator = getattr(task, "creator", None)
        return creator.id if creator is not None else None
    return _plain(getattr(task, field, None))


class Predicate:
    """Base class; combine with ``&`` and ``|``."""

    def matches(self, task: Any) -> bool:
        raise NotImplementedError

    def fields(self) -> Set[str]:
        raise NotImplementedError

    def __and__(self, other: "Predicate") -> "And":
        return And(self, other)

    def __or__(self, other: "Predicate") -> "Or":
        return Or(self, other)


@dataclass(frozen=True)
class Eq(Predicate):
    """Exact match on a scalar field."""
    field: str
    value: Any

    def __post_init__(self) -> None:
        if self.field not in SCALAR_FIELDS:
            raise ValidationError(f"Unknown field '{self.field}'", field=self.field)
        object.__setattr__(self, "value", _plain(self.value))

    def matches(self, task: Any) -> bool:
        actual = field_value(task, self.field)
        return actual is not None and actual == self.value

    def fields(self) -> Set[str]:
        return {self.field}


@dataclass(frozen=True)
class ContainsText(Predicate):
    """Case-insensitive substring match on a text field. NULL never matches."""
    field: str
    text: str

    def __post_init__(self) -> None:
        if self.field not in TEXT_FIELDS:
            raise ValidationError(f"Field '{self.field}' is not searchable", field=self.field)

    def matches(self, task: Any) -> bool:
        actual = field_value(task, self.field)
        if actual is None:
            return False
        return self.text.lower() in str(actual).lower()

    def fields(self) -> Set[str]:
        return {self.field}


@dataclass(frozen=True)
class Has(Predicate):
    """List membership: ``member in task.<field>``."""
    field: str
    member: str

    def __post_init__(self) -> None:
        if self.field not in LIST_FIELDS:
            raise ValidationError(f"Field '{self.field}' is not a list field", field=self.field)

    def matches(self, task: Any) -> bool:
        return self.member in (getattr(task, self.field, None) or [])

    def fields(self) -> Set[str]:
        return {self.field}


def _flatten(kind: type, terms: Iterable[Predicate]) -> Tuple[Predicate, ...]:
    out = []
    for term in terms:
        if not isinstance(term, Predicate):
            raise TypeError(f"Expected Predicate, got {type(term).__name__}")
        if isinstance(term, kind):
            out.extend(term.terms)
        else:
            out.append(term)
    return tuple(out)


@dataclass(frozen=True, init=False)
class And(Predicate):
    terms: Tuple[Predicate, ...]

    def __init__(self, *terms: Predicate):
        object.__setattr__(self, "terms", _flatten(And, terms))

    def matches(self, task: Any) -> bool:
        return all(t.matches(task) for t in self.terms)

    def fields(self) -> Set[str]:
        return set().union(*(t.fields() for t in self.terms)) if self.terms else set()


@dataclass(frozen=True, init=False)
class Or(Predicate):
    terms: Tuple[Predicate, ...]

    def __init__(self, *terms: Predicate):
        object.__setattr__(self, "terms", _flatten(Or, terms))

    def matches(self, task: Any) -> bool:
        return any(t.matches(task) for t in self.terms)

    def fields(self) -> Set[str]:
        return set().union(*(t.fields() for t in self.terms)) if self.terms else set()


def describe(predicate: Predicate) -> Any:
    """JSON-friendly rendering, used in debug logs."""
    if isinstance(predicate, (And, Or)):
        return {type(predicate).__name__.lower(): [describe(t) for t in predicate.terms]}
    if isinstance(predicate, Eq):
        value = predicate.value
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        return {"eq": [predicate.field, value]}
    if isinstance(predicate, ContainsText):
        return {"contains": [predicate.field, predicate.text]}
    if isinstance(predicate, Has):
        return {"has": [predicate.field, predicate.member]}
    raise TypeError(f"Unsupported predicate {type(predicate).__name__}")
