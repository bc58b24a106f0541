"""Unit tests for tasktrack.tasks.predicates — in-memory evaluation and composition."""

from datetime import datetime, timezone

import pytest

from tasktrack.engine.errors import ValidationError
from tasktrack.tasks.predicates import And, ContainsText, Eq, Has, Or, describe
from tasktrack.tasks.schemas import Creator, Task, TaskStatus

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _task(**overrides) -> Task:
    data = dict(
        id="t1",
        title="Quarterly Report",
        description=None,
        status="todo",
        priority="medium",
        assigned_to=["u2"],
        creator_id="user-1",
        creator=Creator(id="user-1", username="u1"),
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(overrides)
    return Task(**data)


class TestEq:

    def test_matches_scalar(self):
        assert Eq("priority", "medium").matches(_task())
        assert not Eq("priority", "high").matches(_task())

    def test_enum_value_normalized(self):
        pred = Eq("status", TaskStatus.TODO)
        assert pred.value == "todo"
        assert pred.matches(_task())

    def test_unknown_field(self):
        with pytest.raises(ValidationError, match="Unknown field"):
            Eq("owner", "x")

    def test_creator_id_resolves_through_creator(self):
        assert Eq("creator_id", "user-1").matches(_task())
        assert not Eq("creator_id", "user-1").matches(_task(creator=None))

    def test_none_never_matches(self):
        assert not Eq("description", None).matches(_task())


class TestContainsText:

    def test_case_insensitive(self):
        assert ContainsText("title", "quarterly").matches(_task())
        assert ContainsText("title", "REPORT").matches(_task())

    def test_no_match(self):
        assert not ContainsText("title", "annual").matches(_task())

    def test_null_field_never_matches(self):
        assert not ContainsText("description", "x").matches(_task())

    def test_only_text_fields(self):
        with pytest.raises(ValidationError, match="not searchable"):
            ContainsText("status", "todo")


class TestHas:

    def test_membership(self):
        assert Has("assigned_to", "u2").matches(_task())
        assert not Has("assigned_to", "u3").matches(_task())

    def test_empty_list(self):
        assert not Has("assigned_to", "u2").matches(_task(assigned_to=[]))

    def test_only_list_fields(self):
        with pytest.raises(ValidationError):
            Has("tags", "x")


class TestComposition:

    def test_and(self):
        pred = And(Eq("status", "todo"), ContainsText("title", "report"))
        assert pred.matches(_task())
        assert not pred.matches(_task(status="completed"))

    def test_or(self):
        pred = Or(Eq("creator_id", "user-9"), Has("assigned_to", "u2"))
        assert pred.matches(_task())
        assert not pred.matches(_task(assigned_to=[]))

    def test_operators(self):
        pred = Eq("status", "todo") & (ContainsText("title", "x") | ContainsText("title", "report"))
        assert isinstance(pred, And)
        assert pred.matches(_task())

    def test_nested_same_kind_flattened(self):
        a, b, c = Eq("status", "todo"), Eq("priority", "low"), Eq("id", "t1")
        assert And(And(a, b), c).terms == (a, b, c)

    def test_empty_and_or(self):
        assert And().matches(_task())
        assert not Or().matches(_task())

    def test_non_predicate_rejected(self):
        with pytest.raises(TypeError):
            And(Eq("status", "todo"), "status = todo")

    def test_fields(self):
        pred = Eq("status", "todo") & Has("assigned_to", "u2")
        assert pred.fields() == {"status", "assigned_to"}

    def test_equal_predicates(self):
        assert Or(Eq("id", "a"), Has("assigned_to", "b")) == Or(Eq("id", "a"), Has("assigned_to", "b"))


class TestDescribe:

    def test_nested(self):
        pred = And(Eq("status", "todo"), Or(ContainsText("title", "x"), Has("assigned_to", "u2")))
        assert describe(pred) == {
            "and": [
                {"eq": ["status", "todo"]},
                {"or": [{"contains": ["title", "x"]}, {"has": ["assigned_to", "u2"]}]},
            ]
        }
