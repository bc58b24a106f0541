"""Unit tests for tasktrack.tasks.policy — AccessPolicy rules."""

from datetime import datetime, timezone

from tasktrack.engine.context import Identity
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.predicates import Eq, Has, Or
from tasktrack.tasks.schemas import Creator, Task

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

CREATOR = Identity(id="user-1", username="u1")
ASSIGNEE = Identity(id="user-2", username="u2")
STRANGER = Identity(id="user-3", username="u3")


def _task(creator=Creator(id="user-1", username="u1"), assigned_to=("u2",)) -> Task:
    return Task(
        id="t1",
        title="Fix bug",
        assigned_to=list(assigned_to),
        creator_id="user-1",
        creator=creator,
        created_at=NOW,
        updated_at=NOW,
    )


class TestListPredicate:

    def test_shape(self):
        assert access_policy.list_predicate(ASSIGNEE) == Or(
            Eq("creator_id", "user-2"),
            Has("assigned_to", "u2"),
        )


class TestCanView:

    def test_creator(self):
        assert access_policy.can_view(CREATOR, _task())

    def test_assignee(self):
        assert access_policy.can_view(ASSIGNEE, _task())

    def test_stranger(self):
        assert not access_policy.can_view(STRANGER, _task())

    def test_assignment_is_by_username(self):
        # Same username, different id: still an assignee
        assert access_policy.can_view(Identity(id="other-id", username="u2"), _task())


class TestCanMutate:

    def test_creator_only(self):
        assert access_policy.can_mutate(CREATOR, _task())
        assert not access_policy.can_mutate(ASSIGNEE, _task())
        assert not access_policy.can_mutate(STRANGER, _task())

    def test_creator_username_does_not_matter(self):
        assert access_policy.can_mutate(Identity(id="user-1", username="renamed"), _task())


class TestMissingCreator:
    """A task whose creator record is gone has no creator."""

    def test_nobody_can_mutate(self):
        task = _task(creator=None)
        assert not access_policy.can_mutate(CREATOR, task)
        assert not access_policy.can_mutate(ASSIGNEE, task)

    def test_original_creator_cannot_view(self):
        assert not access_policy.can_view(CREATOR, _task(creator=None))

    def test_assignee_can_still_view(self):
        assert access_policy.can_view(ASSIGNEE, _task(creator=None))


class TestChildren:

    def test_creator_only(self):
        policy = AccessPolicy()
        assert policy.can_access_children(CREATOR, _task())
        assert not policy.can_access_children(ASSIGNEE, _task())
        assert not policy.can_access_children(STRANGER, _task())
