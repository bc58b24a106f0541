"""
TaskTrack Access Policy — who may see and who may change a task.

Rules:
    view    — creator OR username listed in ``assigned_to``
    mutate  — creator only (assignees are read-only)
    children (comments / attachments) — creator only; assignees who can
              view the task still cannot list, post or download

A task whose creator user record has been deleted has no creator for the
purposes of these rules: nobody may mutate it, assignees may still view it.

All checks are pure functions of (identity, task).
"""

from __future__ import annotations

from typing import Any

from tasktrack.engine.context import Identity
from tasktrack.tasks.predicates import Eq, Has, Or, Predicate


class AccessPolicy:
    """Stateless access rules shared by point reads and list queries."""

    def list_predicate(self, identity: Identity) -> Predicate:
        """Tasks visible to ``identity``: creator == identity OR identity in assigned_to."""
        return Or(
            Eq("creator_id", identity.id),
            Has("assigned_to", identity.username),
        )

    def is_creator(self, identity: Identity, task: Any) -> bool:
        creator = getattr(task, "creator", None)
        return creator is not None and creator.id == identity.id

    def can_view(self, identity: Identity, task: Any) -> bool:
        return self.list_predicate(identity).matches(task)

    def can_mutate(self, identity: Identity, task: Any) -> bool:
        return self.is_creator(identity, task)

    def can_access_children(self, identity: Identity, task: Any) -> bool:
        """Comments and attachments: narrower than view, creator only."""
        return self.is_creator(identity, task)


# Global singleton
access_policy = AccessPolicy()
