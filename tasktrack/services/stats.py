"""TaskTrack Stats Service — aggregate counts over the tasks an identity can see."""

from __future__ import annotations

import logging

from tasktrack.engine.context import Identity
from tasktrack.services.base import ServiceBase
from tasktrack.tasks.schemas import TaskPriority, TaskStats, TaskStatus
from tasktrack.tasks.store import unit_of_work

logger = logging.getLogger("tasktrack.services.stats")


class StatsService(ServiceBase):

    def summary(self, identity: Identity) -> TaskStats:
        """
        Status and priority breakdown plus completion rate.

        Uses the same access predicate as listing, so the numbers always
        agree with what ``TaskService.list`` would return. Every enum value
        is present in the counts, zero if no task has it.
        """
        predicate = self._policy.list_predicate(identity)
        with unit_of_work(self._db, "task stats") as session:
            by_status = self._tasks.count_by("status", predicate, session=session)
            by_priority = self._tasks.count_by("priority", predicate, session=session)

        status_counts = {s.value: by_status.get(s.value, 0) for s in TaskStatus}
        priority_counts = {p.value: by_priority.get(p.value, 0) for p in TaskPriority}
        total = sum(status_counts.values())
        completed = status_counts[TaskStatus.COMPLETED.value]

        return TaskStats(
            status_counts=status_counts,
            priority_counts=priority_counts,
            total_tasks=total,
            completed_tasks=completed,
            completion_rate=round(completed / total * 100, 1) if total > 0 else 0.0,
        )
