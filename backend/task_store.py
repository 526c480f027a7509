"""
In-memory task cache for one driver session.

All writes go through ``replace_all``, ``patch_by_id`` and ``remove_by_id``.
Each is synchronous, so on the event loop no reader can observe a half-applied
write. Views are rebuilt from current contents on every call and are fresh
lists of frozen tasks.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from deadline import DEFAULT_DEADLINE_HOURS, classify_task
from exceptions import InvalidTransitionError
from models import (
    PENDING_STATUSES,
    Task,
    TaskStats,
    TaskStatus,
    UrgencyResult,
    UrgencyTier,
    can_transition,
)

logger = logging.getLogger(__name__)

Listener = Callable[["TaskStore"], None]


class TaskStore:
    """Observable collection of tasks keyed by ``Task.id``."""

    def __init__(self, deadline_hours: float = DEFAULT_DEADLINE_HOURS):
        self._tasks: dict[str, Task] = {}
        self._listeners: list[Listener] = []
        self.deadline_hours = deadline_hours
        self.version: int = 0

    # --- Mutation primitives ---

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Swap the whole collection. Tasks not in ``tasks`` are gone afterwards."""
        new_tasks: dict[str, Task] = {}
        for task in tasks:
            new_tasks[task.id] = task
        self._tasks = new_tasks
        self._changed()

    def patch_by_id(self, task_id: str, partial: dict[str, Any]) -> Optional[Task]:
        """Merge fields into a known task. Unknown ids are ignored."""
        current = self._tasks.get(task_id)
        if current is None:
            return None

        fields = {k: v for k, v in partial.items() if k != "id"}
        if "status" in fields:
            new_status = TaskStatus(fields["status"])
            if not can_transition(current.status, new_status):
                raise InvalidTransitionError(
                    f"Task {task_id} cannot move from {current.status.value} to {new_status.value}"
                )
        updated = Task.model_validate({**current.model_dump(), **fields})
        self._tasks[task_id] = updated
        self._changed()
        return updated

    def remove_by_id(self, task_id: str) -> Optional[Task]:
        removed = self._tasks.pop(task_id, None)
        if removed is not None:
            self._changed()
        return removed

    def set_deadline_hours(self, hours: float) -> None:
        self.deadline_hours = hours
        self._changed()

    # --- Observation ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Task store listener failed")

    # --- Reads ---

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def all(self) -> list[Task]:
        return list(self._tasks.values())

    def pending(self) -> list[Task]:
        return [t for t in self._tasks.values() if t.status in PENDING_STATUSES]

    def picked_up(self) -> list[Task]:
        return [t for t in self._tasks.values() if t.status == TaskStatus.PICKED_UP]

    def urgency(self, task: Task, now: datetime) -> UrgencyResult:
        return classify_task(task, now, self.deadline_hours)

    def sorted_by_urgency(self, tasks: Iterable[Task], now: datetime) -> list[Task]:
        """Most time-critical first. Stable for equal remaining time."""
        return sorted(tasks, key=lambda t: self.urgency(t, now).remaining_ms)

    def sorted_pending(self, now: datetime) -> list[Task]:
        return self.sorted_by_urgency(self.pending(), now)

    def sorted_picked_up(self, now: datetime) -> list[Task]:
        return self.sorted_by_urgency(self.picked_up(), now)

    def count_by_tier(self, tier: UrgencyTier, now: datetime) -> int:
        return sum(1 for t in self._tasks.values() if self.urgency(t, now).tier == tier)

    def stats(self, now: datetime) -> TaskStats:
        stats = TaskStats(pending=len(self.pending()), picked_up=len(self.picked_up()))
        for task in self._tasks.values():
            tier = self.urgency(task, now).tier
            if tier == UrgencyTier.URGENT:
                stats.urgent += 1
            elif tier == UrgencyTier.WARNING:
                stats.warning += 1
            else:
                stats.normal += 1
        return stats
