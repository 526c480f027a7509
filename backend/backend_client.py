"""
Interface to the persistence/backend layer that owns tasks and drivers.
The core only needs these three operations.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from models import ProofPayload, Task, TaskStatus

ChangeCallback = Callable[[], None]
Unsubscribe = Callable[[], None]


class TaskBackend(Protocol):

    async def fetch_driver_tasks(self, driver_id: str) -> list[Task]:
        """Full snapshot of the driver's active tasks. Raises on failure."""
        ...

    def subscribe_to_task_changes(self, driver_id: str, on_change: ChangeCallback) -> Unsubscribe:
        """Call ``on_change`` (no payload) whenever one of the driver's tasks changes."""
        ...

    async def apply_task_transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        proof: Optional[ProofPayload] = None,
    ) -> None:
        """Persist one status change. Raises ``TransitionError`` on failure."""
        ...
