"""
Batch pickup/delivery confirmation.

Items are sent to the backend one at a time with the same proof payload.
A failed item does not stop the batch. The store is only touched for items
the backend confirmed, so local state never runs ahead of the server.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from backend_client import TaskBackend
from exceptions import InvalidTransitionError
from models import BulkResult, PENDING_STATUSES, ProofPayload, TaskStatus
from task_store import TaskStore

logger = logging.getLogger(__name__)

ELIGIBLE_FROM: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.PICKED_UP: PENDING_STATUSES,
    TaskStatus.DELIVERED: (TaskStatus.PICKED_UP,),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BulkTransitionCoordinator:
    """Applies one status change across a selection of tasks."""

    def __init__(
        self,
        store: TaskStore,
        backend: TaskBackend,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.backend = backend
        self.clock = clock

    def eligible_ids(self, ids: Iterable[str], transition: TaskStatus) -> list[str]:
        """Ids whose current local status allows ``transition``. Duplicates dropped."""
        allowed = ELIGIBLE_FROM.get(transition)
        if allowed is None:
            raise InvalidTransitionError(f"Bulk transition to {transition.value} is not supported")
        seen: set[str] = set()
        result = []
        for task_id in ids:
            if task_id in seen:
                continue
            seen.add(task_id)
            task = self.store.get(task_id)
            if task is not None and task.status in allowed:
                result.append(task_id)
        return result

    async def apply_bulk(
        self,
        ids: Iterable[str],
        transition: TaskStatus,
        proof: Optional[ProofPayload] = None,
    ) -> BulkResult:
        transition = TaskStatus(transition)
        candidates = self.eligible_ids(ids, transition)
        result = BulkResult()
        if not candidates:
            return result

        logger.info("Applying %s to %d tasks", transition.value, len(candidates))
        for task_id in candidates:
            try:
                await self.backend.apply_task_transition(task_id, transition, proof)
            except Exception as e:
                logger.warning("Transition to %s failed for task %s: %s", transition.value, task_id, e)
                result.failed_ids.append(task_id)
            else:
                result.succeeded_ids.append(task_id)

        self._apply_locally(result.succeeded_ids, transition)
        logger.info("Bulk %s: %s", transition.value, result.summary())
        return result

    def _apply_locally(self, task_ids: list[str], transition: TaskStatus) -> None:
        now = self.clock()
        for task_id in task_ids:
            if transition == TaskStatus.DELIVERED:
                self.store.remove_by_id(task_id)
            else:
                self.store.patch_by_id(task_id, {"status": transition, "picked_up_at": now})

    async def confirm_pickup(self, task_id: str, proof: Optional[ProofPayload] = None) -> BulkResult:
        return await self.apply_bulk([task_id], TaskStatus.PICKED_UP, proof)

    async def confirm_delivery(self, task_id: str, proof: Optional[ProofPayload] = None) -> BulkResult:
        return await self.apply_bulk([task_id], TaskStatus.DELIVERED, proof)
