"""
Driver session: the unit that owns one driver's sync state.
Created on login, torn down on logout. Nothing here is module-global.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from backend_client import TaskBackend
from bulk_actions import BulkTransitionCoordinator
from config import Settings
from deadline import URGENCY_COLORS, format_countdown
from exceptions import SelectionError, SessionNotFoundError, TaskNotFoundError
from models import (
    BulkResult,
    Coordinates,
    CountdownFrame,
    ProofPayload,
    RouteError,
    RouteResult,
    SelectionKind,
    SelectionState,
    Task,
    TaskListResponse,
    TaskStatus,
    TaskView,
)
from reconciliation import ReconciliationLoop
from route_sequencer import sequence, waypoints_from_tasks
from selection import Selection
from task_store import TaskStore

logger = logging.getLogger(__name__)


class DriverSession:
    """TaskStore + ReconciliationLoop + BulkTransitionCoordinator for one driver."""

    def __init__(self, driver_id: str, backend: TaskBackend, settings: Optional[Settings] = None):
        self.driver_id = driver_id
        self.backend = backend
        self.settings = settings or Settings()

        self.store = TaskStore(deadline_hours=self.settings.default_deadline_hours)
        self.sync = ReconciliationLoop(
            driver_id,
            self.store,
            backend,
            debounce_seconds=self.settings.debounce_seconds,
            poll_interval_seconds=self.settings.poll_interval_seconds,
        )
        self.bulk = BulkTransitionCoordinator(self.store, backend)
        self.route_selection = Selection()
        self.bulk_selection = Selection()
        self._unsubscribe_store = self.store.subscribe(self._prune_selections)

    async def start(self) -> None:
        await self.sync.start()

    async def stop(self) -> None:
        await self.sync.stop()
        self.route_selection.clear()
        self.bulk_selection.clear()

    def _prune_selections(self, store: TaskStore) -> None:
        present = [t.id for t in store.all()]
        self.route_selection.retain(present)
        self.bulk_selection.retain(present)

    # --- Views ---

    def task_list(self, now: Optional[datetime] = None) -> TaskListResponse:
        now = now or datetime.now(timezone.utc)
        return TaskListResponse(
            driver_id=self.driver_id,
            pending=[self._view(t, now) for t in self.store.sorted_pending(now)],
            picked_up=[self._view(t, now) for t in self.store.sorted_picked_up(now)],
            stats=self.store.stats(now),
            loading=self.sync.loading,
            refreshing=self.sync.refreshing,
            last_synced_at=self.sync.last_synced_at,
        )

    def _view(self, task: Task, now: datetime) -> TaskView:
        urgency = self.store.urgency(task, now)
        return TaskView(
            task=task,
            urgency=urgency,
            countdown=format_countdown(urgency.remaining_ms),
            colors=URGENCY_COLORS[urgency.tier],
        )

    def countdown(self, task_id: str, now: Optional[datetime] = None) -> Optional[CountdownFrame]:
        """Live countdown for one task, or None once it left the list."""
        task = self.store.get(task_id)
        if task is None:
            return None
        urgency = self.store.urgency(task, now or datetime.now(timezone.utc))
        return CountdownFrame(
            task_id=task_id,
            remaining_ms=urgency.remaining_ms,
            is_overdue=urgency.is_overdue,
            text=format_countdown(urgency.remaining_ms),
            tier=urgency.tier,
            colors=URGENCY_COLORS[urgency.tier],
        )

    # --- Selection ---

    def selection(self, kind: SelectionKind) -> Selection:
        return self.route_selection if SelectionKind(kind) == SelectionKind.ROUTE else self.bulk_selection

    def _eligible(self, kind: SelectionKind) -> list[str]:
        if SelectionKind(kind) == SelectionKind.ROUTE:
            return self.selectable_for_route()
        return [t.id for t in self.store.all() if t.status != TaskStatus.DELIVERED]

    def toggle_selection(self, kind: SelectionKind, task_id: str) -> bool:
        """Flip one task in a selection. Returns whether it is selected afterwards."""
        if self.store.get(task_id) is None:
            raise TaskNotFoundError(task_id)
        selection = self.selection(kind)
        if task_id not in selection and task_id not in self._eligible(kind):
            raise SelectionError(f"Task {task_id} cannot be selected for {SelectionKind(kind).value}")
        return selection.toggle(task_id)

    def toggle_all_selection(self, kind: SelectionKind, task_ids: Optional[Iterable[str]] = None) -> None:
        """Select every eligible task, or clear them if all were selected already."""
        eligible = self._eligible(kind)
        if task_ids is not None:
            allowed = set(eligible)
            eligible = [i for i in task_ids if i in allowed]
        self.selection(kind).toggle_all(eligible)

    def clear_selection(self, kind: SelectionKind) -> None:
        self.selection(kind).clear()

    def selection_state(self) -> SelectionState:
        return SelectionState(
            route_ids=self.route_selection.ids(),
            bulk_ids=self.bulk_selection.ids(),
            selectable_for_route=self.selectable_for_route(),
            has_pending_selected=self.has_pending_selected(),
            has_picked_up_selected=self.has_picked_up_selected(),
        )

    # --- Route ---

    def plan_route(
        self,
        origin: Optional[Coordinates] = None,
        task_ids: Optional[Iterable[str]] = None,
    ) -> Union[RouteResult, RouteError]:
        """Sequence the given tasks, or the current route selection."""
        ids = list(task_ids) if task_ids is not None else self.route_selection.ids()
        tasks = [t for t in (self.store.get(i) for i in ids) if t is not None]
        return sequence(origin, waypoints_from_tasks(tasks), self.settings.navigation_base_url)

    def open_navigation(self, route: RouteResult, opener: Callable[[str], object]) -> None:
        """Hand the route to an external map application."""
        logger.info("Opening navigation for driver %s: %s", self.driver_id, route.summary())
        opener(route.navigation_url)

    def selectable_for_route(self) -> list[str]:
        return [t.id for t in self.store.all() if t.coordinates is not None]

    # --- Bulk ---

    async def apply_bulk(
        self,
        transition: TaskStatus,
        task_ids: Optional[Iterable[str]] = None,
        proof: Optional[ProofPayload] = None,
    ) -> BulkResult:
        """Apply to the given ids, or to the bulk selection, then drop the confirmed ids from it."""
        ids = list(task_ids) if task_ids is not None else self.bulk_selection.ids()
        result = await self.bulk.apply_bulk(ids, transition, proof)
        for task_id in result.succeeded_ids:
            if task_id in self.bulk_selection:
                self.bulk_selection.toggle(task_id)
        return result

    def _selected_tasks(self):
        tasks = (self.store.get(i) for i in self.bulk_selection.ids())
        return [t for t in tasks if t is not None]

    def has_pending_selected(self) -> bool:
        return any(t.is_pending for t in self._selected_tasks())

    def has_picked_up_selected(self) -> bool:
        return any(t.status == TaskStatus.PICKED_UP for t in self._selected_tasks())


class SessionRegistry:
    """Active sessions by driver id, with explicit open/close."""

    def __init__(self, backend: TaskBackend, settings: Optional[Settings] = None):
        self.backend = backend
        self.settings = settings or Settings()
        self.sessions: dict[str, DriverSession] = {}

    async def open(self, driver_id: str) -> DriverSession:
        session = self.sessions.get(driver_id)
        if session is not None:
            return session
        session = DriverSession(driver_id, self.backend, self.settings)
        self.sessions[driver_id] = session
        await session.start()
        return session

    def get(self, driver_id: str) -> DriverSession:
        session = self.sessions.get(driver_id)
        if session is None:
            raise SessionNotFoundError(driver_id)
        return session

    async def close(self, driver_id: str) -> bool:
        session = self.sessions.pop(driver_id, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def close_all(self) -> None:
        for driver_id in list(self.sessions):
            await self.close(driver_id)
