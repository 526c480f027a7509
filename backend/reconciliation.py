"""
Keeps a driver's TaskStore in step with the backend.

Three triggers feed one fetch-and-replace action:
  * initial load on session start, the only fetch that shows a loader
  * change-feed events, debounced so a burst collapses into one fetch
  * a fixed poll as fallback for push events that never arrived

Every fetch replaces the store with the full snapshot. Overlapping fetches
need no merge: whichever finishes last wins, and each is a consistent
snapshot. Failures are logged and left to the next trigger.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Coroutine, Optional

from backend_client import TaskBackend, Unsubscribe
from task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_POLL_INTERVAL_SECONDS = 120.0


class DebounceState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class Debouncer:
    """
    idle -> pending(timer) -> idle.
    A trigger while pending restarts the quiet period instead of queueing.
    """

    def __init__(self, delay: float, action: Callable[[], None]):
        self.delay = delay
        self._action = action
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> DebounceState:
        return DebounceState.PENDING if self._handle is not None else DebounceState.IDLE

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._action()


class ReconciliationLoop:
    """Push/poll hybrid sync for one driver session. Use ``start()``/``stop()``."""

    def __init__(
        self,
        driver_id: str,
        store: TaskStore,
        backend: TaskBackend,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.driver_id = driver_id
        self.store = store
        self.backend = backend
        self.poll_interval_seconds = poll_interval_seconds

        # Observable state for the caller
        self.loading: bool = False
        self.refreshing: bool = False
        self.last_synced_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.fetch_count: int = 0

        self._running = False
        self._generation = 0  # bumped on start/stop; older responses are stale
        self._unsubscribe: Optional[Unsubscribe] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._debouncer = Debouncer(debounce_seconds, self._on_debounce_fired)
        self._debounced_fetch: Optional[asyncio.Task] = None
        self._refetch_after_current = False
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def debounce_pending(self) -> bool:
        return self._debouncer.pending

    # --- Lifecycle ---

    async def start(self) -> None:
        """Subscribe, start polling, then run the initial load with a loader."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        generation = self._generation

        self._unsubscribe = self.backend.subscribe_to_task_changes(self.driver_id, self._on_change)
        self._poll_task = asyncio.create_task(self._poll_loop(generation))
        logger.info("Reconciliation started for driver %s", self.driver_id)

        await self._load(generation, show_loader=True)

    async def stop(self) -> None:
        """Tear down subscription and timers. In-flight fetches finish but are dropped."""
        if not self._running:
            return
        self._running = False
        self._generation += 1
        self.loading = False
        self.refreshing = False

        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception:
                logger.exception("Unsubscribe failed for driver %s", self.driver_id)
            self._unsubscribe = None

        self._debouncer.cancel()
        self._refetch_after_current = False

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        logger.info("Reconciliation stopped for driver %s", self.driver_id)

    async def refresh(self) -> bool:
        """Pull-to-refresh. Shows ``refreshing``, never ``loading``."""
        if not self._running:
            return False
        self.refreshing = True
        try:
            return await self._load(self._generation)
        finally:
            self.refreshing = False

    async def wait_idle(self) -> None:
        """Wait until every fetch started so far has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # --- Triggers ---

    def _on_change(self) -> None:
        if not self._running:
            return
        logger.debug("Change event for driver %s", self.driver_id)
        self._debouncer.trigger()

    def _on_debounce_fired(self) -> None:
        if not self._running:
            return
        if self._debounced_fetch is not None and not self._debounced_fetch.done():
            # one follow-up fetch covers every event seen while this one runs
            self._refetch_after_current = True
            return
        self._debounced_fetch = self._spawn(self._run_debounced(self._generation))

    async def _run_debounced(self, generation: int) -> None:
        while True:
            await self._load(generation)
            if not self._refetch_after_current or generation != self._generation:
                return
            self._refetch_after_current = False

    async def _poll_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            if generation != self._generation:
                return
            # shielded so stop() cancels the timer, not a fetch in flight
            await asyncio.shield(self._spawn(self._load(generation)))

    # --- Fetch ---

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _load(self, generation: int, show_loader: bool = False) -> bool:
        if show_loader:
            self.loading = True
        self.fetch_count += 1
        try:
            tasks = await self.backend.fetch_driver_tasks(self.driver_id)
        except Exception as e:
            logger.warning("Task fetch failed for driver %s: %s", self.driver_id, e)
            if generation == self._generation:
                self.last_error = str(e)
            return False
        finally:
            if show_loader and generation == self._generation:
                self.loading = False

        if generation != self._generation or not self._running:
            logger.debug("Dropping stale snapshot for driver %s", self.driver_id)
            return False

        self.store.replace_all(tasks)
        self.last_synced_at = datetime.now(timezone.utc)
        self.last_error = None
        return True
