import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from exceptions import FetchError, TransitionError  # noqa: E402
from models import Coordinates, Task, TaskStatus  # noqa: E402

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def make_task(task_id, status=TaskStatus.ASSIGNED, created_at=T0, coords=None, **kw):
    return Task(
        id=task_id,
        request_id=kw.pop("request_id", f"req-{task_id}"),
        status=status,
        created_at=created_at,
        coordinates=Coordinates(lat=coords[0], lng=coords[1]) if coords else None,
        **kw,
    )


class FakeBackend:
    """Scripted TaskBackend. ``tasks`` is the server snapshot returned by fetches."""

    def __init__(self, tasks=None):
        self.tasks = list(tasks or [])
        self.fetch_calls = 0
        self.fetch_delay = 0.0
        self.fail_fetches = 0
        self.probe = None
        self.callbacks = []
        self.unsubscribe_calls = 0
        self.fail_ids = set()
        self.transitions = []

    async def fetch_driver_tasks(self, driver_id):
        self.fetch_calls += 1
        if self.probe:
            self.probe()
        snapshot = list(self.tasks)
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise FetchError("network down")
        return snapshot

    def subscribe_to_task_changes(self, driver_id, on_change):
        self.callbacks.append(on_change)

        def unsubscribe():
            self.unsubscribe_calls += 1
            if on_change in self.callbacks:
                self.callbacks.remove(on_change)

        return unsubscribe

    def emit(self):
        for cb in list(self.callbacks):
            cb()

    async def apply_task_transition(self, task_id, new_status, proof=None):
        self.transitions.append((task_id, new_status, proof))
        await asyncio.sleep(0)
        if task_id in self.fail_ids:
            raise TransitionError(task_id, "rejected")


@pytest.fixture
def fake_backend():
    return FakeBackend()
