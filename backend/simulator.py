"""
In-memory dispatcher backend for DriverSync.
Holds raw assignment rows the way the persistence layer stores them, pushes
payload-free change notifications per driver, and applies status transitions.
Used by the API server for demos and by tests, with failure injection.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from adapters import parse_rows
from backend_client import ChangeCallback, Unsubscribe
from exceptions import FetchError, TransitionError
from models import PENDING_STATUSES, ProofPayload, Task, TaskStatus

logger = logging.getLogger(__name__)

# Belgrade city center, where demo pickups are scattered
DEMO_CENTER = (44.8125, 20.4612)
DEMO_SPREAD_DEG = 0.06

DEMO_CLIENTS = [
    ("Pekara Sunce", "Bulevar kralja Aleksandra 12"),
    ("Market Plus", "Knez Mihailova 5"),
    ("Hotel Sava", "Brankova 20"),
    ("Restoran Dunav", "Karadjordjeva 44"),
    ("Skola Vuk", "Vojvode Stepe 101"),
    ("Apoteka Centar", "Takovska 9"),
    ("Stamparija Novi Dan", "Cara Dusana 61"),
    ("Magacin Zemun", "Glavna 3"),
]

WASTE_TYPES = ["cardboard", "plastic", "metal", "glass", "mixed"]

# server-side rule: what each target status may follow
_ALLOWED_FROM: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.IN_PROGRESS: (TaskStatus.ASSIGNED,),
    TaskStatus.PICKED_UP: PENDING_STATUSES,
    TaskStatus.DELIVERED: (TaskStatus.PICKED_UP,),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchSimulator:
    """
    Stands in for the remote task store.
    ``latency`` adds an await to every remote call so callers really yield.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.rows: dict[str, dict[str, Any]] = {}
        self.task_counter: int = 0
        self.request_counter: int = 0
        self._subscribers: dict[str, list[ChangeCallback]] = {}

        # Failure injection
        self.fail_transitions_for: set[str] = set()
        self.fail_next_fetches: int = 0

        # Call accounting
        self.fetch_calls: int = 0
        self.transition_calls: list[tuple[str, TaskStatus]] = []

    def _next_task_id(self) -> str:
        self.task_counter += 1
        return f"A-{self.task_counter:04d}"

    def _next_request_id(self) -> str:
        self.request_counter += 1
        return f"R-{self.request_counter:04d}"

    # --- Dispatcher side ---

    def assign_task(
        self,
        driver_id: str,
        request_id: Optional[str] = None,
        client_name: str = "",
        client_address: str = "",
        waste_type: str = "",
        fill_level: Optional[int] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        created_at: Optional[datetime] = None,
        max_pickup_hours: Optional[float] = None,
    ) -> dict[str, Any]:
        """Assign a pickup to a driver. Returns a copy of the stored row."""
        task_id = self._next_task_id()
        row = {
            "id": task_id,
            "driver_id": driver_id,
            "request_id": request_id or self._next_request_id(),
            "assignment_status": TaskStatus.ASSIGNED.value,
            "created_at": (created_at or _utcnow()).isoformat(),
            "latitude": latitude,
            "longitude": longitude,
            "client_name": client_name,
            "client_address": client_address,
            "waste_type": waste_type,
            "fill_level": fill_level,
            "max_pickup_hours": max_pickup_hours,
            "picked_up_at": None,
            "delivered_at": None,
        }
        self.rows[task_id] = row
        logger.info("Assigned %s (request %s) to driver %s", task_id, row["request_id"], driver_id)
        self._notify(driver_id)
        return dict(row)

    def unassign_task(self, task_id: str) -> bool:
        row = self.rows.pop(task_id, None)
        if row is None:
            return False
        logger.info("Unassigned %s from driver %s", task_id, row["driver_id"])
        self._notify(row["driver_id"])
        return True

    def reassign_task(self, task_id: str, new_driver_id: str) -> Optional[dict[str, Any]]:
        """Move a pickup to another driver. The new assignment keeps the request id."""
        row = self.rows.get(task_id)
        if row is None:
            return None
        self.unassign_task(task_id)
        return self.assign_task(
            new_driver_id,
            request_id=row["request_id"],
            client_name=row["client_name"],
            client_address=row["client_address"],
            waste_type=row["waste_type"],
            fill_level=row["fill_level"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            created_at=datetime.fromisoformat(row["created_at"]),
            max_pickup_hours=row["max_pickup_hours"],
        )

    def seed_demo(self, driver_id: str, count: int = 8, rng: Optional[random.Random] = None) -> list[str]:
        """Scatter pickups around the city with creation times over the last 60 hours."""
        rng = rng or random.Random()
        now = _utcnow()
        ids = []
        for i in range(count):
            name, address = DEMO_CLIENTS[i % len(DEMO_CLIENTS)]
            has_location = rng.random() > 0.1  # some requests are never geocoded
            row = self.assign_task(
                driver_id,
                client_name=name,
                client_address=address,
                waste_type=rng.choice(WASTE_TYPES),
                fill_level=rng.choice([25, 50, 75, 100]),
                latitude=DEMO_CENTER[0] + rng.uniform(-DEMO_SPREAD_DEG, DEMO_SPREAD_DEG) if has_location else None,
                longitude=DEMO_CENTER[1] + rng.uniform(-DEMO_SPREAD_DEG, DEMO_SPREAD_DEG) if has_location else None,
                created_at=now - timedelta(hours=rng.uniform(0, 60)),
            )
            ids.append(row["id"])
        return ids

    def get_row(self, task_id: str) -> Optional[dict[str, Any]]:
        row = self.rows.get(task_id)
        return dict(row) if row else None

    # --- TaskBackend ---

    async def fetch_driver_tasks(self, driver_id: str) -> list[Task]:
        self.fetch_calls += 1
        await asyncio.sleep(self.latency)
        if self.fail_next_fetches > 0:
            self.fail_next_fetches -= 1
            raise FetchError(f"Simulated fetch failure for driver {driver_id}")
        active = [
            r for r in self.rows.values()
            if r["driver_id"] == driver_id and r["assignment_status"] != TaskStatus.DELIVERED.value
        ]
        return parse_rows(active)

    def subscribe_to_task_changes(self, driver_id: str, on_change: ChangeCallback) -> Unsubscribe:
        callbacks = self._subscribers.setdefault(driver_id, [])
        callbacks.append(on_change)

        def unsubscribe() -> None:
            if on_change in callbacks:
                callbacks.remove(on_change)

        return unsubscribe

    def subscriber_count(self, driver_id: str) -> int:
        return len(self._subscribers.get(driver_id, []))

    async def apply_task_transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        proof: Optional[ProofPayload] = None,
    ) -> None:
        new_status = TaskStatus(new_status)
        self.transition_calls.append((task_id, new_status))
        await asyncio.sleep(self.latency)

        if task_id in self.fail_transitions_for:
            raise TransitionError(task_id, "simulated backend failure")
        row = self.rows.get(task_id)
        if row is None:
            raise TransitionError(task_id, "not found")

        current = TaskStatus(row["assignment_status"])
        allowed = _ALLOWED_FROM.get(new_status, ())
        if current not in allowed:
            raise TransitionError(task_id, f"cannot go from {current.value} to {new_status.value}")

        now = _utcnow().isoformat()
        row["assignment_status"] = new_status.value
        if new_status == TaskStatus.PICKED_UP:
            row["picked_up_at"] = now
            row["pickup_proof_url"] = proof.photo_url if proof else None
        elif new_status == TaskStatus.DELIVERED:
            row["delivered_at"] = now
            row["delivery_proof_url"] = proof.photo_url if proof else None
            row["driver_weight"] = proof.weight if proof else None
            row["driver_weight_unit"] = proof.weight_unit if proof else None

        self._notify(row["driver_id"])

    def _notify(self, driver_id: str) -> None:
        for callback in list(self._subscribers.get(driver_id, [])):
            try:
                callback()
            except Exception:
                logger.exception("Change subscriber failed for driver %s", driver_id)
