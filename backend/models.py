"""
Pydantic models for DriverSync pickup task coordination.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Enums ---

class TaskStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    TaskStatus.ASSIGNED: 0,
    TaskStatus.IN_PROGRESS: 1,
    TaskStatus.PICKED_UP: 2,
    TaskStatus.DELIVERED: 3,
}

PENDING_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    """Status only moves forward. Re-applying the same status is allowed."""
    return new.rank >= current.rank


class UrgencyTier(str, Enum):
    URGENT = "urgent"
    WARNING = "warning"
    NORMAL = "normal"


# --- Core Models ---

class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Task(BaseModel):
    """A pickup assignment visible to a driver. Keyed by ``id``, never ``request_id``."""

    model_config = ConfigDict(frozen=True)

    id: str
    request_id: str
    status: TaskStatus = TaskStatus.ASSIGNED
    created_at: datetime
    deadline_hours: Optional[float] = None  # None -> company setting
    coordinates: Optional[Coordinates] = None
    waste_type: str = ""
    client_name: str = ""
    client_address: str = ""
    fill_level: Optional[int] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES


class Waypoint(BaseModel):
    id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    name: str = ""
    address: str = ""


class UrgencyResult(BaseModel):
    remaining_ms: int
    is_overdue: bool
    display_text: str
    tier: UrgencyTier


# --- Route Models ---

class RouteResult(BaseModel):
    order: list[Waypoint]
    total_km: float
    navigation_url: str

    @property
    def stop_count(self) -> int:
        return len(self.order)

    def summary(self) -> str:
        noun = "stop" if self.stop_count == 1 else "stops"
        return f"{self.stop_count} {noun}, ~{self.total_km:.1f} km"


class RouteError(BaseModel):
    error: str


# --- Proof / Bulk Models ---

class ProofPayload(BaseModel):
    """One proof artifact shared by every task in a batch."""

    photo_url: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: str = "kg"

    @field_validator("weight", mode="before")
    @classmethod
    def _parse_weight(cls, value):
        # drivers type "12,5" on a local keyboard
        if isinstance(value, str):
            value = value.strip().replace(",", ".")
            if not value:
                return None
            value = float(value)
        if value is not None and (math.isnan(value) or value < 0):
            raise ValueError("weight must be a non-negative number")
        return value


class BulkResult(BaseModel):
    succeeded_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded_ids) + len(self.failed_ids)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed_ids

    def summary(self) -> str:
        return f"{len(self.succeeded_ids)} of {self.attempted} confirmed"


# --- API Models ---

class TaskView(BaseModel):
    task: Task
    urgency: UrgencyResult
    countdown: str = ""
    colors: dict[str, str] = Field(default_factory=dict)


class CountdownFrame(BaseModel):
    """One tick of a single task's live countdown."""
    task_id: str
    remaining_ms: int
    is_overdue: bool
    text: str
    tier: UrgencyTier
    colors: dict[str, str]


class SelectionKind(str, Enum):
    ROUTE = "route"
    BULK = "bulk"


class ToggleRequest(BaseModel):
    task_id: str


class ToggleAllRequest(BaseModel):
    task_ids: Optional[list[str]] = None  # None -> every eligible task


class SelectionState(BaseModel):
    route_ids: list[str]
    bulk_ids: list[str]
    selectable_for_route: list[str]
    has_pending_selected: bool
    has_picked_up_selected: bool


class TaskStats(BaseModel):
    pending: int = 0
    picked_up: int = 0
    urgent: int = 0
    warning: int = 0
    normal: int = 0


class TaskListResponse(BaseModel):
    driver_id: str
    pending: list[TaskView]
    picked_up: list[TaskView]
    stats: TaskStats
    loading: bool = False
    refreshing: bool = False
    last_synced_at: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RouteRequest(BaseModel):
    task_ids: Optional[list[str]] = None  # None -> current route selection
    origin: Optional[Coordinates] = None


class BulkRequest(BaseModel):
    task_ids: Optional[list[str]] = None  # None -> current bulk selection
    transition: TaskStatus
    proof: Optional[ProofPayload] = None


class BulkResponse(BaseModel):
    succeeded_ids: list[str]
    failed_ids: list[str]
    message: str


class AssignTaskRequest(BaseModel):
    driver_id: str
    request_id: Optional[str] = None
    client_name: str = ""
    client_address: str = ""
    waste_type: str = ""
    fill_level: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: Optional[datetime] = None
    max_pickup_hours: Optional[float] = None
