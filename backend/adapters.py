"""
Adapters that turn raw backend rows into validated Task models.
Malformed fields are rejected or defaulted here once, so the core never
deals with missing keys or string-typed numbers.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from deadline import MAX_DEADLINE_HOURS
from exceptions import TaskParseError
from geo import is_valid_coordinate
from models import Coordinates, Task, TaskStatus

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as e:
            raise TaskParseError(f"Bad timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_coordinates(lat: Any, lng: Any) -> Optional[Coordinates]:
    # not geocoded yet, or garbage from a manual entry
    if lat in (None, "") or lng in (None, ""):
        return None
    if not is_valid_coordinate(lat, lng):
        return None
    return Coordinates(lat=float(lat), lng=float(lng))


def _parse_window_hours(value: Any) -> Optional[float]:
    # None falls back to the company setting
    if value in (None, ""):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or not 0 < number <= MAX_DEADLINE_HOURS:
        return None
    return number


def _parse_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


class BaseAdapter:
    """Base class for backend row adapters."""

    source_name: str = ""

    def normalize(self, raw: dict[str, Any]) -> Task:
        raise NotImplementedError


class AssignmentRowAdapter(BaseAdapter):
    """
    Flat assignment row.
    Raw format:
      id: assignment id (task id)
      request_id: pickup request id
      assignment_status: "assigned" | "in_progress" | "picked_up" | "delivered"
      created_at: ISO timestamp of the pickup request
      latitude / longitude: float or numeric string, may be missing
      max_pickup_hours: company window, may be missing
    """

    source_name = "assignment_row"

    def normalize(self, raw: dict[str, Any]) -> Task:
        task_id = raw.get("id")
        if not task_id:
            raise TaskParseError("Row has no id")

        created_at = _parse_timestamp(raw.get("created_at"))
        if created_at is None:
            raise TaskParseError(f"Task {task_id} has no created_at")

        status_raw = raw.get("assignment_status") or raw.get("status") or TaskStatus.ASSIGNED.value
        try:
            status = TaskStatus(status_raw)
        except ValueError as e:
            raise TaskParseError(f"Task {task_id} has unknown status {status_raw!r}") from e

        try:
            return Task(
                id=str(task_id),
                request_id=str(raw.get("request_id") or task_id),
                status=status,
                created_at=created_at,
                deadline_hours=_parse_window_hours(raw.get("max_pickup_hours")),
                coordinates=_parse_coordinates(raw.get("latitude"), raw.get("longitude")),
                waste_type=raw.get("waste_type") or "",
                client_name=raw.get("client_name") or "",
                client_address=raw.get("client_address") or "",
                fill_level=_parse_int(raw.get("fill_level")),
                picked_up_at=_parse_timestamp(raw.get("picked_up_at")),
                delivered_at=_parse_timestamp(raw.get("delivered_at")),
            )
        except ValidationError as e:
            raise TaskParseError(f"Task {task_id} is malformed: {e}") from e


class NestedRequestAdapter(BaseAdapter):
    """
    Assignment row with the pickup request embedded.
    Raw format:
      id, status, picked_up_at, delivered_at: assignment columns
      request: {id, created_at, latitude, longitude, client_name, ...}
    """

    source_name = "nested_request"

    def normalize(self, raw: dict[str, Any]) -> Task:
        request = raw.get("request") or {}
        flat = dict(request)
        flat.pop("status", None)  # request status is not the assignment status
        flat.update({
            "id": raw.get("id"),
            "request_id": request.get("id"),
            "assignment_status": raw.get("status"),
            "picked_up_at": raw.get("picked_up_at"),
            "delivered_at": raw.get("delivered_at"),
        })
        return ADAPTERS["assignment_row"].normalize(flat)


# Adapter registry
ADAPTERS: dict[str, BaseAdapter] = {
    "assignment_row": AssignmentRowAdapter(),
    "nested_request": NestedRequestAdapter(),
}


def get_adapter(source: str) -> BaseAdapter:
    """Get the adapter for a given row shape."""
    adapter = ADAPTERS.get(source)
    if not adapter:
        raise ValueError(f"Unknown row source: {source}")
    return adapter


def parse_rows(rows: Iterable[dict[str, Any]], source: str = "assignment_row") -> list[Task]:
    """Normalize rows, skipping the ones that cannot be parsed."""
    adapter = get_adapter(source)
    tasks = []
    for raw in rows:
        try:
            tasks.append(adapter.normalize(raw))
        except TaskParseError as e:
            logger.warning("Skipping task row: %s", e)
    return tasks
