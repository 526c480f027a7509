"""
Deadline and urgency classification for pickup tasks.

A task must be picked up within ``deadline_hours`` of its creation. The tier
is a share of that window, not an absolute threshold, so a 24h and a 72h
company window both turn urgent in their last quarter. The same ``classify``
feeds list sorting, tier counts and the live countdown.

Nothing here keeps time. Callers pass ``now`` and re-run on their own tick.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from models import Task, UrgencyResult, UrgencyTier

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
DEFAULT_DEADLINE_HOURS = 48.0
# ten years; longer or non-finite windows are clamped to it
MAX_DEADLINE_HOURS = 24 * 365 * 10.0

OVERDUE_PREFIX = "Kasni"

URGENT_SHARE = 0.25
WARNING_SHARE = 0.50

URGENCY_COLORS = {
    UrgencyTier.URGENT: {"bg": "#FEE2E2", "text": "#EF4444"},
    UrgencyTier.WARNING: {"bg": "#FEF3C7", "text": "#F59E0B"},
    UrgencyTier.NORMAL: {"bg": "#D1FAE5", "text": "#10B981"},
}


def _split(abs_ms: int) -> tuple[int, int]:
    hours = abs_ms // MS_PER_HOUR
    minutes = (abs_ms % MS_PER_HOUR) // MS_PER_MINUTE
    return hours, minutes


def format_duration(abs_ms: int) -> str:
    """Days and hours from one day up, hours and minutes below."""
    hours, minutes = _split(abs_ms)
    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h"
    return f"{hours}h {minutes}m"


def format_countdown(remaining_ms: int) -> str:
    """Compact text for a single live countdown ticking every second."""
    if remaining_ms <= 0:
        hours, minutes = _split(abs(remaining_ms))
        if hours >= 24:
            return f"-{hours // 24}d {hours % 24}h"
        if hours > 0:
            return f"-{hours}h {minutes}m"
        return f"-{minutes}m"
    hours, minutes = _split(remaining_ms)
    return f"{hours}h {minutes}m"


def classify(created_at: datetime, deadline_hours: float, now: datetime) -> UrgencyResult:
    """Remaining time, display text and tier for one task at ``now``."""
    if math.isnan(deadline_hours) or deadline_hours > MAX_DEADLINE_HOURS:
        deadline_hours = MAX_DEADLINE_HOURS
    if deadline_hours <= 0:
        # no window at all: overdue since creation
        remaining_ms = min(round((created_at - now) / timedelta(milliseconds=1)), 0)
        return UrgencyResult(
            remaining_ms=remaining_ms,
            is_overdue=True,
            display_text=f"{OVERDUE_PREFIX} {format_duration(abs(remaining_ms))}",
            tier=UrgencyTier.URGENT,
        )

    deadline = created_at + timedelta(hours=deadline_hours)
    remaining_ms = round((deadline - now) / timedelta(milliseconds=1))
    is_overdue = remaining_ms <= 0

    if is_overdue:
        return UrgencyResult(
            remaining_ms=remaining_ms,
            is_overdue=True,
            display_text=f"{OVERDUE_PREFIX} {format_duration(abs(remaining_ms))}",
            tier=UrgencyTier.URGENT,
        )

    percent_left = remaining_ms / (deadline_hours * MS_PER_HOUR)
    if percent_left <= URGENT_SHARE:
        tier = UrgencyTier.URGENT
    elif percent_left <= WARNING_SHARE:
        tier = UrgencyTier.WARNING
    else:
        tier = UrgencyTier.NORMAL

    return UrgencyResult(
        remaining_ms=remaining_ms,
        is_overdue=False,
        display_text=format_duration(remaining_ms),
        tier=tier,
    )


def resolve_deadline_hours(task: Task, default_hours: Optional[float] = None) -> float:
    if task.deadline_hours is not None:
        return task.deadline_hours
    if default_hours is not None:
        return default_hours
    return DEFAULT_DEADLINE_HOURS


def classify_task(task: Task, now: datetime, default_hours: Optional[float] = None) -> UrgencyResult:
    return classify(task.created_at, resolve_deadline_hours(task, default_hours), now)
