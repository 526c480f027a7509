"""
Route sequencing for a driver's selected pickups.

Greedy nearest-neighbor over Haversine distances: from the current position,
always step to the closest unvisited stop. O(n^2) in the stop count, which is
one driver's active tasks. The tour is fast, deterministic and not optimal.

Two origins are in play and they may differ:
  * the algorithm origin orders the stops and drives ``total_km``. When the
    caller has no position it is the first valid stop.
  * the URL origin is only set when the caller supplied one. Otherwise the
    map application resolves the driver's current location itself.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Union
from urllib.parse import urlencode

from geo import haversine_km, is_valid_coordinate
from models import Coordinates, RouteError, RouteResult, Task, Waypoint

logger = logging.getLogger(__name__)

DEFAULT_NAVIGATION_BASE_URL = "https://www.google.com/maps/dir/"
NO_VALID_STOPS_MESSAGE = "No requests with valid coordinates"
UNKNOWN_CLIENT = "Unknown client"


def waypoints_from_tasks(tasks: Iterable[Task]) -> list[Waypoint]:
    """Project tasks to waypoints. Tasks without coordinates never enter a route."""
    return [
        Waypoint(
            id=t.id,
            lat=t.coordinates.lat,
            lng=t.coordinates.lng,
            name=t.client_name or UNKNOWN_CLIENT,
            address=t.client_address,
        )
        for t in tasks
        if t.coordinates is not None
    ]


def nearest_neighbor(origin: Coordinates, waypoints: list[Waypoint]) -> list[Waypoint]:
    """Order waypoints greedily. Ties go to the earliest waypoint in input order."""
    remaining = list(waypoints)
    ordered: list[Waypoint] = []
    cur_lat, cur_lng = origin.lat, origin.lng

    while remaining:
        nearest_idx = 0
        nearest_dist = float("inf")
        for i, wp in enumerate(remaining):
            dist = haversine_km(cur_lat, cur_lng, wp.lat, wp.lng)
            if dist < nearest_dist:
                nearest_dist = dist
                nearest_idx = i
        nearest = remaining.pop(nearest_idx)
        ordered.append(nearest)
        cur_lat, cur_lng = nearest.lat, nearest.lng

    return ordered


def route_distance(origin: Optional[Coordinates], order: list[Waypoint]) -> float:
    """Sum of legs origin -> stop1 -> stop2 ... in km. 0 without an origin."""
    if origin is None or not order:
        return 0.0
    total = 0.0
    cur_lat, cur_lng = origin.lat, origin.lng
    for wp in order:
        total += haversine_km(cur_lat, cur_lng, wp.lat, wp.lng)
        cur_lat, cur_lng = wp.lat, wp.lng
    return total


def build_navigation_url(
    origin: Optional[Coordinates],
    order: list[Waypoint],
    base_url: str = DEFAULT_NAVIGATION_BASE_URL,
) -> str:
    """Driving directions ending at the last stop, with earlier stops as waypoints."""
    if not order:
        raise ValueError("navigation needs at least one stop")

    destination = order[-1]
    params: dict[str, str] = {"api": "1"}
    if origin is not None:
        params["origin"] = f"{origin.lat},{origin.lng}"
    params["destination"] = f"{destination.lat},{destination.lng}"
    params["travelmode"] = "driving"
    if len(order) > 1:
        params["waypoints"] = "|".join(f"{wp.lat},{wp.lng}" for wp in order[:-1])

    return f"{base_url}?{urlencode(params, safe=',|')}"


def sequence(
    origin: Optional[Coordinates],
    stops: list[Waypoint],
    base_url: str = DEFAULT_NAVIGATION_BASE_URL,
) -> Union[RouteResult, RouteError]:
    """Visiting order, total distance and navigation URL for the given stops."""
    if origin is not None and not is_valid_coordinate(origin.lat, origin.lng):
        logger.warning("Ignoring invalid route origin %s,%s", origin.lat, origin.lng)
        origin = None
    valid = [wp for wp in stops if is_valid_coordinate(wp.lat, wp.lng)]
    if len(valid) < len(stops):
        logger.debug("Dropped %d stops without valid coordinates", len(stops) - len(valid))
    if not valid:
        return RouteError(error=NO_VALID_STOPS_MESSAGE)

    if len(valid) == 1:
        order = valid
        total_km = route_distance(origin, order)
    else:
        effective_origin = origin or Coordinates(lat=valid[0].lat, lng=valid[0].lng)
        order = nearest_neighbor(effective_origin, valid)
        total_km = route_distance(effective_origin, order)

    return RouteResult(
        order=order,
        total_km=total_km,
        navigation_url=build_navigation_url(origin, order, base_url),
    )
