"""Greedy nearest-neighbour visiting order for pending pickups.

The order is a heuristic: it never backtracks, so the total path can be
longer than the optimal tour. Road geometry for the chosen order comes from
the routing client; when that fails the plan degrades to straight lines
between the ordered points.
"""

import asyncio
import logging
from dataclasses import dataclass

from shuttle.config import settings
from shuttle.core.geo import distance_between, format_distance, format_duration, travel_seconds
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import Passenger, RoutePlan

logger = logging.getLogger(__name__)


def _point(obj) -> LatLon:
    return LatLon(latitude=obj.latitude, longitude=obj.longitude)


@dataclass
class RouteOrder:
    order: list[Passenger]
    last_point: LatLon


def path_length_m(origin: LatLon, points: list) -> float:
    """Sum of haversine legs from origin through points in sequence."""
    total = 0.0
    current = origin
    for p in points:
        total += distance_between(current, p)
        current = p
    return total


def greedy_order(
    origin: LatLon,
    pending: list[Passenger],
    destination: LatLon | None = None,
) -> RouteOrder:
    """Visit the closest remaining pickup next, starting from origin.

    Ties go to the pickup that comes first in ``pending``. The destination,
    if any, is appended after every pickup and never competes with them.
    """
    remaining = list(pending)
    ordered: list[Passenger] = []
    current = origin

    while remaining:
        nearest_idx = 0
        min_dist = float("inf")
        for i, p in enumerate(remaining):
            d = distance_between(current, p.pickup_location)
            if d < min_dist:
                min_dist = d
                nearest_idx = i
        nxt = remaining.pop(nearest_idx)
        ordered.append(nxt)
        current = nxt.pickup_location

    if destination is not None:
        last = destination
    elif ordered:
        last = ordered[-1].pickup_location
    else:
        last = origin
    return RouteOrder(order=ordered, last_point=_point(last))


class RouteOptimizer:
    """Orders pickups and fetches road geometry for the result."""

    def __init__(self, routing=None, timeout: float | None = None) -> None:
        self.routing = routing
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds

    def order(
        self,
        origin: LatLon,
        pending: list[Passenger],
        destination: LatLon | None = None,
    ) -> RouteOrder:
        return greedy_order(origin, pending, destination)

    async def plan(
        self,
        origin: LatLon,
        pending: list[Passenger],
        destination: LatLon | None = None,
        optimize_waypoints: bool = False,
    ) -> RoutePlan:
        """Greedy order plus road geometry, distance and duration.

        With ``optimize_waypoints`` the routing service may reorder the
        pickups; its order then replaces the greedy proposal.
        """
        route_order = self.order(origin, pending, destination)
        order = route_order.order
        if not order and destination is None:
            return RoutePlan(order=[], last_point=_point(origin), source="none")

        stops = [p.pickup_location for p in order]
        if destination is not None:
            end, waypoints = destination, stops
        else:
            end, waypoints = stops[-1], stops[:-1]

        road = None
        if self.routing is not None:
            try:
                road = await asyncio.wait_for(
                    self.routing.get_route(
                        _point(origin),
                        _point(end),
                        [_point(w) for w in waypoints],
                        optimize_waypoints,
                    ),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Road routing timed out after %.1fs, using straight lines", self.timeout)
            except Exception:
                logger.exception("Road routing failed, using straight lines")

        if road is None:
            return self._straight_line_plan(origin, order, destination, route_order.last_point)

        optimized = False
        if optimize_waypoints and road.waypoint_order is not None:
            reordered = [order[i] for i in road.waypoint_order]
            if destination is None:
                reordered.append(order[-1])
            optimized = reordered != order
            order = reordered

        return RoutePlan(
            order=order,
            last_point=route_order.last_point,
            points=road.points,
            distance_m=road.distance_m,
            duration_s=road.duration_s,
            distance_text=road.distance_text,
            duration_text=road.duration_text,
            source="routing",
            optimized=optimized,
        )

    @staticmethod
    def _straight_line_plan(
        origin: LatLon,
        order: list[Passenger],
        destination: LatLon | None,
        last_point: LatLon,
    ) -> RoutePlan:
        points = [_point(origin)] + [_point(p.pickup_location) for p in order]
        if destination is not None:
            points.append(_point(destination))
        distance = path_length_m(points[0], points[1:])
        duration = travel_seconds(distance)
        return RoutePlan(
            order=order,
            last_point=last_point,
            points=points,
            distance_m=distance,
            duration_s=duration,
            distance_text=format_distance(distance),
            duration_text=format_duration(duration),
            source="haversine",
        )
