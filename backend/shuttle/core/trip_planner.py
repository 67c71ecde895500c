"""Periodic route recomputation for live services."""

import logging

from shuttle.core.attendance import pending_pickups, utc_today
from shuttle.core.relay import ROUTE_UPDATED
from shuttle.core.rooms import RoomRegistry
from shuttle.core.route_optimizer import RouteOptimizer
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import RoutePlan

logger = logging.getLogger(__name__)


class TripPlanner:
    """Builds route plans from the store and pushes them to drivers."""

    def __init__(
        self,
        registry: RoomRegistry,
        store,
        optimizer: RouteOptimizer,
        today=utc_today,
    ) -> None:
        self.registry = registry
        self.store = store
        self.optimizer = optimizer
        self._today = today

    async def plan_for(
        self,
        service_id: str,
        origin: LatLon,
        optimize_waypoints: bool = False,
    ) -> RoutePlan:
        today = self._today()
        service = await self.store.find_service_by_id(service_id)
        passengers = await self.store.find_passengers(service_id)
        attendance = await self.store.find_attendance(service_id, today)
        pending = pending_pickups(passengers, attendance, today)
        return await self.optimizer.plan(
            origin, pending, service.destination, optimize_waypoints
        )

    async def refresh_routes(self) -> int:
        """Recompute the plan of every live room and send it to its driver."""
        refreshed = 0
        for room in self.registry.active_rooms():
            drivers = self.registry.drivers(room.service_id)
            if room.latest_location is None or not drivers:
                continue
            try:
                plan = await self.plan_for(room.service_id, room.latest_location)
            except Exception:
                logger.exception("Route refresh failed for service %s", room.service_id)
                continue
            payload = plan.model_dump(mode="json")
            for driver in drivers:
                self.registry.send_to_one(driver, ROUTE_UPDATED, payload)
            refreshed += 1
        if refreshed:
            logger.debug("Refreshed routes for %d live services", refreshed)
        return refreshed
