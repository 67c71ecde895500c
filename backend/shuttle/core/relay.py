"""Room-scoped location relay between a service's driver and its passengers."""

import asyncio
import datetime
import logging

import orjson
from pydantic import ValidationError

from shuttle.core.errors import RelayProtocolError
from shuttle.core.rooms import Connection, Role, Room, RoomRegistry, RoomState
from shuttle.schemas.location import (
    Envelope,
    LiveLocation,
    PassengerLocation,
    SendLocation,
    ServiceRef,
)

logger = logging.getLogger(__name__)

# Inbound events
JOIN_SERVICE = "joinService"
LEAVE_SERVICE = "leaveService"
SEND_LOCATION = "sendLocation"
STOP_SERVICE = "stopService"
REQUEST_PASSENGER_LOCATION = "requestPassengerLocation"
PASSENGER_LOCATION = "passengerLocation"

# Outbound events
RECEIVE_LOCATION = "receiveLocation"
SERVICE_STOPPED = "serviceStopped"
SHARE_LOCATION_REQUEST = "shareLocationRequest"
DRIVER_RECEIVE_PASSENGER_LOCATION = "driverReceivePassengerLocation"
ROUTE_UPDATED = "routeUpdated"
ERROR = "error"

DRIVER_ONLY_EVENTS = {SEND_LOCATION, STOP_SERVICE, REQUEST_PASSENGER_LOCATION}

LOCATION_REQUEST_TITLE = "Konum İsteği 📍"
LOCATION_REQUEST_BODY = "Sürücü konumunuzu paylaşmanızı istiyor."
LOCATION_REQUEST_TYPE = "PASSENGER_LOCATION_REQUEST"


class LocationRelay:
    """Handles relay events and fans them out through a RoomRegistry.

    ``store`` provides the service roster and ``push`` delivers the durable
    fallback notification for location requests; both are optional so the
    relay can run without them (requests then reach connected clients only).
    """

    def __init__(self, registry: RoomRegistry, store=None, push=None) -> None:
        self.registry = registry
        self.store = store
        self.push = push
        self._tasks: set[asyncio.Task] = set()
        self._handlers = {
            JOIN_SERVICE: self._on_join,
            LEAVE_SERVICE: self._on_leave,
            SEND_LOCATION: self._on_send_location,
            STOP_SERVICE: self._on_stop,
            REQUEST_PASSENGER_LOCATION: self._on_request_location,
            PASSENGER_LOCATION: self._on_passenger_location,
        }

    # --- operations -------------------------------------------------------

    def join_service(self, conn: Connection, service_id: str) -> Room:
        room = self.registry.join(conn, service_id)
        logger.info(
            "%s %s (%s) joined service %s",
            conn.role.value, conn.user_id or "-", conn.id, service_id,
        )
        return room

    def leave_service(self, conn: Connection, service_id: str) -> None:
        self.registry.leave(conn, service_id)

    def send_location(self, conn: Connection, service_id: str, location: LiveLocation) -> int:
        """Broadcast the driver's position to the rest of the room."""
        room = self.registry.room(service_id)
        if room is None:
            logger.debug("Location for service %s with no room, dropped", service_id)
            return 0
        room.latest_location = location
        room.location_updated_at = datetime.datetime.now(datetime.timezone.utc)
        if room.state is RoomState.IDLE:
            room.state = RoomState.ACTIVE
            logger.info("Service %s is now live", service_id)
        return self.registry.broadcast(service_id, RECEIVE_LOCATION, location.wire(), exclude=conn)

    def stop_service(self, conn: Connection, service_id: str) -> int:
        """Tell every member the trip ended; the room goes back to idle."""
        if self.registry.set_idle(service_id) is None:
            return 0
        sent = self.registry.broadcast(service_id, SERVICE_STOPPED)
        logger.info("Service %s stopped, notified %d members", service_id, sent)
        return sent

    def request_passenger_location(
        self, conn: Connection, service_id: str
    ) -> asyncio.Task | None:
        """Ask passengers to share their location.

        Connected members get ``shareLocationRequest`` immediately; every
        rostered passenger is then push-notified in a background task, which
        is returned so callers may await it. The relay never does.
        """
        sent = self.registry.broadcast(service_id, SHARE_LOCATION_REQUEST, exclude=conn)
        logger.info("Location request sent to %d members of service %s", sent, service_id)

        if self.store is None or self.push is None:
            return None
        task = asyncio.get_running_loop().create_task(self.notify_roster(service_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def passenger_location(
        self,
        conn: Connection,
        service_id: str,
        passenger_id: str,
        location: LiveLocation,
    ) -> int:
        """Deliver a passenger's shared location to the room's driver."""
        payload = {"passengerId": passenger_id, "location": location.wire()}
        drivers = self.registry.drivers(service_id)
        if not drivers:
            # Untagged rooms: the rest of the room stands in for the driver
            return self.registry.broadcast(
                service_id, DRIVER_RECEIVE_PASSENGER_LOCATION, payload, exclude=conn
            )
        sent = 0
        for driver in drivers:
            if driver is not conn and self.registry.send_to_one(
                driver, DRIVER_RECEIVE_PASSENGER_LOCATION, payload
            ):
                sent += 1
        return sent

    def disconnect(self, conn: Connection) -> None:
        left = self.registry.leave(conn)
        conn.close()
        logger.info("Connection %s closed, left %s", conn.id, left or "no rooms")

    async def notify_roster(self, service_id: str) -> list:
        """Push-notify every rostered passenger; one failure never blocks the rest."""
        try:
            roster = await self.store.find_service_roster(service_id)
        except Exception:
            logger.exception("Failed to load roster for service %s", service_id)
            return []

        results = await asyncio.gather(
            *(
                self.push.notify(
                    passenger_id,
                    LOCATION_REQUEST_TITLE,
                    LOCATION_REQUEST_BODY,
                    LOCATION_REQUEST_TYPE,
                    {"serviceId": service_id, "action": "SHARE_LOCATION"},
                )
                for passenger_id in roster
            ),
            return_exceptions=True,
        )
        for passenger_id, result in zip(roster, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Location request push to %s failed: %s", passenger_id, result
                )
        return results

    async def close(self) -> None:
        """Wait for outstanding notification tasks."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # --- wire dispatch ----------------------------------------------------

    def dispatch(self, conn: Connection, raw: bytes | str):
        """Decode one frame from ``conn`` and run the matching operation."""
        try:
            envelope = Envelope.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            raise RelayProtocolError(f"Malformed frame: {e}") from e

        handler = self._handlers.get(envelope.event)
        if handler is None:
            raise RelayProtocolError(f"Unknown event {envelope.event!r}")
        if envelope.event in DRIVER_ONLY_EVENTS and conn.role is not Role.DRIVER:
            raise RelayProtocolError(f"{envelope.event} is reserved for drivers")
        try:
            return handler(conn, envelope.data)
        except ValidationError as e:
            raise RelayProtocolError(f"Invalid {envelope.event} payload: {e}") from e

    def _on_join(self, conn: Connection, data):
        # Clients send either the bare id or {"serviceId": ...}
        if isinstance(data, str) and data:
            return self.join_service(conn, data)
        return self.join_service(conn, ServiceRef.model_validate(data).service_id)

    def _on_leave(self, conn: Connection, data):
        return self.leave_service(conn, ServiceRef.model_validate(data).service_id)

    def _on_send_location(self, conn: Connection, data):
        msg = SendLocation.model_validate(data)
        return self.send_location(conn, msg.service_id, msg.location)

    def _on_stop(self, conn: Connection, data):
        return self.stop_service(conn, ServiceRef.model_validate(data).service_id)

    def _on_request_location(self, conn: Connection, data):
        return self.request_passenger_location(conn, ServiceRef.model_validate(data).service_id)

    def _on_passenger_location(self, conn: Connection, data):
        msg = PassengerLocation.model_validate(data)
        return self.passenger_location(conn, msg.service_id, msg.passenger_id, msg.location)
