"""Room membership for live-tracking sessions.

A room groups the connections following one service. Delivery is a
non-blocking put on each connection's outbound queue; a writer task per
connection drains it to the socket, so per-room order is the order in which
the relay handled the events.
"""

import asyncio
import datetime
import enum
import logging
import uuid
from dataclasses import dataclass, field

import orjson

from shuttle.config import settings
from shuttle.schemas.location import LiveLocation

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


class RoomState(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"


def encode_frame(event: str, payload) -> bytes:
    return orjson.dumps({"event": event, "data": payload})


@dataclass(eq=False)
class Connection:
    """One client session, tagged with the role it joined as."""

    role: Role = Role.PASSENGER
    user_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    queue: asyncio.Queue = field(
        default_factory=lambda: asyncio.Queue(maxsize=settings.connection_queue_size)
    )
    _closed: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def deliver(self, event: str, payload) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(encode_frame(event, payload))
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        self._closed.set()


@dataclass
class Room:
    service_id: str
    members: dict[str, Connection] = field(default_factory=dict)
    state: RoomState = RoomState.IDLE
    latest_location: LiveLocation | None = None
    location_updated_at: datetime.datetime | None = None

    def snapshot(self) -> dict:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "members": [
                {"id": c.id, "role": c.role.value, "user_id": c.user_id}
                for c in self.members.values()
            ],
            "latest_location": self.latest_location.wire() if self.latest_location else None,
            "location_updated_at": (
                self.location_updated_at.isoformat() if self.location_updated_at else None
            ),
        }


class RoomRegistry:
    """Tracks which connections belong to which service room."""

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}
        # connection id -> service ids it joined
        self._memberships: dict[str, set[str]] = {}
        self._idle_listeners: list = []

    def on_idle(self, callback) -> None:
        """Call ``callback(service_id)`` when a room stops or is dropped."""
        self._idle_listeners.append(callback)

    def _notify_idle(self, service_id: str) -> None:
        for callback in self._idle_listeners:
            try:
                callback(service_id)
            except Exception:
                logger.exception("Idle listener failed for room %s", service_id)

    def join(self, conn: Connection, service_id: str) -> Room:
        room = self._rooms.get(service_id)
        if room is None:
            room = Room(service_id=service_id)
            self._rooms[service_id] = room
            logger.debug("Room %s created", service_id)
        room.members[conn.id] = conn
        self._memberships.setdefault(conn.id, set()).add(service_id)
        return room

    def leave(self, conn: Connection, service_id: str | None = None) -> list[str]:
        """Remove a connection from one room, or from every room it joined."""
        joined = self._memberships.get(conn.id, set())
        targets = [service_id] if service_id is not None else list(joined)
        left = []
        for sid in targets:
            room = self._rooms.get(sid)
            if room is None or room.members.pop(conn.id, None) is None:
                continue
            left.append(sid)
            joined.discard(sid)
            if not room.members:
                del self._rooms[sid]
                logger.debug("Room %s is empty, dropped", sid)
                self._notify_idle(sid)
        if not joined:
            self._memberships.pop(conn.id, None)
        return left

    def set_idle(self, service_id: str) -> Room | None:
        """Return a room to idle and forget its last driver location."""
        room = self._rooms.get(service_id)
        if room is None:
            return None
        room.state = RoomState.IDLE
        room.latest_location = None
        room.location_updated_at = None
        self._notify_idle(service_id)
        return room

    def room(self, service_id: str) -> Room | None:
        return self._rooms.get(service_id)

    def members(self, service_id: str) -> list[Connection]:
        room = self._rooms.get(service_id)
        return list(room.members.values()) if room else []

    def drivers(self, service_id: str) -> list[Connection]:
        return [c for c in self.members(service_id) if c.role is Role.DRIVER]

    def rooms_of(self, conn: Connection) -> set[str]:
        return set(self._memberships.get(conn.id, ()))

    def active_rooms(self) -> list[Room]:
        return [r for r in self._rooms.values() if r.state is RoomState.ACTIVE]

    def __len__(self) -> int:
        return len(self._rooms)

    def broadcast(
        self,
        service_id: str,
        event: str,
        payload=None,
        exclude: Connection | None = None,
    ) -> int:
        """Deliver an event to every room member except ``exclude``.

        Returns the number of recipients. An unknown room delivers to nobody.
        """
        room = self._rooms.get(service_id)
        if room is None:
            return 0

        sent = 0
        dead = []
        for conn in list(room.members.values()):
            if conn is exclude:
                continue
            if conn.deliver(event, payload):
                sent += 1
            else:
                dead.append(conn)
        for conn in dead:
            self.evict(conn)
        return sent

    def send_to_one(self, conn: Connection, event: str, payload=None) -> bool:
        if conn.deliver(event, payload):
            return True
        self.evict(conn)
        return False

    def evict(self, conn: Connection) -> None:
        """Drop a connection that cannot keep up or has gone away."""
        left = self.leave(conn)
        conn.close()
        if left:
            logger.warning("Evicted connection %s from rooms %s", conn.id, left)
