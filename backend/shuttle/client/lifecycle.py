"""Client connection lifecycle for the relay: reconnect, backoff and re-join.

The relay forgets memberships when a socket drops, so after every
reconnection the client joins its rooms again. Location emitted while the
socket is down is kept (latest value only) and sent once the link is back;
other events are dropped, matching the relay's at-most-once delivery.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass

from shuttle.config import settings
from shuttle.core.errors import ConnectionFailedError

logger = logging.getLogger(__name__)

JOIN_SERVICE = "joinService"
LEAVE_SERVICE = "leaveService"
SEND_LOCATION = "sendLocation"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class BackoffPolicy:
    base_delay: float = 1.0
    step: float = 2.0
    max_delay: float = 10.0
    max_attempts: int = 5
    attempt_timeout: float = 10.0

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base_delay=settings.reconnect_base_delay,
            step=settings.reconnect_step,
            max_delay=settings.reconnect_max_delay,
            max_attempts=settings.reconnect_max_attempts,
            attempt_timeout=settings.reconnect_attempt_timeout,
        )

    def delay(self, retry: int) -> float:
        """Wait before retry number ``retry`` (0-based), growing by a fixed step."""
        return min(self.base_delay + self.step * retry, self.max_delay)


class ConnectionLifecycle:
    """Keeps one relay connection alive across drops and app backgrounding.

    ``transport_factory`` returns a fresh transport per attempt; a transport
    has async ``connect()``, ``send(event, payload)`` and ``close()``.
    """

    def __init__(
        self,
        transport_factory,
        policy: BackoffPolicy | None = None,
        sleep=asyncio.sleep,
        on_state_change=None,
    ) -> None:
        self._factory = transport_factory
        self.policy = policy or BackoffPolicy.from_settings()
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._transport = None
        self._reconnect_task: asyncio.Task | None = None
        self._pending_location = None
        self.state = ConnectionState.DISCONNECTED
        self.rooms: list[str] = []
        self.backgrounded = False

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.info("Relay connection %s -> %s", self.state.value, state.value)
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    async def connect(self) -> None:
        """Connect with bounded retries, then re-join rooms and flush location.

        Raises ConnectionFailedError once every attempt has failed; the
        state stays ``failed`` until the next successful connect.
        """
        self._set_state(ConnectionState.CONNECTING)
        last_error = None
        for attempt in range(self.policy.max_attempts):
            if attempt:
                await self._sleep(self.policy.delay(attempt - 1))
            transport = self._factory()
            try:
                await asyncio.wait_for(transport.connect(), timeout=self.policy.attempt_timeout)
                await self._resync(transport)
            except Exception as e:
                last_error = e
                await self._discard(transport)
                logger.warning(
                    "Relay connect attempt %d/%d failed: %s",
                    attempt + 1, self.policy.max_attempts, type(e).__name__,
                )
                continue
            self._transport = transport
            self._set_state(ConnectionState.CONNECTED)
            return

        self._transport = None
        self._set_state(ConnectionState.FAILED)
        raise ConnectionFailedError(
            f"Relay unreachable after {self.policy.max_attempts} attempts"
        ) from last_error

    @staticmethod
    async def _discard(transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug("Closing failed transport raised %s", e)

    async def _resync(self, transport) -> None:
        for service_id in self.rooms:
            await transport.send(JOIN_SERVICE, service_id)
        if self._pending_location is not None:
            await transport.send(SEND_LOCATION, self._pending_location)
            self._pending_location = None

    async def emit(self, event: str, payload=None) -> bool:
        """Send an event; returns False when it could not go out now."""
        if not self.connected:
            if event == SEND_LOCATION:
                self._pending_location = payload
            else:
                logger.debug("Dropping %s while disconnected", event)
            return False
        try:
            await self._transport.send(event, payload)
        except Exception as e:
            logger.warning("Relay send of %s failed: %s", event, e)
            if event == SEND_LOCATION:
                self._pending_location = payload
            self.on_connection_lost()
            return False
        return True

    async def join_service(self, service_id: str) -> bool:
        if service_id not in self.rooms:
            self.rooms.append(service_id)
        return await self.emit(JOIN_SERVICE, service_id)

    async def leave_service(self, service_id: str) -> bool:
        if service_id in self.rooms:
            self.rooms.remove(service_id)
        return await self.emit(LEAVE_SERVICE, {"serviceId": service_id})

    async def send_location(self, service_id: str, location: dict) -> bool:
        return await self.emit(SEND_LOCATION, {"serviceId": service_id, "location": location})

    def on_connection_lost(self, transport=None) -> asyncio.Task | None:
        """Transport dropped: start the reconnect loop unless one is running.

        A drop reported by a transport that was already replaced is ignored.
        """
        if transport is not None and transport is not self._transport:
            logger.debug("Ignoring drop of a replaced transport")
            return None
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        lost, self._transport = self._transport, None
        self._set_state(ConnectionState.DISCONNECTED)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect(lost))
        return self._reconnect_task

    async def _reconnect(self, lost=None) -> None:
        if lost is not None:
            await self._discard(lost)
        try:
            await self.connect()
        except ConnectionFailedError as e:
            logger.error("%s", e)

    def enter_background(self) -> None:
        """App went to background; an active trip keeps emitting."""
        self.backgrounded = True

    def enter_foreground(self) -> asyncio.Task | None:
        """App is visible again; resync if the socket dropped meanwhile."""
        self.backgrounded = False
        if self.connected:
            return None
        return self.on_connection_lost()

    async def close(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        self.rooms.clear()
        self._pending_location = None
        self._set_state(ConnectionState.DISCONNECTED)
