"""WebSocket transport speaking the relay's JSON envelope."""

import asyncio
import logging
from urllib.parse import urlencode

import orjson
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from shuttle.client.lifecycle import BackoffPolicy, ConnectionLifecycle

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """One socket to the relay.

    Incoming frames go to ``on_message(event, data)``; ``on_close(transport)``
    fires when the socket drops without ``close()`` having been called.
    """

    def __init__(self, url: str, on_message=None, on_close=None) -> None:
        self.url = url
        self._on_message = on_message
        self._on_close = on_close
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._closing = False

    async def connect(self) -> None:
        self._ws = await connect(self.url)
        self._reader = asyncio.get_running_loop().create_task(self._read())

    async def _read(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    frame = orjson.loads(raw)
                except orjson.JSONDecodeError:
                    logger.debug("Ignoring undecodable relay frame")
                    continue
                if self._on_message is not None:
                    self._on_message(frame.get("event"), frame.get("data"))
        except ConnectionClosed as e:
            logger.info("Relay socket closed: %s", e)
        finally:
            if not self._closing and self._on_close is not None:
                self._on_close(self)

    async def send(self, event: str, payload=None) -> None:
        if self._ws is None:
            raise ConnectionError("Transport is not connected")
        await self._ws.send(orjson.dumps({"event": event, "data": payload}).decode())

    async def close(self) -> None:
        self._closing = True
        if self._reader is not None:
            self._reader.cancel()
        if self._ws is not None:
            await self._ws.close()


def relay_url(base_url: str, role: str, user_id: str | None = None) -> str:
    params = {"role": role}
    if user_id:
        params["user_id"] = user_id
    return f"{base_url.rstrip('/')}/ws/relay?{urlencode(params)}"


def connect_relay(
    base_url: str,
    role: str,
    user_id: str | None = None,
    on_message=None,
    policy: BackoffPolicy | None = None,
    on_state_change=None,
) -> ConnectionLifecycle:
    """Lifecycle whose transports report drops back to it."""
    url = relay_url(base_url, role, user_id)
    lifecycle = None

    def factory() -> WebSocketTransport:
        return WebSocketTransport(url, on_message=on_message, on_close=lifecycle.on_connection_lost)

    lifecycle = ConnectionLifecycle(factory, policy=policy, on_state_change=on_state_change)
    return lifecycle
