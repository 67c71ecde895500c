"""WebSocket endpoint for the live-tracking relay."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from shuttle.core.errors import RelayProtocolError
from shuttle.core.relay import ERROR
from shuttle.core.rooms import Connection, Role

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
relay = None


async def _pump(websocket: WebSocket, conn: Connection) -> None:
    """Drain the connection's outbound queue to the socket, in order.

    An evicted connection gets its socket closed with 1008 right away, so
    the client sees the drop and reconnects.
    """
    closed = asyncio.create_task(conn.wait_closed())
    get = None
    try:
        while True:
            get = asyncio.create_task(conn.queue.get())
            done, _ = await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
            if closed in done:
                logger.info("Closing socket of evicted connection %s", conn.id)
                await websocket.close(code=1008, reason="Too slow")
                return
            await websocket.send_text(get.result().decode())
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug("Writer for %s stopped: %s", conn.id, e)
    finally:
        closed.cancel()
        if get is not None:
            get.cancel()


@router.websocket("/ws/relay")
async def relay_ws(
    websocket: WebSocket,
    role: Role = Role.PASSENGER,
    user_id: str | None = None,
) -> None:
    """Bidirectional relay session; events are {"event", "data"} JSON frames."""
    await websocket.accept()

    if relay is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    conn = Connection(role=role, user_id=user_id)
    writer = asyncio.create_task(_pump(websocket, conn))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text") or message.get("bytes")
            if not raw or conn.closed:
                continue
            try:
                relay.dispatch(conn, raw)
            except RelayProtocolError as e:
                logger.info("Rejected frame from %s: %s", conn.id, e)
                relay.registry.send_to_one(conn, ERROR, {"message": str(e)})
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Relay WebSocket error")
    finally:
        relay.disconnect(conn)
        writer.cancel()
