"""
WebSocket transport for the relay protocol.

One socket is one connection identity. Inbound text frames are handed to
the RelayGateway as-is; outbound messages go through a per-connection
queue drained by a writer task, so the gateway never awaits a slow peer
and messages leave in the order they were queued.
"""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from config import OUTBOX_MAX_MESSAGES
from relay.gateway import RelayGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])


CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketConnection:
    """
    Outbound side of one socket. `send` never blocks; messages queue up to
    `max_pending` and are written in order by a single writer task. Once the
    writer has stopped (socket error, overflow or close) further sends are
    dropped.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = OUTBOX_MAX_MESSAGES):
        self.id = f"conn_{uuid.uuid4().hex[:8]}"
        self._websocket = websocket
        self._loop = asyncio.get_running_loop()
        self._outbox: asyncio.Queue[Optional[dict]] = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def send(self, message: dict) -> None:
        # Safe from any thread; call_soon_threadsafe keeps FIFO order.
        self._loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: dict) -> None:
        if self._stopped:
            return
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbox of %s overflowed, closing the socket", self.id)
            self._stop()
            self._closer = asyncio.create_task(self._close_socket(CLOSE_TRY_AGAIN_LATER))

    async def _close_socket(self, code: int) -> None:
        try:
            await self._websocket.close(code=code)
        except RuntimeError as exc:
            logger.debug("Socket %s already closed: %s", self.id, exc)

    def _stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        while not self._outbox.empty():
            self._outbox.get_nowait()
        self._outbox.put_nowait(None)

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    async def close(self) -> None:
        if self._writer is None:
            return
        self._loop.call_soon_threadsafe(self._stop)
        await self._writer
        if self._closer is not None:
            await self._closer

    async def _drain(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is None:
                return
            try:
                await self._websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                # Socket closed underneath us; the receive loop handles teardown.
                logger.debug("Stopped writing to %s: %s", self.id, exc)
                self._stop()
                return


def get_gateway(websocket: WebSocket) -> RelayGateway:
    return websocket.app.state.gateway


@router.websocket("/ws")
async def relay_socket(websocket: WebSocket):
    """
    Accepts a peer and pumps its frames into the gateway until it goes away.
    Disconnect is the only teardown trigger for the sessions it owns.
    """
    await websocket.accept()
    gateway = get_gateway(websocket)

    connection = WebSocketConnection(websocket)
    connection.start()
    gateway.connect(connection)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            gateway.handle_message(connection.id, frame)
    except WebSocketDisconnect:
        logger.debug("Socket %s closed while reading", connection.id)
    finally:
        gateway.disconnect(connection.id)
        await connection.close()
