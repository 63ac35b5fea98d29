"""WebSocket endpoint: pushes aggregated drone state to subscribers.

Path: /ws/updates

On connect the subscriber immediately receives the latest known state,
then an ``update`` message after every cycle that merged something.
Subscribers only listen; incoming text is read to detect disconnects and
answer heartbeats.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from nestwatch.services.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


def create_updates_router(broadcaster: Broadcaster) -> APIRouter:
    """Factory that wires the subscriber endpoint to a Broadcaster."""

    router = APIRouter()

    @router.websocket("/ws/updates")
    async def updates_ws(websocket: WebSocket) -> None:
        await broadcaster.connect(websocket)
        try:
            await broadcaster.notify_one(websocket)
            while True:
                data = await websocket.receive_text()
                if data.strip().lower() == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.disconnect(websocket)

    return router
