"""
Socket endpoint — accepts a connection, registers an anonymous session and
feeds every inbound frame to the dispatcher, strictly in arrival order.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket

from maelink.core.config import settings

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


@router.websocket(settings.WS_PATH)
async def feed_socket(websocket: WebSocket) -> None:
    registry = websocket.app.state.registry
    dispatcher = websocket.app.state.dispatcher

    await websocket.accept()
    session = registry.open(websocket)
    await session.send({"cmd": "welcome", "instance_name": settings.INSTANCE_NAME})
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await dispatcher.dispatch(session, raw)
    finally:
        # Unconditional: the session disappears the moment the socket does.
        registry.close(websocket)
        logger.debug("Connection closed (%d live)", len(registry))
