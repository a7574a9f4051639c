"""
WebSocket Router
Relays orchestrator events (job progress, log lines) to connected clients.
"""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..config import get_settings
from ..services.events import EventBus
from ..utils.logger import get_logger
from .deps import presented_api_key

router = APIRouter()
logger = get_logger()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Stream clip events until either side goes away."""
    expected = get_settings().api_key
    if expected and presented_api_key(websocket, allow_query=True) != expected:
        await websocket.close(code=1008, reason="Unauthorized")
        return

    bus: EventBus = websocket.app.state.orchestrator.events
    await websocket.accept()
    queue = bus.subscribe()
    logger.info(f"Event stream opened ({bus.subscriber_count} listening)")

    relay = asyncio.create_task(relay_events(websocket, queue))
    reader = asyncio.create_task(answer_pings(websocket))
    try:
        finished, _ = await asyncio.wait({relay, reader}, return_when=asyncio.FIRST_COMPLETED)
        for task in finished:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Event stream failed: {exc}")
    finally:
        for task in (relay, reader):
            task.cancel()
        await asyncio.gather(relay, reader, return_exceptions=True)
        bus.unsubscribe(queue)
        logger.info(f"Event stream closed ({bus.subscriber_count} listening)")


async def relay_events(websocket: WebSocket, queue: asyncio.Queue):
    """Forward bus events to the client."""
    while True:
        await websocket.send_json(await queue.get())


async def answer_pings(websocket: WebSocket):
    """Read client frames; only `ping` is understood."""
    while True:
        raw = await websocket.receive_text()
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON frame on event stream")
            continue
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})
