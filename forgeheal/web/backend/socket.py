import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from forgeheal.events import OODAEvent

router = APIRouter()

logger = logging.getLogger(__name__)


@router.websocket("/ws/events")
async def events_endpoint(websocket: WebSocket):
    """Stream OODA events of the engine's controller as JSON messages."""
    engine = getattr(websocket.app.state, "engine", None)
    if engine is None:
        await websocket.close(code=1011, reason="Engine not initialized")
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Cycles may run on another event loop (e.g. a different request thread)
    def forward(event: OODAEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event.to_dict())

    unsubscribe = engine.controller.on_event(forward)
    await websocket.accept()
    await websocket.send_json({"type": "connected", "active_tasks": len(engine.controller.get_active_tasks())})
    logger.debug("[WS] Event stream opened")

    # Task to pump events from the controller -> WebSocket
    async def sender_task():
        while True:
            event = await queue.get()
            await websocket.send_json({"type": "ooda_event", "event": event})

    # Task to detect the client going away
    async def receiver_task():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("[WS] Client disconnected")

    sender = asyncio.create_task(sender_task())
    receiver = asyncio.create_task(receiver_task())
    try:
        done, pending = await asyncio.wait([sender, receiver], return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("[WS] Event stream error: %s", task.exception())
    finally:
        unsubscribe()
        logger.debug("[WS] Event stream closed")
