"""Live position updates over WebSocket and Server-Sent Events.

Both channels push ``{position, etaSeconds}`` on a fixed interval and a
single ``admit`` message once the participant is admitted, after which the
channel is closed.
"""

import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from fairline.app.api.deps import RoomDep
from fairline.app.api.queue import queue_update, tracked_credential
from fairline.app.core.logging import get_logger
from fairline.app.exceptions import FairlineException
from fairline.app.services.events import now_ms
from fairline.app.services.room import WaitingRoom

logger = get_logger(__name__)
router = APIRouter(tags=["live"])

# Application-defined close code for a rejected handshake
WS_CLOSE_UNAUTHORIZED = 4401


def _sse(payload: dict, event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(payload)}\n\n"


async def _event_stream(room: WaitingRoom, token: str, request: Request) -> AsyncIterator[str]:
    interval = room.settings.sse_update_interval_seconds
    sub = room.notifier.subscribe(token)
    try:
        while True:
            update = queue_update(room, token)
            yield _sse(update)
            if update["position"] == 0:
                yield _sse({"at": now_ms()}, event="admit")
                return

            try:
                await asyncio.wait_for(sub.messages.get(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            if await request.is_disconnected():
                return
    finally:
        room.notifier.unsubscribe(sub)


@router.get("/events/{token}")
async def queue_events(token: str, request: Request, room: RoomDep) -> StreamingResponse:
    """Pull-based fallback for clients without a WebSocket."""
    tracked_credential(room, token)
    return StreamingResponse(
        _event_stream(room, token, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.websocket("/ws")
async def queue_socket(websocket: WebSocket, token: Optional[str] = None) -> None:
    room: WaitingRoom = websocket.app.state.room
    try:
        tracked_credential(room, token or "")
    except FairlineException as e:
        logger.debug(f"WebSocket handshake rejected: {e.message}")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    interval = room.settings.ws_update_interval_seconds
    sub = room.notifier.subscribe(token)
    try:
        while True:
            update = queue_update(room, token)
            if update["position"] == 0:
                await websocket.send_json({"type": "admit", "at": now_ms()})
                break
            await websocket.send_json({"type": "queue_update", **update})

            try:
                message = await asyncio.wait_for(sub.messages.get(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            await websocket.send_json(message)
            break

        await websocket.close()
    except WebSocketDisconnect:
        logger.debug("WebSocket subscriber disconnected")
    finally:
        room.notifier.unsubscribe(sub)
