# secretchat/api/stream.py

from __future__ import annotations

import json
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from secretchat.api.routes.utils import extract_room_id, http_error
from secretchat.core.errors import InvalidInput, RelayError
from secretchat.core.state import RelayState, get_relay
from secretchat.models.events import ConnectedEvent
from secretchat.models.models import (
    LeaveRequest,
    SendMessageRequest,
    SendMessageResponse,
    TypingRequest,
)
from secretchat.services.delivery import QueueHandle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["stream"])

# ============================================================================
# SERVER-PUSH STREAM TRANSPORT
# ============================================================================
#
# For clients that cannot hold a WebSocket open: events are pushed over a
# text/event-stream response, and actions are sent with plain POSTs keyed by
# the same userId that opened the stream.


def format_sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


async def sse_events(
    handle: QueueHandle,
    keepalive: float,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """
    Drain a QueueHandle as server-sent events.

    Emits a comment line every `keepalive` seconds of silence so proxies
    keep the connection open. Ends when the handle is closed (left, replaced
    by a reconnect, or dropped as dead) or the client goes away.
    """
    while True:
        if is_disconnected is not None and await is_disconnected():
            return
        event = await handle.get(timeout=keepalive)
        if event is not None:
            yield format_sse(event)
        elif handle.closed:
            return
        else:
            yield ": keep-alive\n\n"


@router.get("/socket-handler")
async def open_stream(
    request: Request,
    roomId: Optional[str] = None,
    userId: Optional[str] = None,
    username: Optional[str] = None,
    relay: RelayState = Depends(get_relay),
):
    """
    Open the event stream for one participant and join them to the room.

    Query params:
        roomId: Room id, or a pasted room link containing `room=<id>`
        userId: Connection id for this participant (generated if omitted)
        username: Display name (defaults to "Anonymous")

    Events:
        connected, room-joined, user-joined, user-left, user-typing,
        new-message, message-status-update

    Raises:
        HTTPException: 400 if roomId is missing, 404 if the room is unknown
    """
    room_id = extract_room_id(roomId)
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")
    user_id = userId or f"user_{int(time.time() * 1000)}"

    handle = QueueHandle(maxsize=relay.settings.STREAM_QUEUE_SIZE)
    await handle.send(ConnectedEvent(userId=user_id).model_dump(mode="json"))
    try:
        await relay.broker.join(room_id, user_id, handle, username)
    except RelayError as e:
        raise http_error(e)

    async def stream() -> AsyncIterator[str]:
        try:
            async for chunk in sse_events(handle, relay.settings.STREAM_KEEPALIVE_SECONDS, request.is_disconnected):
                yield chunk
        finally:
            logger.info("Stream closed for %s in room %s", user_id, room_id)
            handle.close()
            # A reconnect with the same userId replaces this handle; leave only for our own
            relay.broker.leave_soon(room_id, user_id, handle)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/socket-handler", response_model=SendMessageResponse)
async def send_message(body: SendMessageRequest, relay: RelayState = Depends(get_relay)):
    """
    Send a message as the participant identified by userId.

    Raises:
        HTTPException: 400 missing fields, 404 unknown room, 409 not joined
    """
    try:
        if not body.roomId or not body.userId or not body.message:
            raise InvalidInput()
        message = await relay.broker.send_message(
            body.roomId,
            body.userId,
            body.message,
            client_message_id=body.messageId,
            message_type=body.type,
        )
    except RelayError as e:
        raise http_error(e)
    return SendMessageResponse(messageId=message.id)


@router.post("/typing")
async def typing(body: TypingRequest, relay: RelayState = Depends(get_relay)):
    try:
        if not body.roomId or not body.userId:
            raise InvalidInput()
        await relay.broker.typing(body.roomId, body.userId, body.typing)
    except RelayError as e:
        raise http_error(e)
    return {"success": True}


@router.post("/leave")
async def leave(body: LeaveRequest, relay: RelayState = Depends(get_relay)):
    if not body.roomId or not body.userId:
        raise http_error(InvalidInput())
    room_empty = await relay.broker.leave(body.roomId, body.userId)
    return {"success": True, "roomEmpty": room_empty}
