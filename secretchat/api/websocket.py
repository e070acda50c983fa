# secretchat/api/websocket.py

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from secretchat.api.routes.utils import extract_room_id
from secretchat.core.errors import RelayError
from secretchat.core.state import RelayState
from secretchat.models.events import (
    ConnectedEvent,
    ErrorEvent,
    JoinRoomAction,
    LeaveRoomAction,
    SendMessageAction,
    TypingAction,
    TypingStartAction,
    TypingStopAction,
    parse_action,
)
from secretchat.models.models import new_id
from secretchat.services.delivery import WebSocketHandle

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

async def send_error(websocket: WebSocket, message: str, code: str = "error") -> None:
    await websocket.send_json(ErrorEvent(message=message, code=code).model_dump(mode="json"))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, username: str = "Anonymous"):
    """
    WebSocket endpoint for real-time bidirectional communication.

    Protocol:
    =========

    Client -> Server Actions:
    -------------------------
    Join Room (roomId may also be a pasted room link):
        {"action": "join-room", "roomId": "uuid-123", "username": "alice"}
        Response: {"type": "room-joined", "roomId": ..., "isHost": true, "messages": [...]}

    Send Message:
        {"action": "send-message", "roomId": "uuid-123", "message": "hi", "messageId": "optional"}
        Broadcast: {"type": "new-message", "id": ..., "text": "hi", "status": "sent", ...}
        Followed by two {"type": "message-status-update"} events (delivered, then read)

    Typing:
        {"action": "typing-start", "roomId": "uuid-123"}
        {"action": "typing-stop", "roomId": "uuid-123"}
        {"action": "typing", "roomId": "uuid-123", "typing": true}

    Leave Room:
        {"action": "leave-room", "roomId": "uuid-123"}

    Server -> Client Messages:
    -------------------------
    connected, room-joined, user-joined, user-left, user-typing,
    new-message, message-status-update

    Error (the socket stays open):
        {"type": "error", "message": "Room not found", "code": "room_not_found"}

    Lifecycle:
    ==========
    1. Client connects; the server assigns a connection id and sends "connected"
    2. Client sends "join-room" (one room per socket; joining another leaves the first)
    3. On disconnect, the connection leaves its room exactly like "leave-room"

    Args:
        websocket: WebSocket connection object
        username: Query parameter used when "join-room" carries no username
    """
    relay: RelayState = websocket.app.state.relay
    broker = relay.broker

    await websocket.accept()
    connection_id = new_id()
    handle = WebSocketHandle(websocket)
    joined_room: Optional[str] = None

    logger.info("✓ Connection %s opened", connection_id)
    await websocket.send_json(ConnectedEvent(userId=connection_id, message="Connected").model_dump(mode="json"))

    try:
        while True:
            data = await websocket.receive_text()

            try:
                action = parse_action(json.loads(data))
            except json.JSONDecodeError:
                await send_error(websocket, "Invalid JSON", "invalid_json")
                continue
            except ValidationError as e:
                logger.debug("Rejected frame from %s: %s", connection_id, e)
                await send_error(websocket, "Unknown or malformed action", "invalid_input")
                continue

            try:
                if isinstance(action, JoinRoomAction):
                    room_id = extract_room_id(action.roomId)
                    # Join the new room first; a failed switch keeps the current one
                    await broker.join(room_id, connection_id, handle, action.username or username)
                    previous_room, joined_room = joined_room, room_id
                    if previous_room and previous_room != room_id:
                        await broker.leave(previous_room, connection_id)

                elif isinstance(action, SendMessageAction):
                    await broker.send_message(
                        action.roomId or joined_room,
                        connection_id,
                        action.message,
                        client_message_id=action.messageId,
                        message_type=action.type,
                    )

                elif isinstance(action, (TypingStartAction, TypingStopAction, TypingAction)):
                    if isinstance(action, TypingAction):
                        is_typing = action.typing
                    else:
                        is_typing = isinstance(action, TypingStartAction)
                    await broker.typing(action.roomId or joined_room, connection_id, is_typing)

                elif isinstance(action, LeaveRoomAction):
                    room_id = action.roomId or joined_room
                    await broker.leave(room_id, connection_id)
                    if room_id == joined_room:
                        joined_room = None

            except RelayError as e:
                await send_error(websocket, e.message, e.code)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        if joined_room:
            broker.leave_soon(joined_room, connection_id)
        logger.info("✗ Connection %s closed", connection_id)
