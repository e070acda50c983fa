# secretchat/api/routes/rooms.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
import logging

from secretchat.api.routes.utils import build_room_url
from secretchat.core.errors import RoomNotFound
from secretchat.core.state import RelayState, get_relay
from secretchat.models.models import (
    CreateRoomRequest,
    CreateRoomResponse,
    RoomInfo,
    RoomInfoResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@router.post("/create-room", response_model=CreateRoomResponse)
async def create_room(
    request: Request,
    body: Optional[CreateRoomRequest] = None,
    relay: RelayState = Depends(get_relay),
):
    """
    Create a new ephemeral room.

    There is no delete endpoint: a room is removed by the idle reaper some
    time after its last participant leaves.

    Args:
        body: Optional roomName and initialMessage (sent as "Host" once the
              first participant joins)

    Returns:
        CreateRoomResponse: roomId and the shareable roomUrl

    Raises:
        HTTPException: 500 on unexpected failure
    """
    body = body or CreateRoomRequest()
    try:
        room = relay.registry.create_room(name=body.roomName, initial_message=body.initialMessage)
        base_url = relay.settings.PUBLIC_BASE_URL or str(request.base_url)
        return CreateRoomResponse(roomId=room.id, roomUrl=build_room_url(base_url, room.id))
    except Exception as e:
        logger.error("Error creating room: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create room")


def _room_info(relay: RelayState, room_id: Optional[str]) -> RoomInfoResponse:
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")
    try:
        room = relay.registry.get_room(room_id)
    except RoomNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return RoomInfoResponse(room=RoomInfo.from_room(room))


@router.get("/room-info", response_model=RoomInfoResponse)
async def room_info(roomId: Optional[str] = None, relay: RelayState = Depends(get_relay)):
    """
    Get public details of a room (used by the join screen to validate a link).

    Raises:
        HTTPException: 400 if roomId is missing, 404 if the room is unknown or reaped
    """
    return _room_info(relay, roomId)


@router.get("/room/{room_id}", response_model=RoomInfoResponse)
async def get_room(room_id: str, relay: RelayState = Depends(get_relay)):
    return _room_info(relay, room_id)
