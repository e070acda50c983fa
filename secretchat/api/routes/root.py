# secretchat/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "Secret Chat Relay",
        "version": "1.0",
        "architecture": "single process, in-memory rooms",
        "features": ["ephemeral_rooms", "typing_indicators", "message_status", "idle_room_reaping"],
        "endpoints": {
            "websocket": "/ws",
            "create_room": "/api/create-room",
            "room_info": "/api/room-info?roomId=<id>",
            "stream": "/api/socket-handler?roomId=<id>&userId=<id>",
            "send": "/api/socket-handler",
            "typing": "/api/typing",
            "leave": "/api/leave",
            "health": "/health",
        },
    }
