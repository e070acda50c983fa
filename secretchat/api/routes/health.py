# secretchat/api/routes/health.py

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from secretchat.core.state import RelayState, get_relay

router = APIRouter()

@router.get("/health")
async def health(relay: RelayState = Depends(get_relay)):
    """
    Health check endpoint.

    Returns current system status, connection counts and room counts.
    Used by container health probes and monitoring.

    Returns:
        dict: status, connections, rooms, activeRooms (rooms with at least
              one participant), pendingReaps, uptimeSeconds
    """
    rooms = relay.registry.list_rooms()
    uptime_seconds = (datetime.now(timezone.utc) - relay.started_at).total_seconds()
    return {
        "status": "healthy",
        "connections": relay.connections.total_connections(),
        "rooms": len(rooms),
        "activeRooms": sum(1 for room in rooms if room.participant_count > 0),
        "pendingReaps": relay.reaper.pending_count(),
        "uptimeSeconds": round(uptime_seconds, 1),
    }
