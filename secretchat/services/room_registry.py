# secretchat/services/room_registry.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from secretchat.core.errors import RoomNotFound
from secretchat.models.models import Room

logger = logging.getLogger(__name__)

# ============================================================================
# ROOM REGISTRY
# ============================================================================

class RoomRegistry:
    """
    In-memory map of room_id -> Room for the lifetime of the process.

    Rooms are never persisted. A room stays here from create_room() until
    the IdleRoomReaper deletes it, or until the process exits.

    Usage:
        registry = RoomRegistry(default_name="Chat Rahasia")
        room = registry.create_room(initial_message="hi")
        registry.get_room(room.id)
    """

    def __init__(self, default_name: str = "Chat Rahasia") -> None:
        self.rooms: Dict[str, Room] = {}
        self.default_name = default_name

    def create_room(self, name: Optional[str] = None, initial_message: Optional[str] = None) -> Room:
        """
        Create and register a new room.

        Args:
            name: Display label (falls back to the default room name)
            initial_message: Text sent once as "Host" when the host joins

        Returns:
            Room: The newly created room, with no participants or messages
        """
        room = Room(
            name=(name or "").strip() or self.default_name,
            initial_message=initial_message or "",
        )
        # uuid4 collisions are not a practical concern, but ids must never be reused
        while room.id in self.rooms:
            room = Room(name=room.name, initial_message=room.initial_message)

        self.rooms[room.id] = room
        logger.info("✓ Created room %s (%s)", room.id, room.name)
        return room

    def get_room(self, room_id: str) -> Room:
        """
        Look up a room.

        Raises:
            RoomNotFound: if the id is unknown or the room was reaped
        """
        room = self.rooms.get(room_id) if room_id else None
        if room is None:
            raise RoomNotFound()
        return room

    def find_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id) if room_id else None

    def list_rooms(self) -> List[Room]:
        return list(self.rooms.values())

    def delete_room(self, room_id: str) -> bool:
        """
        Remove a room. Deleting an unknown id is a no-op.

        Returns:
            True if a room was deleted, False if it didn't exist
        """
        if self.rooms.pop(room_id, None) is None:
            return False
        logger.info("✓ Deleted room: %s", room_id)
        return True

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self.rooms
