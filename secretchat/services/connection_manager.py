# secretchat/services/connection_manager.py

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel

from secretchat.models.events import OutboundEvent
from secretchat.services.delivery import DeliveryHandle

logger = logging.getLogger(__name__)

Event = Union[OutboundEvent, Dict[str, Any]]
DeadConnectionCallback = Callable[[str, str, str], Awaitable[None]]


def serialize_event(event: Event) -> Dict[str, Any]:
    if isinstance(event, BaseModel):
        return event.model_dump(mode="json")
    return event


class Registration:
    """One joined connection: who it is and where its events go."""

    def __init__(self, room_id: str, connection_id: str, username: str, handle: DeliveryHandle) -> None:
        self.room_id = room_id
        self.connection_id = connection_id
        self.username = username
        self.handle = handle


# ============================================================================
# CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Maps active participant connections to their delivery handles, per room.

    This is the only component that touches transport state. Rooms know
    connection ids; the handles behind them live here.

    Data Structures:
        rooms: Maps room_id -> {connection_id: Registration}
               Example: {"uuid-123": {"conn-a": <Registration>, "conn-b": ...}}

    Delivery:
        - Best-effort, at-most-once per handle registered at send time
        - No retry, no queueing for participants who are not connected
        - A handle that fails is unregistered and reported through
          `on_dead_connection` so the caller can run its leave logic

    Locking:
        `_lock` only guards the dictionaries. Handles are snapshotted under
        the lock and delivery happens after it is released, so a slow
        client never blocks registration in this or any other room.
    """

    def __init__(self) -> None:
        # Map: room_id -> {connection_id: Registration}
        self.rooms: Dict[str, Dict[str, Registration]] = {}
        self._lock = asyncio.Lock()
        self.on_dead_connection: Optional[DeadConnectionCallback] = None

    async def register(self, room_id: str, connection_id: str, username: str, handle: DeliveryHandle) -> None:
        """
        Add a connection to the room's delivery set.

        Re-registering an existing connection id replaces its handle
        (e.g. a server-push stream reconnecting with the same userId).
        """
        async with self._lock:
            connections = self.rooms.setdefault(room_id, {})
            previous = connections.get(connection_id)
            connections[connection_id] = Registration(room_id, connection_id, username, handle)

        if previous is not None and previous.handle is not handle:
            previous.handle.close()
        logger.info("→ %s registered in room %s (%d connections)", connection_id, room_id, len(connections))

    async def unregister(self, room_id: str, connection_id: str) -> bool:
        """
        Remove a connection from the room's delivery set.

        Returns:
            True if the room now has no registered connections
        """
        async with self._lock:
            registration = self._pop(room_id, connection_id)
            empty = room_id not in self.rooms

        if registration is not None:
            registration.handle.close()
            logger.info("✗ %s unregistered from room %s", connection_id, room_id)
        return empty

    def _pop(self, room_id: str, connection_id: str, handle: Optional[DeliveryHandle] = None) -> Optional[Registration]:
        connections = self.rooms.get(room_id)
        if not connections:
            return None
        registration = connections.get(connection_id)
        # Only drop the exact handle that failed; it may have been replaced meanwhile
        if registration is None or (handle is not None and registration.handle is not handle):
            return None
        del connections[connection_id]
        if not connections:
            del self.rooms[room_id]
        return registration

    def get_registration(self, room_id: str, connection_id: str) -> Optional[Registration]:
        return self.rooms.get(room_id, {}).get(connection_id)

    def is_registered(self, room_id: str, connection_id: str) -> bool:
        return self.get_registration(room_id, connection_id) is not None

    def connection_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    def total_connections(self) -> int:
        return sum(len(connections) for connections in self.rooms.values())

    async def send_to(self, room_id: str, connection_id: str, event: Event) -> bool:
        """
        Deliver one event to one participant.

        Returns:
            True if delivered; False if the connection is unknown or its
            channel turned out to be dead (it is unregistered in that case)
        """
        async with self._lock:
            registration = self.get_registration(room_id, connection_id)
        if registration is None:
            return False

        payload = serialize_event(event)
        try:
            await registration.handle.send(payload)
            return True
        except Exception as e:
            await self._drop_dead(registration, e)
            return False

    async def broadcast(self, room_id: str, event: Event, exclude: Optional[str] = None) -> int:
        """
        Broadcast an event to every connection registered in a room.

        Args:
            room_id: Target room
            event: Event model or dict (serialized once for all recipients)
            exclude: Connection id to skip (typically the sender)

        Returns:
            Number of successful deliveries

        Error Handling:
            A failed send removes that handle and does not stop delivery
            to the remaining connections.
        """
        async with self._lock:
            targets = [
                registration
                for connection_id, registration in self.rooms.get(room_id, {}).items()
                if connection_id != exclude
            ]

        if not targets:
            logger.debug("[routing] Skipped broadcast: room=%s has 0 recipients", room_id)
            return 0

        payload = serialize_event(event)
        results = await asyncio.gather(
            *(registration.handle.send(payload) for registration in targets),
            return_exceptions=True,
        )

        delivered = 0
        for registration, result in zip(targets, results):
            if isinstance(result, BaseException):
                await self._drop_dead(registration, result)
            else:
                delivered += 1

        logger.debug("📨 Broadcast %s to room %s: %d/%d delivered",
                     payload.get("type"), room_id, delivered, len(targets))
        return delivered

    async def _drop_dead(self, registration: Registration, error: BaseException) -> None:
        logger.warning("Send error to %s in room %s: %s",
                       registration.connection_id, registration.room_id, error)
        async with self._lock:
            removed = self._pop(registration.room_id, registration.connection_id, registration.handle)
        if removed is None:
            return
        removed.handle.close()
        if self.on_dead_connection is not None:
            await self.on_dead_connection(removed.room_id, removed.connection_id, removed.username)

    async def close_all(self) -> None:
        """Close every handle (process shutdown)."""
        async with self._lock:
            registrations = [r for connections in self.rooms.values() for r in connections.values()]
            self.rooms.clear()
        for registration in registrations:
            registration.handle.close()
