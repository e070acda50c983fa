# secretchat/services/message_broker.py

from __future__ import annotations

import logging
from typing import Optional

from secretchat.core.config import Settings
from secretchat.core.errors import InvalidInput, NotJoined
from secretchat.models.events import (
    MessagePayload,
    MessageStatusUpdateEvent,
    RoomJoinedEvent,
    UserJoinedEvent,
    UserLeftEvent,
    UserTypingEvent,
    new_message_event,
)
from secretchat.models.models import Message, MessageStatus, Room, new_id
from secretchat.services.connection_manager import ConnectionManager
from secretchat.services.delivery import DeliveryHandle
from secretchat.services.room_reaper import IdleRoomReaper
from secretchat.services.room_registry import RoomRegistry
from secretchat.services.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"
HOST_USERNAME = "Host"


# ============================================================================
# MESSAGE BROKER
# ============================================================================

class MessageBroker:
    """
    Validates and routes participant actions: join, send, typing, leave.

    A room's lifecycle is implied by its participant count:

        Empty -> AwaitingPartner (1) -> Active (>= 2) -> Empty -> [reaped]

    Every operation raises a RelayError subclass (RoomNotFound, NotJoined,
    InvalidInput) on failure. Failures are scoped to the single request;
    nothing here affects other rooms.

    Locking:
        Room state (participants, messages, host) is only mutated under
        `room.lock`. Events are always sent after the lock is released.

    Status receipts:
        "delivered" and "read" are simulated on fixed timers after every
        send. They do not reflect what the other participant actually saw.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        connections: ConnectionManager,
        scheduler: TaskScheduler,
        reaper: IdleRoomReaper,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.connections = connections
        self.scheduler = scheduler
        self.reaper = reaper
        self.settings = settings

        # A dead delivery channel is handled exactly like a leave
        self.connections.on_dead_connection = self._on_dead_connection

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    async def join(
        self,
        room_id: str,
        connection_id: str,
        handle: DeliveryHandle,
        username: Optional[str] = None,
    ) -> Room:
        """
        Join a connection to a room.

        The first connection ever to join becomes the host. Host election
        happens in the same critical section as the participant insert, so
        two concurrent first joins cannot both become host.

        Sends:
            - "room-joined" privately to the joiner, with the message backlog
            - "user-joined" to everyone else in the room
            - the room's initial message as "Host", once, after the host joins

        Raises:
            InvalidInput: room id or connection id missing
            RoomNotFound: unknown or reaped room
        """
        if not room_id:
            raise InvalidInput("Room ID is required")
        if not connection_id:
            raise InvalidInput("Connection ID is required")

        room = self.registry.get_room(room_id)
        username = (username or "").strip() or ANONYMOUS
        initial_message = ""

        async with room.lock:
            # The room may have been reaped while we waited for the lock
            room = self.registry.get_room(room_id)
            self.reaper.cancel(room_id)

            rejoin = connection_id in room.participants
            room.participants.add(connection_id)
            if room.host_connection_id is None:
                room.host_connection_id = connection_id
            is_host = room.host_connection_id == connection_id

            if is_host and room.initial_message:
                initial_message, room.initial_message = room.initial_message, ""

            participant_count = room.participant_count
            backlog = room.backlog(self.settings.BACKLOG_SIZE)
            await self.connections.register(room_id, connection_id, username, handle)

        logger.info("→ %s (%s) joined room %s as %s, %d participant(s)",
                    username, connection_id, room_id, "host" if is_host else "guest", participant_count)

        delivered = await self.connections.send_to(
            room_id,
            connection_id,
            RoomJoinedEvent(
                roomId=room.id,
                roomName=room.name,
                participantCount=participant_count,
                isHost=is_host,
                messages=[MessagePayload.from_message(m) for m in backlog],
            ),
        )
        if not delivered:
            # The dead handle already went through leave(); the others saw user-left
            logger.warning("Join of %s in room %s dropped, acknowledgment undeliverable", connection_id, room_id)
            if initial_message and not room.initial_message:
                room.initial_message = initial_message
            return room
        if rejoin:
            # Same connection joining again: acknowledge privately, nothing changed for the others
            return room

        await self.connections.broadcast(
            room_id,
            UserJoinedEvent(
                username=username,
                participantCount=participant_count,
                message=f"{username} joined the chat",
            ),
            exclude=connection_id,
        )

        if initial_message:
            # Delayed so the client renders the join acknowledgment first
            self.scheduler.schedule(
                ("initial-message", room_id),
                self.settings.INITIAL_MESSAGE_DELAY_SECONDS,
                lambda: self._deliver_initial_message(room_id, initial_message),
            )

        return room

    async def _deliver_initial_message(self, room_id: str, text: str) -> None:
        room = self.registry.find_room(room_id)
        if room is None:
            return

        message = Message(text=text, username=HOST_USERNAME)
        async with room.lock:
            room.append_message(message, self.settings.MESSAGE_HISTORY_LIMIT)

        await self.connections.broadcast(room_id, new_message_event(message))
        logger.info("Delivered initial message in room %s", room_id)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_message(
        self,
        room_id: str,
        connection_id: str,
        text: Optional[str],
        client_message_id: Optional[str] = None,
        message_type: str = "text",
    ) -> Message:
        """
        Append a message to the room and broadcast it to everyone, sender included.

        `client_message_id` lets the sender match the broadcast against its
        optimistic local copy. Re-sending an id already in the room returns
        the stored message without broadcasting it again.

        Raises:
            InvalidInput: missing room id or empty text
            RoomNotFound: unknown or reaped room
            NotJoined: connection is not a participant of the room
        """
        if not room_id:
            raise InvalidInput("Room ID is required")
        if text is None or not text.strip():
            raise InvalidInput("Message text is required")

        room = self.registry.get_room(room_id)
        registration = self.connections.get_registration(room_id, connection_id)
        if registration is None:
            raise NotJoined()

        async with room.lock:
            if connection_id not in room.participants:
                raise NotJoined()

            if client_message_id:
                existing = room.find_message(client_message_id)
                if existing is not None:
                    logger.info("Duplicate message %s in room %s ignored", client_message_id, room_id)
                    return existing
                message_id = client_message_id
            else:
                message_id = new_id()
                while room.find_message(message_id) is not None:
                    message_id = new_id()

            message = Message(
                id=message_id,
                text=text,
                username=registration.username,
                user_id=connection_id,
                type=message_type or "text",
            )
            room.append_message(message, self.settings.MESSAGE_HISTORY_LIMIT)

        await self.connections.broadcast(room_id, new_message_event(message))

        self._schedule_status(room_id, message, MessageStatus.DELIVERED, self.settings.DELIVERED_DELAY_SECONDS)
        self._schedule_status(room_id, message, MessageStatus.READ, self.settings.READ_DELAY_SECONDS)
        return message

    def _schedule_status(self, room_id: str, message: Message, status: MessageStatus, delay: float) -> None:
        self.scheduler.schedule(
            ("status", room_id, message.id, status.value),
            delay,
            lambda: self._update_status(room_id, message, status),
        )

    async def _update_status(self, room_id: str, message: Message, status: MessageStatus) -> None:
        room = self.registry.find_room(room_id)
        if room is None:
            return

        async with room.lock:
            advanced = message.advance_status(status)
        if advanced:
            await self.connections.broadcast(
                room_id,
                MessageStatusUpdateEvent(messageId=message.id, status=status),
            )

    def cancel_message_timers(self, room_id: str, message_id: str) -> int:
        """Stop any pending status updates for one message."""
        return self.scheduler.cancel_prefix(("status", room_id, message_id))

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def typing(self, room_id: str, connection_id: str, is_typing: bool) -> None:
        """
        Tell everyone else in the room that this participant is (not) typing.

        Nothing is stored. Debouncing is the client's job.
        """
        if not room_id:
            raise InvalidInput("Room ID is required")

        self.registry.get_room(room_id)
        registration = self.connections.get_registration(room_id, connection_id)
        if registration is None:
            raise NotJoined()

        await self.connections.broadcast(
            room_id,
            UserTypingEvent(username=registration.username, typing=bool(is_typing)),
            exclude=connection_id,
        )

    # ------------------------------------------------------------------
    # Leave / disconnect
    # ------------------------------------------------------------------

    async def leave(self, room_id: str, connection_id: str, username: Optional[str] = None) -> bool:
        """
        Remove a connection from a room. Transport disconnects end up here too.

        Leaving a room that no longer exists, or that the connection never
        joined, is a no-op.

        Returns:
            True if the room is now empty (and its reap has been scheduled)
        """
        if not room_id or not connection_id:
            return False

        registration = self.connections.get_registration(room_id, connection_id)
        if registration is not None:
            username = registration.username
        delivery_empty = await self.connections.unregister(room_id, connection_id)

        room = self.registry.find_room(room_id)
        if room is None:
            return False

        async with room.lock:
            if connection_id not in room.participants:
                return False
            room.participants.discard(connection_id)
            participant_count = room.participant_count

        username = username or ANONYMOUS
        logger.info("← %s (%s) left room %s, %d participant(s) remain",
                    username, connection_id, room_id, participant_count)

        if participant_count > 0:
            await self.connections.broadcast(
                room_id,
                UserLeftEvent(
                    username=username,
                    userId=connection_id,
                    participantCount=participant_count,
                    message=f"{username} left the chat",
                ),
            )
            return False

        if not delivery_empty:
            logger.warning("Room %s has no participants but still has delivery handles", room_id)
        self.reaper.schedule_reap(room_id)
        return True

    def leave_soon(self, room_id: str, connection_id: str, handle: Optional[DeliveryHandle] = None) -> None:
        """
        Run leave() on its own task.

        Transports call this from cleanup code that may itself be cancelled
        (a dropped stream, a closed socket); the leave still completes.
        When `handle` is given, the leave is skipped if the connection has
        since re-registered with a different handle.
        """
        async def _leave() -> None:
            registration = self.connections.get_registration(room_id, connection_id)
            if handle is not None and registration is not None and registration.handle is not handle:
                return
            await self.leave(room_id, connection_id)

        self.scheduler.schedule(("leave", room_id, connection_id), 0, _leave)

    async def _on_dead_connection(self, room_id: str, connection_id: str, username: str) -> None:
        await self.leave(room_id, connection_id, username)
