# secretchat/models/models.py
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field, PrivateAttr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """128-bit random identifier rendered as a UUID4 string."""
    return str(uuid.uuid4())


# ============================================================================
# DOMAIN STATE
# ============================================================================

class MessageStatus(str, Enum):
    """
    Delivery status of a message.

    SENT -> DELIVERED -> READ only ever moves forward.
    ERROR is terminal and only set by client-facing layers.
    """
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ERROR = "error"


_STATUS_ORDER = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    username: str = "Anonymous"
    user_id: Optional[str] = None  # None for the host's initial message
    timestamp: datetime = Field(default_factory=utcnow)
    type: str = "text"
    status: MessageStatus = MessageStatus.SENT

    def advance_status(self, status: MessageStatus) -> bool:
        """
        Move the status forward. Returns False (and changes nothing) when
        the message is in ERROR or `status` is not ahead of the current one.
        """
        if self.status == MessageStatus.ERROR or status == MessageStatus.ERROR:
            return False
        if _STATUS_ORDER[status] <= _STATUS_ORDER[self.status]:
            return False
        self.status = status
        return True


class Room(BaseModel):
    """
    One chat session held in memory.

    `participants` and `messages` are mutated only while holding `lock`.
    `host_connection_id` is set once, by the first join.
    """
    id: str = Field(default_factory=new_id)
    name: str
    host_connection_id: Optional[str] = None
    participants: Set[str] = Field(default_factory=set)
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    initial_message: str = ""

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def append_message(self, message: Message, limit: int) -> None:
        self.messages.append(message)
        overflow = len(self.messages) - limit
        if overflow > 0:
            del self.messages[:overflow]

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.id == message_id:
                return message
        return None

    def backlog(self, size: int) -> List[Message]:
        """Last `size` messages, oldest first."""
        if size <= 0:
            return []
        return list(self.messages[-size:])


# ============================================================================
# HTTP REQUEST / RESPONSE MODELS
# ============================================================================

class CreateRoomRequest(BaseModel):
    roomName: Optional[str] = None
    initialMessage: Optional[str] = None


class CreateRoomResponse(BaseModel):
    success: bool = True
    roomId: str
    roomUrl: str
    message: str = "Room created successfully"


class RoomInfo(BaseModel):
    id: str
    name: str
    participantCount: int
    createdAt: datetime

    @classmethod
    def from_room(cls, room: Room) -> "RoomInfo":
        return cls(
            id=room.id,
            name=room.name,
            participantCount=room.participant_count,
            createdAt=room.created_at,
        )


class RoomInfoResponse(BaseModel):
    success: bool = True
    room: RoomInfo


# Fields are optional so that a missing value is reported as a 400
# "Missing required fields" rather than a schema error.
class SendMessageRequest(BaseModel):
    roomId: Optional[str] = None
    userId: Optional[str] = None
    message: Optional[str] = None
    messageId: Optional[str] = None
    type: str = "text"


class SendMessageResponse(BaseModel):
    success: bool = True
    messageId: str


class TypingRequest(BaseModel):
    roomId: Optional[str] = None
    userId: Optional[str] = None
    typing: bool = False


class LeaveRequest(BaseModel):
    roomId: Optional[str] = None
    userId: Optional[str] = None
