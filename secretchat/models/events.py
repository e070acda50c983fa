"""
Wire events exchanged with clients.

Outbound events are a closed set of pydantic models discriminated by `type`.
Inbound WebSocket actions are a closed set discriminated by `action` and are
decoded once, at the transport boundary, with `parse_action()`.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from secretchat.models.models import Message, MessageStatus


# ============================================================================
# OUTBOUND EVENTS (server -> client)
# ============================================================================

class MessagePayload(BaseModel):
    id: str
    text: str
    username: str
    userId: Optional[str] = None
    timestamp: datetime
    messageType: str = "text"
    status: MessageStatus

    @classmethod
    def from_message(cls, message: Message) -> "MessagePayload":
        return cls(
            id=message.id,
            text=message.text,
            username=message.username,
            userId=message.user_id,
            timestamp=message.timestamp,
            messageType=message.type,
            status=message.status,
        )


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    userId: str
    message: str = "Connected to room"


class RoomJoinedEvent(BaseModel):
    type: Literal["room-joined"] = "room-joined"
    roomId: str
    roomName: str
    participantCount: int
    isHost: bool
    messages: List[MessagePayload] = Field(default_factory=list)


class UserJoinedEvent(BaseModel):
    type: Literal["user-joined"] = "user-joined"
    username: str
    participantCount: int
    message: str


class UserLeftEvent(BaseModel):
    type: Literal["user-left"] = "user-left"
    username: str
    userId: str
    participantCount: int
    message: str


class UserTypingEvent(BaseModel):
    type: Literal["user-typing"] = "user-typing"
    username: str
    typing: bool


class NewMessageEvent(MessagePayload):
    type: Literal["new-message"] = "new-message"


class MessageStatusUpdateEvent(BaseModel):
    type: Literal["message-status-update"] = "message-status-update"
    messageId: str
    status: MessageStatus


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    code: str = "error"


OutboundEvent = Union[
    ConnectedEvent,
    RoomJoinedEvent,
    UserJoinedEvent,
    UserLeftEvent,
    UserTypingEvent,
    NewMessageEvent,
    MessageStatusUpdateEvent,
    ErrorEvent,
]


def new_message_event(message: Message) -> NewMessageEvent:
    return NewMessageEvent(**MessagePayload.from_message(message).model_dump())


# ============================================================================
# INBOUND ACTIONS (client -> server, WebSocket transport)
# ============================================================================

class JoinRoomAction(BaseModel):
    action: Literal["join-room"]
    roomId: Optional[str] = None
    username: Optional[str] = None


class SendMessageAction(BaseModel):
    action: Literal["send-message"]
    roomId: Optional[str] = None
    message: Optional[str] = None
    messageId: Optional[str] = None
    type: str = "text"


class TypingStartAction(BaseModel):
    action: Literal["typing-start"]
    roomId: Optional[str] = None


class TypingStopAction(BaseModel):
    action: Literal["typing-stop"]
    roomId: Optional[str] = None


class TypingAction(BaseModel):
    action: Literal["typing"]
    roomId: Optional[str] = None
    typing: bool = False


class LeaveRoomAction(BaseModel):
    action: Literal["leave-room"]
    roomId: Optional[str] = None


InboundAction = Annotated[
    Union[
        JoinRoomAction,
        SendMessageAction,
        TypingStartAction,
        TypingStopAction,
        TypingAction,
        LeaveRoomAction,
    ],
    Field(discriminator="action"),
]

_inbound_adapter = TypeAdapter(InboundAction)


def parse_action(data: dict):
    """Decode one inbound frame. Raises pydantic.ValidationError on an unknown or malformed action."""
    return _inbound_adapter.validate_python(data)
