# secretchat/core/errors.py

from __future__ import annotations


class RelayError(Exception):
    """
    Base class for request-scoped relay failures.

    A RelayError only ever fails the single request that raised it.
    `code` is the machine-readable value sent to clients in "error" events.
    """

    code = "relay_error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class RoomNotFound(RelayError):
    """Room id is absent, expired or already reaped. Not retryable."""

    code = "room_not_found"
    default_message = "Room not found"


class NotJoined(RelayError):
    """The connection acted on a room it never joined. Caller should rejoin."""

    code = "not_joined"
    default_message = "Not joined to this room"


class InvalidInput(RelayError):
    """A required field is missing or empty."""

    code = "invalid_input"
    default_message = "Missing required fields"


class DeliveryFailure(RelayError):
    """
    A participant's delivery channel is broken.

    Handled inside ConnectionManager by deregistering the handle;
    never surfaced to the sender of the event.
    """

    code = "delivery_failure"
    default_message = "Delivery channel closed"
