"""Errors raised while handling a single inbound chat event.

Every ``ChatError`` is terminal for the event that caused it only: the
WebSocket loop reports ``content`` back to the originating connection as an
``error`` notice and keeps the connection open.
"""
from typing import Optional


class ChatError(Exception):
    content = "Internal server error"

    def __init__(self, content: Optional[str] = None):
        if content is not None:
            self.content = content
        super().__init__(self.content)

    def to_event(self) -> dict:
        return {"type": "error", "content": self.content}


class AuthFailure(ChatError):
    content = "Invalid username or password"


class NotLoggedIn(ChatError):
    content = "Please log in first"


class NoRoom(ChatError):
    content = "Please join a room first"


class NotMember(ChatError):
    content = "You are not a member of this room"


class ProtocolError(ChatError):
    content = "Invalid message format"


class StoreUnavailable(ChatError):
    """A store collaborator failed; details are logged, never sent to clients."""

    content = "Internal server error"


class DeliveryFailure(ChatError):
    """One recipient could not be reached during fan-out."""

    def __init__(self, connection_id: str, cause: BaseException):
        self.connection_id = connection_id
        self.cause = cause
        super().__init__(f"Delivery to {connection_id} failed: {cause!r}")
