"""Wire schemas for the chat relay protocol.

Every WebSocket frame is a JSON object of the form::

    {"type": "<event name>", "data": <payload>}

Inbound payloads are validated with pydantic; anything that fails validation
is a malformed event and is dropped by the coordinator. Outbound payloads are
built from the models below and serialised with ``model_dump()``.
"""
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

# =============================================================================
# Event names
# =============================================================================


class InboundEvent(str, Enum):
    """Events a client may send."""
    JOIN = "join"
    SEND_MESSAGE = "send_message"
    TYPING = "typing"


class OutboundEvent(str, Enum):
    """Events the server emits.

    Attributes:
        USER_JOINED: Presence notice to everyone except the joiner.
        ONLINE_USERS: Roster snapshot sent only to the joiner.
        USERS_UPDATE: Roster snapshot sent to everyone after a join or leave.
        RECEIVE_MESSAGE: A chat line, sent to everyone including the sender.
        USER_TYPING: Typing indicator, sent to everyone except the typist.
        USER_LEFT: Presence notice to everyone except the leaver.
        ERROR: Optional protocol diagnostic, sent only to the offender.
    """
    USER_JOINED = "user_joined"
    ONLINE_USERS = "online_users"
    USERS_UPDATE = "users_update"
    RECEIVE_MESSAGE = "receive_message"
    USER_TYPING = "user_typing"
    USER_LEFT = "user_left"
    ERROR = "error"


def make_event(event_type: OutboundEvent, data: Any) -> Dict[str, Any]:
    """Wrap a payload in the frame envelope."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"type": event_type.value, "data": data}


# =============================================================================
# Inbound payloads
# =============================================================================


class JoinPayload(BaseModel):
    username: str = Field(..., description="Self-declared display name")


class SendMessagePayload(BaseModel):
    """Chat line from a client.

    ``username`` is accepted for compatibility with existing clients but the
    server always uses the name the connection joined with.
    """
    username: Optional[str] = None
    text: str = Field(..., description="Message body")


class TypingPayload(BaseModel):
    username: Optional[str] = None
    isTyping: bool = Field(..., description="True while the user is typing")


# =============================================================================
# Outbound payloads
# =============================================================================


def iso_timestamp(now: Optional[float] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and a ``Z`` suffix."""
    if now is None:
        now = time.time()
    moment = datetime.fromtimestamp(now, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ChatMessage(BaseModel):
    """A relayed chat line. Never stored once fan-out completes.

    Attributes:
        id: Server-assigned identifier derived from arrival time (ms).
        username: Display name of the sender's connection.
        text: Message body as sent.
        timestamp: Arrival time, ISO-8601 UTC.
    """
    id: int
    username: str
    text: str
    timestamp: str


class PresenceNotice(BaseModel):
    """Payload of ``user_joined`` and ``user_left``."""
    username: str
    message: str
    timestamp: str

    @classmethod
    def joined(cls, username: str, now: Optional[float] = None) -> "PresenceNotice":
        return cls(
            username=username,
            message=f"{username} joined the chat",
            timestamp=iso_timestamp(now),
        )

    @classmethod
    def left(cls, username: str, now: Optional[float] = None) -> "PresenceNotice":
        return cls(
            username=username,
            message=f"{username} left the chat",
            timestamp=iso_timestamp(now),
        )


class TypingNotice(BaseModel):
    username: str
    isTyping: bool


class ErrorNotice(BaseModel):
    error: str


# =============================================================================
# Message ids
# =============================================================================


class MessageIdGenerator:
    """Hands out millisecond timestamps as message ids.

    Ids are strictly increasing within a process: a message that arrives in
    the same millisecond as (or, after a clock step, before) the previous one
    gets ``previous + 1``.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = int(self._clock() * 1000)
            self._last = max(candidate, self._last + 1)
            return self._last
