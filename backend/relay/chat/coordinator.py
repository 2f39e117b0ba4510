"""Per-connection protocol state machine.

Each accepted WebSocket gets one :class:`ConnectionCoordinator`. It moves the
connection through ``pending -> joined -> closed`` and turns inbound frames
into registry mutations and broadcasts.

Every transition runs synchronously from start to finish. Nothing in here
awaits, so all the events a single inbound frame produces are enqueued on
the recipients' outboxes before any other connection's frame is processed.
That is what keeps delivery FIFO per recipient and keeps each
``users_update`` in step with the roster change that caused it.

Protocol violations (sending before joining, joining twice, empty names) and
malformed frames are dropped. When ``report_protocol_errors`` is on, the
offender alone also gets an ``error`` event.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .broadcaster import EventBroadcaster, Outbox, Recipients
from .registry import DuplicateConnection, SessionRegistry
from .schemas import (
    ChatMessage,
    ErrorNotice,
    InboundEvent,
    JoinPayload,
    MessageIdGenerator,
    OutboundEvent,
    PresenceNotice,
    SendMessagePayload,
    TypingNotice,
    TypingPayload,
    iso_timestamp,
    make_event,
)
from .typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    PENDING = "pending"
    JOINED = "joined"
    CLOSED = "closed"


@dataclass
class Connection:
    """One live transport channel.

    Attributes:
        outbox: Bounded queue drained onto the transport by a writer task.
        id: Opaque id, unique for the lifetime of the process.
        username: Display name, set on join.
        state: Current protocol state.
        close_code: WebSocket close code the server should send, if the
            server (not the client) is ending the connection.
    """
    outbox: Outbox
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    username: Optional[str] = None
    state: ConnectionState = ConnectionState.PENDING
    close_code: Optional[int] = None


class ConnectionCoordinator:
    """Drives one connection through the chat protocol."""

    def __init__(
        self,
        connection: Connection,
        registry: SessionRegistry,
        broadcaster: EventBroadcaster,
        typing: TypingTracker,
        message_ids: MessageIdGenerator,
        report_protocol_errors: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.connection = connection
        self._registry = registry
        self._broadcaster = broadcaster
        self._typing = typing
        self._message_ids = message_ids
        self._report_protocol_errors = report_protocol_errors
        self._clock = clock

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def closed(self) -> bool:
        return self.connection.state is ConnectionState.CLOSED

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    def handle_frame(self, frame: Any) -> None:
        """Dispatch one decoded JSON frame.

        Frames must be objects with a string ``type`` naming an inbound event
        and an optional ``data`` payload. Anything else is dropped.
        """
        if self.closed:
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            self._reject("malformed frame")
            return

        try:
            event = InboundEvent(frame["type"])
        except ValueError:
            self._reject(f"unknown event: {frame['type']}")
            return

        data = frame.get("data")
        if event is InboundEvent.JOIN:
            self.join(data)
        elif event is InboundEvent.SEND_MESSAGE:
            self.send_message(data)
        elif event is InboundEvent.TYPING:
            self.typing(data)

    # =========================================================================
    # Transitions
    # =========================================================================

    def join(self, data: Any) -> bool:
        """Handle ``join``.

        Accepts ``{"username": name}`` or a bare string. On success the
        joiner is registered, everyone else gets ``user_joined``, the joiner
        gets ``online_users`` and everyone gets ``users_update``.

        Returns:
            True if the connection joined.
        """
        if self.state is not ConnectionState.PENDING:
            self._reject("already joined" if self.state is ConnectionState.JOINED else "connection closed")
            return False

        if isinstance(data, str):
            data = {"username": data}
        try:
            payload = JoinPayload.model_validate(data)
        except ValidationError:
            self._reject("malformed join payload")
            return False

        username = payload.username.strip()
        if not username:
            self._reject("username must not be empty")
            return False

        connection = self.connection
        with self._broadcaster.batch():
            try:
                roster = self._registry.insert(connection.id, username)
            except DuplicateConnection:
                logger.error(f"[Coordinator] {connection.id} is registered but was pending")
                return False

            connection.username = username
            connection.state = ConnectionState.JOINED

            self._broadcaster.deliver(
                make_event(OutboundEvent.USER_JOINED, PresenceNotice.joined(username, self._clock())),
                Recipients.all_except(connection.id),
            )
            self._broadcaster.send_to(
                connection.id, make_event(OutboundEvent.ONLINE_USERS, roster)
            )
            self._broadcaster.deliver(
                make_event(OutboundEvent.USERS_UPDATE, roster),
                Recipients.all(),
            )

        logger.info(f"[Coordinator] {username} joined the chat ({len(roster)} online)")
        return True

    def send_message(self, data: Any) -> Optional[ChatMessage]:
        """Handle ``send_message``; relays the text to every joined connection.

        Returns:
            The relayed message, or None if the event was dropped.
        """
        if self.state is not ConnectionState.JOINED:
            self._reject("join before sending messages")
            return None
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError:
            self._reject("malformed send_message payload")
            return None
        if not payload.text.strip():
            logger.debug(f"[Coordinator] Dropped empty message from {self.connection.id}")
            return None

        message = ChatMessage(
            id=self._message_ids.next_id(),
            username=self.connection.username,
            text=payload.text,
            timestamp=iso_timestamp(self._clock()),
        )
        with self._broadcaster.batch():
            self._broadcaster.deliver(
                make_event(OutboundEvent.RECEIVE_MESSAGE, message),
                Recipients.all(),
            )
        logger.info(f"[Coordinator] Message sent: id={message.id} from {message.username}")
        return message

    def typing(self, data: Any) -> bool:
        """Handle ``typing``; tells everyone else whether this user is typing."""
        if self.state is not ConnectionState.JOINED:
            self._reject("join before sending typing updates")
            return False
        try:
            payload = TypingPayload.model_validate(data)
        except ValidationError:
            self._reject("malformed typing payload")
            return False

        connection = self.connection
        self._typing.set(connection.id, connection.username, payload.isTyping)
        with self._broadcaster.batch():
            self._broadcaster.deliver(
                make_event(
                    OutboundEvent.USER_TYPING,
                    TypingNotice(username=connection.username, isTyping=payload.isTyping),
                ),
                Recipients.all_except(connection.id),
            )
        return True

    def disconnect(self, reason: str = "client closed") -> bool:
        """Run the disconnect transition. Safe to call any number of times.

        Returns:
            True if this call performed the transition.
        """
        connection = self.connection
        if connection.state is ConnectionState.CLOSED:
            return False

        was_joined = connection.state is ConnectionState.JOINED
        connection.state = ConnectionState.CLOSED
        if not was_joined:
            logger.info(f"[Coordinator] {connection.id} closed before joining ({reason})")
            return True

        self._typing.clear(connection.id)
        with self._broadcaster.batch():
            removal = self._registry.remove(connection.id)
            if removal is None:
                return True
            self._broadcaster.deliver(
                make_event(OutboundEvent.USER_LEFT, PresenceNotice.left(removal.username, self._clock())),
                Recipients.all_except(connection.id),
            )
            self._broadcaster.deliver(
                make_event(OutboundEvent.USERS_UPDATE, removal.roster),
                Recipients.all(),
            )
        logger.info(f"[Coordinator] {removal.username} disconnected ({reason})")
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _reject(self, reason: str) -> None:
        logger.debug(f"[Coordinator] Dropped event from {self.connection.id}: {reason}")
        if self._report_protocol_errors and not self.closed:
            self._broadcaster.send_to(
                self.connection.id,
                make_event(OutboundEvent.ERROR, ErrorNotice(error=reason)),
            )

