"""Process-wide connection manager for the chat relay.

This module owns the shared state every WebSocket handler works against:

    - the session registry (who is online, in join order)
    - the event broadcaster and each connection's outbox
    - the typing tracker
    - the message id generator

Handlers never touch those directly. They ask the manager for a
:class:`ConnectionCoordinator` when a socket is accepted, feed it frames, and
hand it back with :meth:`ConnectionManager.close` when the socket goes away.

Thread Safety:
    This implementation is designed for async/await usage with a single event
    loop. Only the registry is additionally lock-guarded, so status reads from
    other threads see a consistent roster.

Backpressure:
    Outboxes are bounded. A connection that falls ``outbox_size`` events
    behind is treated as failed: it leaves the roster like any disconnect and
    its socket is closed with 1008 (policy violation).
"""
import logging
import time
from typing import Callable, Dict, List, Optional

from .broadcaster import DEFAULT_OUTBOX_SIZE, EventBroadcaster, Outbox
from .coordinator import Connection, ConnectionCoordinator
from .registry import SessionRegistry
from .schemas import MessageIdGenerator
from .typing_tracker import TypingTracker

logger = logging.getLogger(__name__)

# Close code sent to a connection dropped for not keeping up
SLOW_CONSUMER_CLOSE_CODE = 1008


class ConnectionManager:
    """Creates coordinators and owns the state they share.

    Note:
        This is a singleton-style global instance. All WebSocket handlers
        share the same ConnectionManager to maintain a consistent roster.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.registry = SessionRegistry()
        self.broadcaster = EventBroadcaster(
            self.registry, on_slow_consumer=self._drop_slow_consumer
        )
        self.typing = TypingTracker()
        self.message_ids = MessageIdGenerator(clock)

        # connection id -> coordinator, for every accepted and not yet closed socket
        self._coordinators: Dict[str, ConnectionCoordinator] = {}

    def open(
        self,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
        report_protocol_errors: bool = False,
    ) -> ConnectionCoordinator:
        """Set up a new connection in the pending state.

        Args:
            outbox_size: Bound of the connection's outbound queue.
            report_protocol_errors: Send ``error`` events on dropped frames.

        Returns:
            The coordinator driving the new connection.
        """
        connection = Connection(outbox=Outbox(outbox_size))
        coordinator = ConnectionCoordinator(
            connection,
            self.registry,
            self.broadcaster,
            self.typing,
            self.message_ids,
            report_protocol_errors=report_protocol_errors,
            clock=self._clock,
        )
        self.broadcaster.attach(connection.id, connection.outbox)
        self._coordinators[connection.id] = coordinator
        logger.info(
            f"[Manager] User connected: {connection.id} "
            f"({len(self._coordinators)} connections)"
        )
        return coordinator

    def close(
        self,
        coordinator: ConnectionCoordinator,
        reason: str = "client closed",
        discard_pending: bool = False,
    ) -> None:
        """Run the disconnect transition and release the connection's outbox.

        Calling this more than once for the same connection is harmless.
        """
        connection = coordinator.connection
        coordinator.disconnect(reason)
        self.broadcaster.detach(connection.id)
        if self._coordinators.pop(connection.id, None) is not None:
            logger.debug(
                f"[Manager] Released {connection.id} "
                f"({len(self._coordinators)} connections left)"
            )
        connection.outbox.close(discard_pending=discard_pending)

    def _drop_slow_consumer(self, connection_id: str) -> None:
        coordinator = self._coordinators.get(connection_id)
        if coordinator is None:
            return
        logger.warning(f"[Manager] Dropping slow consumer {connection_id}")
        coordinator.connection.close_code = SLOW_CONSUMER_CLOSE_CODE
        self.close(coordinator, reason="slow consumer", discard_pending=True)

    def get(self, connection_id: str) -> Optional[ConnectionCoordinator]:
        return self._coordinators.get(connection_id)

    def connection_count(self) -> int:
        """Number of open sockets, joined or not."""
        return len(self._coordinators)

    def online_count(self) -> int:
        """Number of joined users (the roster size)."""
        return self.registry.size()

    def online_users(self) -> List[str]:
        return self.registry.snapshot_names()

    def reset(self) -> None:
        """Forget every connection. Intended for tests."""
        for coordinator in list(self._coordinators.values()):
            coordinator.connection.outbox.close(discard_pending=True)
            self.broadcaster.detach(coordinator.connection.id)
        self._coordinators.clear()
        self.registry.clear()
        self.typing.reset()


# Global singleton instance used by all WebSocket handlers
manager = ConnectionManager()
