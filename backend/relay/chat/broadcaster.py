"""Event fan-out to live connections.

The broadcaster knows nothing about WebSockets. Each connection hands it an
:class:`Outbox`, a bounded FIFO that a per-connection writer task drains onto
the transport. Delivery never awaits: an event is either enqueued right away
or the recipient is marked as a slow consumer.

Slow consumers are not dropped in the middle of a fan-out. They are collected
and reported to the failure handler once the outermost :meth:`batch` exits,
so the leave notices their removal produces are enqueued after every event
of the transition that overflowed them.

Thread Safety:
    Designed for a single event loop, like the rest of the chat package.
"""
import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from .registry import SessionRegistry

logger = logging.getLogger(__name__)

# Default bound of a connection's outbox
DEFAULT_OUTBOX_SIZE = 256

_CLOSE = object()


class Outbox:
    """Bounded outbound queue for one connection.

    The sentinel used to stop the writer does not count toward the bound, so
    closing always succeeds even when the outbox is full.
    """

    def __init__(self, maxsize: int = DEFAULT_OUTBOX_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("outbox size must be at least 1")
        self.maxsize = maxsize
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def offer(self, event: Dict[str, Any]) -> bool:
        """Enqueue an event without blocking.

        Returns:
            False if the outbox is full, True otherwise. Offers to a closed
            outbox are ignored and count as accepted.
        """
        if self.closed:
            return True
        if self._queue.qsize() >= self.maxsize:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self, discard_pending: bool = False) -> None:
        """Stop accepting events and let the writer finish.

        Args:
            discard_pending: Drop events not yet written (used when the
                connection is being torn down for misbehaving).
        """
        if self.closed:
            return
        self.closed = True
        if discard_pending:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    def pending(self) -> List[Dict[str, Any]]:
        """Pop every queued event without waiting (the close sentinel stays)."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSE:
                self._queue.put_nowait(_CLOSE)
                break
            events.append(item)
        return events

    def __len__(self) -> int:
        return self._queue.qsize()

    async def drain(self, send: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Write queued events in order until the outbox is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            await send(item)


@dataclass(frozen=True)
class Recipients:
    """Recipient-selection policy for a broadcast.

    Use :meth:`all` or :meth:`all_except` rather than the constructor.
    """
    exclude: Optional[str] = None

    @classmethod
    def all(cls) -> "Recipients":
        return cls()

    @classmethod
    def all_except(cls, connection_id: str) -> "Recipients":
        return cls(exclude=connection_id)

    def includes(self, connection_id: str) -> bool:
        return connection_id != self.exclude


class EventBroadcaster:
    """Delivers events to registered connections in registry order."""

    def __init__(
        self,
        registry: SessionRegistry,
        on_slow_consumer: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._registry = registry
        self._outboxes: Dict[str, Outbox] = {}
        self._on_slow_consumer = on_slow_consumer
        # Ordered set of connection ids waiting to be reported
        self._slow: Dict[str, None] = {}
        self._depth = 0

    def attach(self, connection_id: str, outbox: Outbox) -> None:
        self._outboxes[connection_id] = outbox

    def detach(self, connection_id: str) -> Optional[Outbox]:
        return self._outboxes.pop(connection_id, None)

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group deliveries so slow consumers are reported once they all finish."""
        self._depth += 1
        try:
            yield
        finally:
            if self._depth == 1:
                self._report_slow_consumers()
            self._depth -= 1

    def deliver(self, event: Dict[str, Any], recipients: Recipients) -> int:
        """Enqueue an event on every registered connection the policy selects.

        Args:
            event: Frame to send.
            recipients: Which registered connections receive it.

        Returns:
            Number of outboxes the event was enqueued on.
        """
        delivered = 0
        with self.batch():
            for connection_id in self._registry.snapshot_ids():
                if not recipients.includes(connection_id):
                    continue
                if self._offer(connection_id, event):
                    delivered += 1
        return delivered

    def send_to(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """Enqueue an event for a single connection, registered or not."""
        with self.batch():
            return self._offer(connection_id, event)

    def _offer(self, connection_id: str, event: Dict[str, Any]) -> bool:
        outbox = self._outboxes.get(connection_id)
        if outbox is None or outbox.closed or connection_id in self._slow:
            return False
        if outbox.offer(event):
            return True
        logger.warning(
            f"[Broadcaster] Outbox full for {connection_id} "
            f"({outbox.maxsize} events); dropping connection"
        )
        self._slow[connection_id] = None
        return False

    def _report_slow_consumers(self) -> None:
        while self._slow:
            connection_id = next(iter(self._slow))
            if self._on_slow_consumer is not None:
                self._on_slow_consumer(connection_id)
            self._slow.pop(connection_id, None)
            self._outboxes.pop(connection_id, None)
