"""Chat relay core: roster, broadcasting and per-connection coordination."""
from .broadcaster import EventBroadcaster, Outbox, Recipients
from .coordinator import Connection, ConnectionCoordinator, ConnectionState
from .manager import ConnectionManager, manager
from .registry import DuplicateConnection, SessionRegistry
from .typing_tracker import TypingTracker

__all__ = [
    "Connection",
    "ConnectionCoordinator",
    "ConnectionManager",
    "ConnectionState",
    "DuplicateConnection",
    "EventBroadcaster",
    "Outbox",
    "Recipients",
    "SessionRegistry",
    "TypingTracker",
    "manager",
]
