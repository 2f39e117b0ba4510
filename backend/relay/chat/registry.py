"""Session registry: who is online, in join order.

The registry maps connection ids to display names. It is the single source
of truth for the roster and the only place broadcast order comes from. All
reads and writes go through one lock, and the mutating calls hand back the
roster snapshot taken inside the same critical section so a ``users_update``
never reflects a different state than the mutation that caused it.
"""
import logging
import threading
from collections import OrderedDict
from typing import List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class DuplicateConnection(Exception):
    """A connection tried to join twice."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"connection {connection_id} is already registered")
        self.connection_id = connection_id


class Removal(NamedTuple):
    """Result of removing a registered connection."""
    username: str
    roster: List[str]


class SessionRegistry:
    """Ordered, lock-guarded mapping of connection id to display name.

    Display names are not unique; entries are keyed by connection id only.
    """

    def __init__(self) -> None:
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def insert(self, connection_id: str, display_name: str) -> List[str]:
        """Register a joined connection at the end of the roster.

        Args:
            connection_id: Id of the joining connection.
            display_name: Name the connection announced.

        Returns:
            The roster snapshot immediately after the insert.

        Raises:
            DuplicateConnection: If the id already has an entry.
        """
        with self._lock:
            if connection_id in self._entries:
                raise DuplicateConnection(connection_id)
            self._entries[connection_id] = display_name
            return list(self._entries.values())

    def remove(self, connection_id: str) -> Optional[Removal]:
        """Drop a connection from the roster.

        Removing an unknown id is a no-op so that a late or repeated
        disconnect signal is harmless.

        Returns:
            The removed name and the roster after removal, or None if the id
            was not registered.
        """
        with self._lock:
            username = self._entries.pop(connection_id, None)
            if username is None:
                return None
            return Removal(username, list(self._entries.values()))

    def snapshot_names(self) -> List[str]:
        with self._lock:
            return list(self._entries.values())

    def snapshot_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def name_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(connection_id)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._entries

    def __len__(self) -> int:
        return self.size()
