"""Session registry: authenticated user id -> live connections."""

import threading
from typing import Dict, FrozenSet, Hashable, Set

from logging_config import get_logger

logger = get_logger(__name__)


class SessionRegistry:
    """Thread-safe mapping from user id to the set of that user's open connections.

    A user may hold several connections at once (one per browser tab). Entries
    are created on first registration and pruned as soon as their set empties.
    """

    def __init__(self):
        self._connections: Dict[int, Set[Hashable]] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, connection: Hashable) -> None:
        with self._lock:
            connections = self._connections.setdefault(user_id, set())
            if connection in connections:
                logger.debug(f"Connection already registered for user {user_id}")
                return
            connections.add(connection)
            count = len(connections)
        logger.info(f"Registered connection for user {user_id} ({count} live)")

    def unregister(self, user_id: int, connection: Hashable) -> bool:
        """Remove a connection. Returns True if it was registered."""
        with self._lock:
            connections = self._connections.get(user_id)
            if not connections or connection not in connections:
                return False
            connections.discard(connection)
            remaining = len(connections)
            if not connections:
                del self._connections[user_id]
        logger.info(f"Unregistered connection for user {user_id} ({remaining} live)")
        return True

    def connections_for(self, user_id: int) -> FrozenSet[Hashable]:
        """Snapshot of the user's live connections; empty if the user has none."""
        with self._lock:
            return frozenset(self._connections.get(user_id, ()))

    def user_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(connections) for connections in self._connections.values())

    def __contains__(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._connections
