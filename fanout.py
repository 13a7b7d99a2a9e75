from typing import Any, Dict, Iterable

from logging_config import get_logger
from registry import SessionRegistry

logger = get_logger(__name__)


class ConnectionClosedError(Exception):
    """Raised when pushing a frame to a connection that has already closed."""


class FanoutEngine:
    """Best-effort delivery of one frame to every live connection of a set of users.

    Pushes are at-most-once per connection and never retried. A failed push is
    logged and skipped; it never stops delivery to the remaining connections.
    Offline recipients simply get nothing live.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def deliver(self, frame: Dict[str, Any], recipient_ids: Iterable[int]) -> int:
        """Push ``frame`` to every connection of every recipient. Returns the number of pushes."""
        frame_type = frame.get("type", "unknown")
        delivered = 0
        recipients = list(dict.fromkeys(recipient_ids))
        for user_id in recipients:
            connections = self.registry.connections_for(user_id)
            if not connections:
                logger.debug(f"No live connections for user {user_id}, skipping {frame_type} push")
                continue
            for connection in connections:
                try:
                    connection.push(frame)
                    delivered += 1
                except ConnectionClosedError:
                    logger.warning(f"Connection for user {user_id} closed before {frame_type} push, skipping")
                except Exception as e:
                    logger.warning(f"Error pushing {frame_type} to user {user_id}: {e}", exc_info=True)
        logger.debug(f"Delivered {frame_type} with {delivered} pushes to {len(recipients)} recipients")
        return delivered
