"""
Process-local presence registry.

A registry belongs to one gateway instance and is handed to its consumers;
nothing is persisted, so a restart clears all presence.
"""

import logging
from typing import Dict, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    Maps user ids to the channel names of their open connections

    A user counts as online while at least one connection is registered.
    """

    def __init__(self):
        self._connections: Dict[str, Set[str]] = {}

    def add(self, user_id, channel_name: str) -> bool:
        """
        Register a connection

        Returns:
            True if this is the user's first open connection
        """
        key = str(user_id)
        channels = self._connections.setdefault(key, set())
        first = not channels
        channels.add(channel_name)
        logger.debug(f'Presence add {key} ({len(channels)} connections)')
        return first

    def remove(self, user_id, channel_name: str) -> bool:
        """
        Drop a connection

        Returns:
            True if the user has no open connection left
        """
        key = str(user_id)
        channels = self._connections.get(key)
        if channels is None:
            return False
        channels.discard(channel_name)
        if channels:
            return False
        del self._connections[key]
        return True

    def is_online(self, user_id) -> bool:
        return str(user_id) in self._connections

    def channels_for(self, user_id) -> Set[str]:
        return set(self._connections.get(str(user_id), ()))

    def online_users(self) -> Set[str]:
        return set(self._connections)

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self):
        return len(self._connections)
