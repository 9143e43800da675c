"""
Channel registry

Maps channel names to the set of connections subscribed to them. A channel
exists only while it has members: it is created by the first `join` and
deleted by the `leave` that removes its last member.

All methods are synchronous and meant to be called from the event loop that
owns the connections, so membership never changes in the middle of a
broadcast.
"""

import logging
from typing import Callable, Dict, Iterable, Optional, Set

from websockets.asyncio.server import ServerConnection, broadcast
from websockets.protocol import State


GLOBAL_CHANNEL = "global"

logger = logging.getLogger(__name__)


def is_open(connection: ServerConnection) -> bool:
    return connection.protocol.state is State.OPEN


class ChannelRegistry:
    """Channel name -> live connections.

    ``deliver`` sends one text payload to a list of connections without
    awaiting; it defaults to `websockets.asyncio.server.broadcast`."""

    def __init__(self, deliver: Callable[[Iterable[ServerConnection], str], None] = broadcast):
        self._deliver = deliver
        self._channels: Dict[str, Set[ServerConnection]] = {}
        self._membership: Dict[ServerConnection, str] = {}

    def join(self, channel_name: str, connection: ServerConnection) -> None:
        current = self._membership.get(connection)
        if current == channel_name:
            return
        if current is not None:
            self.leave(connection)

        members = self._channels.get(channel_name)
        if members is None:
            members = self._channels[channel_name] = set()
            logger.debug("Channel created: %s", channel_name)
        members.add(connection)
        self._membership[connection] = channel_name

    def leave(self, connection: ServerConnection) -> bool:
        """Remove ``connection`` from its channel. Returns False if it was not a member."""
        channel_name = self._membership.pop(connection, None)
        if channel_name is None:
            return False

        members = self._channels[channel_name]
        members.discard(connection)
        if not members:
            del self._channels[channel_name]
            logger.debug("Channel removed: %s", channel_name)
        return True

    def broadcast(self, channel_name: str, payload: str,
                  exclude: Optional[ServerConnection] = None) -> int:
        """Send ``payload`` to open members of one channel. Returns the recipient count."""
        members = self._channels.get(channel_name)
        if not members:
            return 0
        return self._send(members, payload, exclude)

    def broadcast_global(self, payload: str,
                         exclude: Optional[ServerConnection] = None) -> int:
        """Send ``payload`` to open members of every channel. Returns the recipient count."""
        return self._send(self._membership, payload, exclude)

    def _send(self, connections: Iterable[ServerConnection], payload: str,
              exclude: Optional[ServerConnection]) -> int:
        # closed members are reaped by their own close handler
        recipients = [c for c in connections if c is not exclude and is_open(c)]
        if recipients:
            self._deliver(recipients, payload)
        return len(recipients)

    def channel_of(self, connection: ServerConnection) -> Optional[str]:
        return self._membership.get(connection)

    def members(self, channel_name: str) -> Optional[frozenset]:
        members = self._channels.get(channel_name)
        if members is None:
            return None
        return frozenset(members)

    def channel_names(self) -> list[str]:
        return list(self._channels)

    def connections(self) -> list[ServerConnection]:
        return list(self._membership)

    def __contains__(self, channel_name: str) -> bool:
        return channel_name in self._channels

    def __len__(self) -> int:
        return len(self._membership)
