"""Client and channel registries."""

import logging
import secrets
from typing import Dict, Iterator, List, Optional, Set

from bayeux.core.exceptions import ForbiddenChannel
from bayeux.models.channel import is_meta
from bayeux.models.client import Client

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Owns every handshaken client, keyed by client id."""

    def __init__(self, id_bytes: int = 16):
        """
        Initialize an empty registry.

        Args:
            id_bytes: Random bytes per generated client id (16 = 128 bits)
        """
        self.clients: Dict[str, Client] = {}
        self.id_bytes = id_bytes

    def next_client_id(self) -> str:
        """Generate a client id not already in use."""
        while True:
            client_id = secrets.token_hex(self.id_bytes)
            if client_id not in self.clients:
                return client_id

    def create(self) -> Client:
        """Allocate and register a new client."""
        client = Client(id=self.next_client_id())
        self.clients[client.id] = client
        logger.debug(f"New client receives ID {client.id}")
        return client

    def lookup(self, client_id: Optional[str]) -> Optional[Client]:
        """Return the client for ``client_id``, or None if it is not registered."""
        if client_id is None:
            return None
        return self.clients.get(client_id)

    def remove(self, client_id: str) -> None:
        """
        Forget a client.

        The caller must already have unsubscribed the client and resolved
        its pending poll.
        """
        self.clients.pop(client_id, None)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self.clients

    def __iter__(self) -> Iterator[Client]:
        return iter(list(self.clients.values()))

    def __len__(self) -> int:
        return len(self.clients)


class ChannelRegistry:
    """
    Maps channel names to the ids of their subscribed clients.

    Channel membership and ``Client.subscribed_channels`` are only changed
    here, together, so each is always the inverse of the other.
    """

    def __init__(self):
        self._channels: Dict[str, Set[str]] = {}

    def subscribe(self, client: Client, channel: str) -> str:
        """
        Subscribe ``client`` to ``channel``.

        Subscribing twice is a no-op.

        Returns:
            The confirmed subscription name

        Raises:
            ForbiddenChannel: If ``channel`` is a meta channel
        """
        if is_meta(channel):
            raise ForbiddenChannel(channel)
        self._channels.setdefault(channel, set()).add(client.id)
        client.subscribed_channels.add(channel)
        return channel

    def unsubscribe(self, client: Client, channel: str) -> None:
        """Remove ``client`` from ``channel``; a no-op if it was not subscribed."""
        client.subscribed_channels.discard(channel)
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(client.id)
        if not members:
            del self._channels[channel]

    def subscribers(self, channel: str) -> List[str]:
        """Snapshot of the client ids subscribed to ``channel``."""
        return list(self._channels.get(channel, ()))

    def channels(self) -> List[str]:
        """Names of all channels with at least one subscriber."""
        return list(self._channels)

    def __contains__(self, channel: object) -> bool:
        return channel in self._channels

    def __len__(self) -> int:
        return len(self._channels)
