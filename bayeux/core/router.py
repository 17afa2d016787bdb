"""Publish/subscribe fan-out."""

import logging
from typing import Callable, List, Optional

from bayeux.core.registry import ChannelRegistry, ClientRegistry
from bayeux.models.channel import is_service
from bayeux.models.message import Message

logger = logging.getLogger(__name__)

Listener = Callable[[str, Message], None]


class Router:
    """Routes published messages to every subscriber of a channel."""

    def __init__(self, clients: ClientRegistry, channels: ChannelRegistry):
        self.clients = clients
        self.channels = channels
        self.listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Register a server-side observer called as ``listener(channel, message)``."""
        self.listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def publish(self, message: Message, channel: Optional[str] = None) -> int:
        """
        Deliver ``message`` to the subscribers of a channel.

        Each subscriber gets the message appended to its outbox and its
        parked long-poll, if any, woken. Service channels are never fanned
        out.

        Args:
            message: The message to deliver
            channel: Target channel; defaults to ``message.channel``

        Returns:
            Number of clients the message was queued for
        """
        target = channel if channel is not None else message.channel
        self._notify_listeners(target, message)

        if is_service(target):
            return 0

        subscribers = self.channels.subscribers(target)
        logger.debug(f"Publishing to {target} with {len(subscribers)} subscribers: {message!r}")

        delivered = 0
        for client_id in subscribers:
            client = self.clients.lookup(client_id)
            if client is None:
                continue
            client.add_message(message)
            client.wake()
            delivered += 1
        return delivered

    def _notify_listeners(self, channel: str, message: Message) -> None:
        for listener in list(self.listeners):
            try:
                listener(channel, message)
            except Exception as e:
                logger.error(f"Publish listener failed on {channel}: {str(e)}")
