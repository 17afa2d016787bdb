"""Bayeux engine: owns the registries and processes decoded requests."""

import logging
from typing import Any, Iterable, List, Optional

from bayeux.core.dispatcher import (
    UNHANDLED,
    ChannelHandler,
    Outcome,
    ProtocolDispatcher,
    unknown_client_reply,
)
from bayeux.core.exceptions import MalformedInput
from bayeux.core.long_poll import LongPollCoordinator, PendingPoll
from bayeux.core.registry import ChannelRegistry, ClientRegistry
from bayeux.core.router import Router
from bayeux.core.settings import Settings
from bayeux.models.channel import HANDSHAKE
from bayeux.models.client import Client
from bayeux.models.message import Message, parse_messages

logger = logging.getLogger(__name__)


class Engine:
    """
    One Bayeux server instance.

    Holds the client and channel registries and everything that acts on
    them. The transport hands each decoded request to :meth:`receive`.
    """

    def __init__(self, settings: Optional[Settings] = None, handlers: Iterable[ChannelHandler] = ()):
        self.settings = settings or Settings()
        self.clients = ClientRegistry()
        self.channels = ChannelRegistry()
        self.router = Router(self.clients, self.channels)
        self.long_poll = LongPollCoordinator()
        self.dispatcher = ProtocolDispatcher(
            self.clients,
            self.channels,
            self.router,
            self.long_poll,
            self.settings,
            handlers,
        )

    def publish(self, message: Message, channel: Optional[str] = None) -> int:
        """Publish a server-originated message."""
        return self.router.publish(message, channel=channel)

    def release(self, poll: PendingPoll) -> None:
        """Tear down a parked poll whose connection has gone away."""
        self.long_poll.release(poll)

    def receive(self, payload: Any, jsonp: bool = False) -> Outcome:
        """
        Process one decoded request.

        Args:
            payload: A decoded JSON message or list of messages
            jsonp: Whether the request arrived as a JSONP callback-poll

        Returns:
            Messages to send now, a PendingPoll to await, or UNHANDLED
        """
        try:
            messages = parse_messages(payload)
        except MalformedInput as e:
            logger.warning(f"Malformed request: {str(e)}")
            return []

        try:
            first = messages[0]
            if first.channel == HANDSHAKE and len(messages) == 1:
                return self.dispatcher.deliver(first, jsonp=jsonp)

            client = self.clients.lookup(first.client_id)
            if client is None:
                logger.info(f"Request from unknown client {first.client_id}")
                return [unknown_client_reply(first)]
            return self._deliver_batch(client, messages, jsonp)
        except Exception:
            logger.exception("Failed to process request")
            return []

    def _deliver_batch(self, client: Client, messages: List[Message], jsonp: bool) -> Outcome:
        """
        Deliver each message of a client's request in order.

        Responses are queued on the client and the whole outbox is flushed
        as the reply. A failing message is logged and skipped.
        """
        poll: Optional[PendingPoll] = None
        handled = False

        for message in messages:
            if message.channel == HANDSHAKE:
                client.add_message(message.reply(
                    successful=False, error="400::Handshake must be sent alone",
                ))
                handled = True
                continue

            try:
                outcome = self.dispatcher.deliver(message, jsonp=jsonp)
            except Exception:
                logger.exception(f"Failed to deliver {message!r}")
                continue

            if outcome is UNHANDLED:
                logger.warning(f"Unknown channel in request: {message!r}")
                continue
            handled = True
            if isinstance(outcome, PendingPoll):
                poll = outcome
            else:
                client.outbox.extend(outcome)

        if poll is not None and not poll.done:
            if client.outbox and poll.client is client:
                client.wake()
            if not poll.done:
                return poll

        if not handled:
            return UNHANDLED

        delivered = list(poll.messages or []) if poll is not None else []
        delivered.extend(client.drain())
        logger.debug(f"Sending to {client.id}: {delivered!r}")
        return delivered
