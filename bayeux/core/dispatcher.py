"""Meta-channel state machine and application channel extension point."""

import logging
from typing import Iterable, List, Optional, Union

from bayeux.core.exceptions import ForbiddenChannel, UnknownClient, UnrecognizedMetaChannel
from bayeux.core.long_poll import LongPollCoordinator, PendingPoll
from bayeux.core.registry import ChannelRegistry, ClientRegistry
from bayeux.core.router import Router
from bayeux.core.settings import Settings
from bayeux.models import channel as names
from bayeux.models.client import Client
from bayeux.models.message import Message

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0"
SUPPORTED_CONNECTION_TYPES = ["long-polling", "callback-polling"]


class Unhandled:
    """Result of a message that no handler claimed; the transport answers 404."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNHANDLED"


UNHANDLED = Unhandled()

Outcome = Union[List[Message], PendingPoll, Unhandled]
HandlerResult = Union[Message, None, Unhandled]


class ChannelHandler:
    """
    Handles application channels on behalf of the engine.

    Subclasses return a response Message, None to accept the message
    without a response, or UNHANDLED to let the next handler try.
    """

    def handle(self, message: Message, client: Optional[Client]) -> HandlerResult:
        return UNHANDLED


class BroadcastHandler(ChannelHandler):
    """Publishes application-channel messages to their subscribers."""

    def __init__(self, router: Router):
        self.router = router

    def handle(self, message: Message, client: Optional[Client]) -> HandlerResult:
        if client is None:
            raise UnknownClient(message.client_id)
        self.router.publish(message)
        return message.reply(successful=True)


def unknown_client_reply(message: Message) -> Message:
    """Negative acknowledgement telling the client to handshake again."""
    return message.reply(
        successful=False,
        error="402::Unknown client",
        advice={"reconnect": "handshake"},
    )


class ProtocolDispatcher:
    """Interprets one inbound message and produces its outcome."""

    def __init__(
        self,
        clients: ClientRegistry,
        channels: ChannelRegistry,
        router: Router,
        long_poll: LongPollCoordinator,
        settings: Settings,
        handlers: Iterable[ChannelHandler] = (),
    ):
        self.clients = clients
        self.channels = channels
        self.router = router
        self.long_poll = long_poll
        self.settings = settings
        self.handlers: List[ChannelHandler] = list(handlers)

    def add_handler(self, handler: ChannelHandler) -> None:
        self.handlers.append(handler)

    def deliver(self, message: Message, jsonp: bool = False) -> Outcome:
        """
        Dispatch ``message`` by its channel name.

        Args:
            message: The inbound message
            jsonp: Whether the request arrived as a JSONP callback-poll

        Returns:
            Response messages, a parked poll, or UNHANDLED
        """
        name = message.channel
        try:
            if name == names.HANDSHAKE:
                return [self.handshake(message, jsonp)]
            if name == names.CONNECT:
                return self.connect(message)
            if name == names.SUBSCRIBE:
                return [self.subscribe(message)]
            if name == names.UNSUBSCRIBE:
                return [self.unsubscribe(message)]
            if name == names.DISCONNECT:
                return [self.disconnect(message)]
            if names.is_meta(name):
                raise UnrecognizedMetaChannel(name)
            if names.is_service(name):
                logger.debug(f"Client {message.client_id} sent a private message to {name}")
                return [message.reply(successful=True)]
            return self.delegate(message)
        except UnknownClient as e:
            logger.info(f"{str(e)} on {name}; advising handshake")
            return [unknown_client_reply(message)]
        except UnrecognizedMetaChannel:
            logger.info(f"Client {message.client_id} tried to send a message to {name}")
            return [message.reply(successful=False)]

    def delegate(self, message: Message) -> Outcome:
        """Offer an application-channel message to the registered handlers."""
        client = self.clients.lookup(message.client_id)
        for handler in self.handlers:
            result = handler.handle(message, client)
            if result is UNHANDLED:
                continue
            if result is None:
                return []
            return [result.stamped(message)]
        return UNHANDLED

    def handshake(self, message: Message, jsonp: bool = False) -> Message:
        """Register a new client and greet it."""
        client = self.clients.create()
        logger.info(f"Client {client.id} offers a handshake")

        self.router.publish(Message(
            channel=names.STATUS, data={},
            fields={"action": "handshake", "reestablish": False, "successful": True},
        ))
        self.router.publish(Message(
            channel=names.STATUS, data={},
            fields={"action": "connect", "successful": True},
        ))

        interval = self.settings.poll_interval if jsonp else self.settings.long_poll_interval
        response = message.reply(
            version=PROTOCOL_VERSION,
            supportedConnectionTypes=list(SUPPORTED_CONNECTION_TYPES),
            successful=True,
            advice={"reconnect": "retry", "interval": interval * 1000},
            minimumVersion=message.get("minimumVersion"),
        )
        return response.stamped(message, client_id=client.id)

    def subscribe(self, message: Message) -> Message:
        """
        Subscribe the sending client to ``message.subscription``.

        The request itself is then published on the subscribed channel, so
        existing subscribers see subscription churn as ordinary traffic.
        This is intentional.
        """
        client = self._require_client(message)
        subscription = message.subscription
        if not isinstance(subscription, str):
            return message.reply(successful=False, error="400::Missing subscription")

        try:
            self.channels.subscribe(client, subscription)
        except ForbiddenChannel:
            logger.info(f"Client {client.id} may not subscribe to {subscription}")
            return message.reply(successful=False, error="500", subscription=subscription)

        logger.debug(f"Client {client.id} wants messages from {subscription}")
        self.router.publish(message, channel=subscription)
        return message.reply(successful=True, subscription=subscription)

    def unsubscribe(self, message: Message) -> Message:
        """Remove the sending client from ``message.subscription`` and announce it."""
        client = self._require_client(message)
        subscription = message.subscription
        if not isinstance(subscription, str):
            return message.reply(successful=False, error="400::Missing subscription")

        logger.debug(f"Client {client.id} no longer wants messages from {subscription}")
        self.channels.unsubscribe(client, subscription)
        self.router.publish(message, channel=subscription)
        return message.reply(successful=True, subscription=subscription)

    def connect(self, message: Message) -> Union[List[Message], PendingPoll]:
        client = self._require_client(message)
        return self.long_poll.connect(client, message)

    def disconnect(self, message: Message) -> Message:
        """
        Remove the sending client entirely.

        Every subscription is dropped (announcing each one), a final status
        message is queued and any parked poll is resolved before the client
        is forgotten.
        """
        client = self.clients.lookup(message.client_id)
        if client is None:
            return message.reply(successful=False)

        while client.subscribed_channels:
            subscription = next(iter(client.subscribed_channels))
            self.unsubscribe(Message(
                channel=names.UNSUBSCRIBE,
                client_id=client.id,
                fields={"subscription": subscription},
            ))

        client.add_message(Message(
            channel=names.STATUS, data={},
            fields={"action": "connect", "successful": False},
        ))
        client.wake()
        self.clients.remove(client.id)
        logger.info(f"Client {client.id} disconnected")
        return message.reply(successful=True)

    def _require_client(self, message: Message) -> Client:
        client = self.clients.lookup(message.client_id)
        if client is None:
            raise UnknownClient(message.client_id)
        return client
