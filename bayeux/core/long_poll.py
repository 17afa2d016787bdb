"""Long-poll suspension and wake-up for /meta/connect requests."""

import asyncio
import logging
from typing import List, Optional, Union

from bayeux.models.client import Client
from bayeux.models.message import Message

logger = logging.getLogger(__name__)


class PendingPoll:
    """
    A parked connect request waiting for output.

    The poll occupies the client's single ``pending_wait`` slot until it is
    fired (by a publish, a superseding connect or a disconnect) or released
    by the transport when the connection goes away.
    """

    def __init__(self, client: Client, ack: Message):
        self.client = client
        self.ack = ack
        self.messages: Optional[List[Message]] = None
        self.released = False
        self._event = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.messages is not None or self.released

    def fire(self) -> None:
        """Deliver the connect acknowledgement and everything queued."""
        if self.done:
            return
        self.messages = [self.ack] + self.client.drain()
        logger.debug(f"Client {self.client.id} woke with {len(self.messages)} messages")
        self._event.set()

    def release(self) -> None:
        """Tear the poll down without delivering anything."""
        if self.client.pending_wait is self:
            self.client.pending_wait = None
        if self.messages is None:
            self.released = True
        self._event.set()

    async def wait(self) -> List[Message]:
        """
        Wait until the poll is fired or released.

        Returns:
            The delivered messages, or an empty list if the poll was released
        """
        await self._event.wait()
        return self.messages or []

    def __repr__(self) -> str:
        return f"PendingPoll(client={self.client.id!r}, done={self.done!r})"


class LongPollCoordinator:
    """Decides whether a connect is answered now or parked."""

    def connect(self, client: Client, message: Message) -> Union[List[Message], PendingPoll]:
        """
        Handle a /meta/connect for ``client``.

        If output is queued, or another poll is already parked, the connect
        is answered immediately: a parked poll is forced to resolve first,
        since only one outstanding poll per client is allowed. Otherwise a
        PendingPoll is parked on the client and returned.

        Returns:
            The messages to send now, or the parked poll
        """
        ack = message.reply(successful=True)

        if client.outbox or client.pending_wait is not None:
            if client.pending_wait is not None:
                logger.debug(f"Another long-poll is already active for {client.id}; closing it")
                client.wake()
            return [ack] + client.drain()

        poll = PendingPoll(client, ack)
        client.pending_wait = poll
        logger.debug(f"Client {client.id} is long-polling")
        return poll

    def release(self, poll: PendingPoll) -> None:
        """Tear down ``poll`` after its connection closed. Safe to call twice."""
        if not poll.done:
            logger.debug(f"Long-poll for {poll.client.id} closed before any output")
        poll.release()
