"""Client model for managing connected clients."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Set

from bayeux.models.message import Message

if TYPE_CHECKING:
    from bayeux.core.long_poll import PendingPoll


@dataclass
class Client:
    """Represents a handshaken client with its pending output."""

    id: str
    outbox: List[Message] = field(default_factory=list)
    subscribed_channels: Set[str] = field(default_factory=set)
    pending_wait: Optional["PendingPoll"] = None

    def add_message(self, message: Message) -> None:
        """Queue a message for delivery to this client."""
        self.outbox.append(message)

    def drain(self) -> List[Message]:
        """Remove and return all queued messages, oldest first."""
        queued = self.outbox
        self.outbox = []
        return queued

    def wake(self) -> bool:
        """
        Signal that this client has new output.

        Resolves the parked long-poll, if any, and clears the slot.

        Returns:
            True if a parked poll was resolved
        """
        poll = self.pending_wait
        if poll is None:
            return False
        self.pending_wait = None
        poll.fire()
        return True

    def __repr__(self) -> str:
        return f"Client(id={self.id!r}, queued={len(self.outbox)!r})"
