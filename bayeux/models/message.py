"""Message model for Bayeux envelopes."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from bayeux.core.exceptions import MalformedInput


# Keys held as dedicated attributes; everything else lives in ``fields``.
_ENVELOPE_KEYS = ("channel", "clientId", "id", "data")


@dataclass(frozen=True)
class Message:
    """
    An immutable Bayeux message.

    The envelope keys (``channel``, ``clientId``, ``id``, ``data``) are
    attributes; protocol fields such as ``subscription``, ``advice`` or
    ``successful`` are kept in the read-only ``fields`` mapping.
    """

    channel: str
    client_id: Optional[str] = None
    id: Optional[Any] = None
    data: Any = None
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a protocol field by its wire name."""
        if key == "channel":
            return self.channel
        if key == "clientId":
            return self.client_id if self.client_id is not None else default
        if key == "id":
            return self.id if self.id is not None else default
        if key == "data":
            return self.data if self.data is not None else default
        return self.fields.get(key, default)

    @property
    def subscription(self) -> Optional[str]:
        return self.fields.get("subscription")

    def reply(self, **fields: Any) -> "Message":
        """
        Build a response to this message.

        The response copies ``channel``, ``clientId`` and ``id`` from the
        request; ``fields`` become the response's protocol fields.
        """
        return Message(
            channel=self.channel,
            client_id=self.client_id,
            id=self.id,
            fields=fields,
        )

    def stamped(self, request: "Message", client_id: Optional[str] = None) -> "Message":
        """Return a copy carrying the envelope of ``request``."""
        return Message(
            channel=request.channel,
            client_id=client_id if client_id is not None else request.client_id,
            id=request.id,
            data=self.data,
            fields=self.fields,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to its wire dictionary."""
        result: Dict[str, Any] = dict(self.fields)
        result["channel"] = self.channel
        if self.client_id is not None:
            result["clientId"] = self.client_id
        if self.id is not None:
            result["id"] = self.id
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """
        Create a Message from a decoded JSON object.

        Raises:
            MalformedInput: If ``data`` is not an object or has no channel
        """
        if not isinstance(data, Mapping):
            raise MalformedInput(f"Message must be an object, got {type(data).__name__}")
        channel = data.get("channel")
        if not isinstance(channel, str) or not channel:
            raise MalformedInput("Message has no channel")
        client_id = data.get("clientId")
        return cls(
            channel=channel,
            client_id=str(client_id) if client_id is not None else None,
            id=data.get("id"),
            data=data.get("data"),
            # Explicit nulls stay in fields so to_dict reproduces them.
            fields={
                k: v for k, v in data.items()
                if k not in _ENVELOPE_KEYS or (k != "channel" and v is None)
            },
        )

    def __repr__(self) -> str:
        return f"Message(channel={self.channel!r}, client_id={self.client_id!r}, id={self.id!r})"


def parse_messages(payload: Any) -> List[Message]:
    """
    Parse a decoded request payload into a list of messages.

    Args:
        payload: A single JSON object or a list of JSON objects

    Returns:
        The messages, in request order

    Raises:
        MalformedInput: If the payload is empty or any entry is invalid
    """
    if isinstance(payload, list):
        if not payload:
            raise MalformedInput("Empty message batch")
        return [Message.from_dict(item) for item in payload]
    return [Message.from_dict(payload)]
