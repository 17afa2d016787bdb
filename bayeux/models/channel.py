"""Channel name classification."""

HANDSHAKE = "/meta/handshake"
CONNECT = "/meta/connect"
DISCONNECT = "/meta/disconnect"
SUBSCRIBE = "/meta/subscribe"
UNSUBSCRIBE = "/meta/unsubscribe"

# Internal status channel announcing handshakes and connection changes.
STATUS = "/cometd/meta"

META_PREFIX = "/meta/"
SERVICE_PREFIX = "/service/"


def is_meta(name: str) -> bool:
    return name.startswith(META_PREFIX)


def is_service(name: str) -> bool:
    """Service channels are point-to-point with the server, never fanned out."""
    return name.startswith(SERVICE_PREFIX)
