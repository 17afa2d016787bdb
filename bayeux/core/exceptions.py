"""Custom exceptions for the Bayeux engine."""


class BayeuxError(Exception):
    """Base exception for protocol errors."""
    pass


class ForbiddenChannel(BayeuxError):
    """Raised when a client tries to subscribe to a reserved meta channel."""

    def __init__(self, channel: str):
        super().__init__(f"Subscription to {channel} is not allowed")
        self.channel = channel


class UnknownClient(BayeuxError):
    """Raised when a request names a client id that is not registered."""

    def __init__(self, client_id):
        super().__init__(f"Unknown client {client_id}")
        self.client_id = client_id


class UnrecognizedMetaChannel(BayeuxError):
    """Raised for a /meta/ channel the engine does not implement."""
    pass


class MalformedInput(BayeuxError):
    """Raised when a request payload cannot be turned into messages."""
    pass
