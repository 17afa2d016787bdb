"""Bayeux long-polling publish/subscribe server."""

from bayeux.core.dispatcher import UNHANDLED, BroadcastHandler, ChannelHandler
from bayeux.core.engine import Engine
from bayeux.core.settings import Settings
from bayeux.models.message import Message

__version__ = "0.6.1"

__all__ = ["Engine", "Settings", "Message", "ChannelHandler", "BroadcastHandler", "UNHANDLED"]
