"""Peer session endpoints for both tunnel roles."""

from .base import PeerSession
from .listen import DEFAULT_CAPACITY, ListenEndpoint
from .send import SendEndpoint

__all__ = [
    "PeerSession",
    "ListenEndpoint",
    "SendEndpoint",
    "DEFAULT_CAPACITY",
]
