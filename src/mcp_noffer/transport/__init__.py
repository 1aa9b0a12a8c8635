"""Relay network transport."""

from mcp_noffer.transport.interface import (
    EventHandler,
    PublishOutcome,
    Subscription,
    Transport,
)
from mcp_noffer.transport.relay import RelayConnection, RelayPool

__all__ = [
    "EventHandler",
    "PublishOutcome",
    "Subscription",
    "Transport",
    "RelayConnection",
    "RelayPool",
]
