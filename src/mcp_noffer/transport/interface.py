"""Abstract interface for the relay pub/sub network."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from mcp_noffer.event import Event, Filter


EventHandler = Callable[[Event], None]


@dataclass
class PublishOutcome:
    """Result of publishing one event to one relay."""
    relay: str
    ok: bool
    message: str = ""


class Subscription(ABC):
    """Open subscription; delivers events until closed."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery and release the subscription on every relay."""
        pass  # pragma: no cover


class Transport(ABC):
    """Abstract interface for publishing to and subscribing on relays."""

    @abstractmethod
    async def publish(self, relays: list[str], event: Event) -> list[PublishOutcome]:
        """Publish to every relay; failures are reported, never raised."""
        pass  # pragma: no cover

    @abstractmethod
    async def subscribe(
        self,
        relays: list[str],
        filter: Filter,
        on_event: EventHandler,
    ) -> Subscription:
        """Subscribe on every relay, calling `on_event` for each match."""
        pass  # pragma: no cover

    @abstractmethod
    async def close(self) -> None:
        """Close all relay connections."""
        pass  # pragma: no cover
