"""Shared test fixtures: an in-memory relay network and a scripted payee."""

import asyncio
import json
from typing import Callable, Optional

import pytest
from mcp_noffer.encryption import decrypt, encrypt
from mcp_noffer.event import Event, Filter
from mcp_noffer.identity import Identity
from mcp_noffer.transport.interface import (
    EventHandler,
    PublishOutcome,
    Subscription,
    Transport,
)


class FakeSubscription(Subscription):
    """Subscription registered on a FakeTransport."""

    def __init__(self, transport: "FakeTransport", filter: Filter, on_event: EventHandler):
        self.transport = transport
        self.filter = filter
        self.on_event = on_event
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        if self in self.transport.subscriptions:
            self.transport.subscriptions.remove(self)


class FakeTransport(Transport):
    """In-memory relay network.

    Published events are recorded and handed to `responder`, which may
    deliver replies synchronously through `deliver`. Delivery applies each
    subscription's filter the way a relay would.
    """

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.responder: Optional[Callable[[Event], None]] = None
        self.publish_delay: Optional[float] = None
        self.publish_error: Optional[Exception] = None
        self.published: list[tuple[list[str], Event]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.all_subscriptions: list[FakeSubscription] = []
        self.closed = False

    async def publish(self, relays: list[str], event: Event) -> list[PublishOutcome]:
        self.published.append((list(relays), event))
        if self.publish_delay is not None:
            await asyncio.sleep(self.publish_delay)
        if self.publish_error is not None:
            raise self.publish_error
        if self.responder is not None:
            self.responder(event)
        message = "" if self.accept else "blocked: not accepting events"
        return [PublishOutcome(relay, self.accept, message) for relay in relays]

    async def subscribe(self, relays: list[str], filter: Filter, on_event: EventHandler) -> Subscription:
        subscription = FakeSubscription(self, filter, on_event)
        self.subscriptions.append(subscription)
        self.all_subscriptions.append(subscription)
        return subscription

    def deliver(self, event: Event) -> None:
        for subscription in list(self.subscriptions):
            if subscription.filter.matches(event):
                subscription.on_event(event)

    async def close(self) -> None:
        self.closed = True


class Payee:
    """Service side of an exchange, driven by the test."""

    def __init__(self, transport: FakeTransport):
        self.transport = transport
        self.identity = Identity.generate()
        self.requests: list[dict] = []

    def read(self, request: Event) -> dict:
        """Decrypt a request addressed to this payee."""
        key = self.identity.conversation_key(request.pubkey)
        return json.loads(decrypt(request.content, key))

    def reply_event(self, request: Event, payload: dict, content: Optional[str] = None) -> Event:
        """Signed response event referencing `request`."""
        if content is None:
            key = self.identity.conversation_key(request.pubkey)
            content = encrypt(json.dumps(payload), key)
        return self.identity.sign_event(
            request.kind,
            [["p", request.pubkey], ["e", request.id]],
            content,
        )

    def respond(self, request: Event, payload: dict, content: Optional[str] = None) -> None:
        self.transport.deliver(self.reply_event(request, payload, content))

    def auto_reply(self, build: Callable[[dict], dict]) -> None:
        """Answer every published request with `build(decrypted_request)`."""
        def responder(event: Event) -> None:
            request = self.read(event)
            self.requests.append(request)
            self.respond(event, build(request))

        self.transport.responder = responder


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def payee(transport):
    return Payee(transport)


@pytest.fixture
def client_identity():
    return Identity.generate()
