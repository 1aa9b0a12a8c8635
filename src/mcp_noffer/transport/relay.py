"""Websocket relay pool.

Client to relay messages:
- ["EVENT", <event>]
- ["REQ", <subscription id>, <filter>]
- ["CLOSE", <subscription id>]

Relay to client messages:
- ["EVENT", <subscription id>, <event>]
- ["OK", <event id>, <accepted>, <message>]
- ["EOSE", <subscription id>]
- ["CLOSED", <subscription id>, <message>]
- ["NOTICE", <message>]
"""

import asyncio
import json
import logging
import secrets
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from mcp_noffer.config import Config, normalize_relay_url, unique_relays
from mcp_noffer.errors import TransportPublishError
from mcp_noffer.event import Event, Filter
from mcp_noffer.transport.interface import (
    EventHandler,
    PublishOutcome,
    Subscription,
    Transport,
)


logger = logging.getLogger(__name__)

MAX_MESSAGE_BYTES = 1024 * 1024

CONNECTION_ERRORS = (OSError, WebSocketException, asyncio.TimeoutError)


class RelayConnection:
    """Single websocket connection to a relay, opened on first use."""

    def __init__(self, url: str, connect_timeout: float = 10.0, publish_timeout: float = 10.0):
        self.url = url
        self.connect_timeout = connect_timeout
        self.publish_timeout = publish_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._handlers: dict[str, tuple[Filter, EventHandler]] = {}
        self._pending_ok: dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Open the websocket if it is not already open."""
        async with self._lock:
            if self._ws is not None:
                return
            logger.debug("Connecting to relay %s", self.url)
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    open_timeout=self.connect_timeout,
                    max_size=MAX_MESSAGE_BYTES,
                    close_timeout=1,
                ),
                timeout=self.connect_timeout + 1.0,
            )
            self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def _send(self, message: list[Any]) -> None:
        if self._ws is None:
            raise ConnectionError(f"Not connected to {self.url}")
        await self._ws.send(json.dumps(message, separators=(",", ":"), ensure_ascii=False))

    async def publish(self, event: Event) -> PublishOutcome:
        """Send an event and wait for the relay's OK.

        Raises:
            TransportPublishError: If the relay is unreachable, times out or
                rejects the event
        """
        # Concurrent publishes of one event share the first caller's OK
        future = self._pending_ok.get(event.id)
        first = future is None
        if first:
            future = asyncio.get_running_loop().create_future()
            self._pending_ok[event.id] = future
        try:
            if first:
                await self.connect()
                await self._send(["EVENT", event.to_dict()])
            accepted, message = await asyncio.wait_for(
                asyncio.shield(future), timeout=self.publish_timeout
            )
        except CONNECTION_ERRORS as e:
            reason = str(e) or type(e).__name__
            if not future.done():
                future.set_result((False, reason))
            raise TransportPublishError(self.url, reason) from e
        finally:
            if first and self._pending_ok.get(event.id) is future:
                del self._pending_ok[event.id]

        if not accepted:
            raise TransportPublishError(self.url, message or "rejected")
        return PublishOutcome(relay=self.url, ok=True, message=message)

    async def subscribe(self, subscription_id: str, filter: Filter, handler: EventHandler) -> None:
        await self.connect()
        self._handlers[subscription_id] = (filter, handler)
        await self._send(["REQ", subscription_id, filter.to_dict()])

    async def unsubscribe(self, subscription_id: str) -> None:
        if self._handlers.pop(subscription_id, None) is None:
            return
        if self._ws is None:
            return
        try:
            await self._send(["CLOSE", subscription_id])
        except CONNECTION_ERRORS as e:
            logger.debug("Failed to close subscription %s on %s: %s", subscription_id, self.url, e)

    def handle_message(self, raw: str) -> None:
        """Dispatch one relay message."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON message from %s", self.url)
            return
        if not isinstance(message, list) or len(message) < 2:
            return

        kind = message[0]
        if not isinstance(message[1], str):
            logger.debug("Ignoring %s message with invalid id from %s", kind, self.url)
            return

        if kind == "EVENT" and len(message) >= 3:
            self._handle_event(message[1], message[2])
        elif kind == "OK" and len(message) >= 3:
            future = self._pending_ok.get(message[1])
            if future is not None and not future.done():
                text = str(message[3]) if len(message) > 3 else ""
                future.set_result((message[2] is True, text))
        elif kind == "EOSE":
            logger.debug("End of stored events for %s on %s", message[1], self.url)
        elif kind == "CLOSED":
            self._handlers.pop(message[1], None)
            reason = message[2] if len(message) > 2 else ""
            logger.warning("Relay %s closed subscription %s: %s", self.url, message[1], reason)
        elif kind == "NOTICE":
            logger.debug("Notice from %s: %s", self.url, message[1])

    def _handle_event(self, subscription_id: str, data: Any) -> None:
        entry = self._handlers.get(subscription_id)
        if entry is None:
            return
        filter, handler = entry

        try:
            event = Event.from_dict(data)
        except ValueError as e:
            logger.debug("Dropping malformed event from %s: %s", self.url, e)
            return
        if not filter.matches(event):
            logger.debug("Dropping event %s from %s: does not match filter", event.id, self.url)
            return
        if not event.verify():
            logger.warning("Dropping event %s from %s: invalid signature", event.id, self.url)
            return
        handler(event)

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    self.handle_message(raw)
                except (TypeError, ValueError, KeyError, IndexError) as e:
                    logger.warning("Ignoring bad message from %s: %s", self.url, e)
        except ConnectionClosed as e:
            logger.info("Relay %s disconnected: %s", self.url, e)
        finally:
            if self._ws is ws:
                self._ws = None
            for future in self._pending_ok.values():
                if not future.done():
                    future.set_result((False, "connection closed"))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        self._handlers.clear()
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None


class PoolSubscription(Subscription):
    """Subscription spanning several relays, delivering each event once."""

    def __init__(self, subscription_id: str, on_event: EventHandler):
        self.id = subscription_id
        self.relays: list[RelayConnection] = []
        self._on_event = on_event
        self._seen: set[str] = set()
        self._closed = False

    def deliver(self, event: Event) -> None:
        if self._closed or event.id in self._seen:
            return
        self._seen.add(event.id)
        self._on_event(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.gather(*(relay.unsubscribe(self.id) for relay in self.relays))


class RelayPool(Transport):
    """Transport over a set of websocket relays, one connection per URL."""

    def __init__(self, config: Optional[Config] = None):
        config = config or Config()
        self.connect_timeout = config.connect_timeout
        self.publish_timeout = config.publish_timeout
        self._relays: dict[str, RelayConnection] = {}

    def relay(self, url: str) -> RelayConnection:
        """Get or create the connection for a relay URL."""
        url = normalize_relay_url(url)
        if url not in self._relays:
            self._relays[url] = RelayConnection(
                url,
                connect_timeout=self.connect_timeout,
                publish_timeout=self.publish_timeout,
            )
        return self._relays[url]

    async def _publish_one(self, url: str, event: Event) -> PublishOutcome:
        relay = self.relay(url)
        try:
            outcome = await relay.publish(event)
        except TransportPublishError as e:
            logger.warning("Publish of %s to %s failed: %s", event.id, relay.url, e.message)
            return PublishOutcome(relay=relay.url, ok=False, message=e.message)
        logger.info("Published %s to %s", event.id, relay.url)
        return outcome

    async def publish(self, relays: list[str], event: Event) -> list[PublishOutcome]:
        """Publish to every relay concurrently; per-relay failures are logged."""
        relays = unique_relays(relays)
        return list(await asyncio.gather(*(self._publish_one(url, event) for url in relays)))

    async def _subscribe_one(self, url: str, filter: Filter, subscription: PoolSubscription) -> None:
        relay = self.relay(url)
        try:
            await relay.subscribe(subscription.id, filter, subscription.deliver)
        except CONNECTION_ERRORS as e:
            logger.warning("Subscribe on %s failed: %s", relay.url, e)
            return
        subscription.relays.append(relay)

    async def subscribe(
        self,
        relays: list[str],
        filter: Filter,
        on_event: EventHandler,
    ) -> Subscription:
        """Open one subscription across all relays that can be reached."""
        subscription = PoolSubscription(secrets.token_hex(8), on_event)
        relays = unique_relays(relays)
        await asyncio.gather(*(self._subscribe_one(url, filter, subscription) for url in relays))
        return subscription

    async def close(self) -> None:
        relays, self._relays = list(self._relays.values()), {}
        await asyncio.gather(*(relay.close() for relay in relays), return_exceptions=True)
