"""Encrypted request/response exchange with a payee.

One exchange moves through:

    IDLE -> CONSTRUCTED -> PUBLISHED -> AWAITING_RESPONSE
         -> RESOLVED | TIMED_OUT | FAILED | CANCELLED

The request is encrypted to the payee, signed, and published to the
pointer's relays. The response is the first event of the same kind that
references both our public key and the request id. The deadline is fixed
at publication and never renewed; whichever of response, deadline or
cancellation comes first settles the exchange and the others are ignored.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from mcp_noffer.config import RESPONSE_TIMEOUT
from mcp_noffer.encryption import decrypt, encrypt
from mcp_noffer.errors import (
    DecryptionError,
    ExchangeCancelled,
    ExchangeError,
    MalformedResponse,
    ResponseTimeout,
)
from mcp_noffer.event import DEBIT_KIND, OFFER_KIND, ZAP_REQUEST_KIND, Event, Filter
from mcp_noffer.identity import Identity
from mcp_noffer.messages import (
    BudgetFrequency,
    DebitRequest,
    DebitResponse,
    OfferRequest,
    OfferResponse,
    parse_debit_response,
    parse_offer_response,
)
from mcp_noffer.pointer import DebitPointer, OfferPointer
from mcp_noffer.transport.interface import PublishOutcome, Subscription, Transport


logger = logging.getLogger(__name__)

ResponseParser = Callable[[str], Any]


class ExchangeState(Enum):
    """Lifecycle of one request/response exchange."""
    IDLE = "idle"
    CONSTRUCTED = "constructed"
    PUBLISHED = "published"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    ExchangeState.RESOLVED,
    ExchangeState.TIMED_OUT,
    ExchangeState.FAILED,
    ExchangeState.CANCELLED,
})


class PendingExchange:
    """In-flight exchange, settled exactly once.

    Owned by the call that created it; never shared between calls.
    """

    def __init__(
        self,
        kind: int,
        target: str,
        conversation_key: bytes,
        parse: ResponseParser,
        timeout: float = RESPONSE_TIMEOUT,
    ):
        self.kind = kind
        self.target = target
        self.conversation_key = conversation_key
        self.timeout = timeout
        self.state = ExchangeState.IDLE
        self.request_id: Optional[str] = None
        self.deadline: Optional[float] = None
        self.outcomes: list[PublishOutcome] = []

        self._parse = parse
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._subscription: Optional[Subscription] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closing: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: ExchangeState) -> None:
        """Move to a non-terminal state unless already settled."""
        if not self.done:
            self.state = state

    def attach(self, subscription: Subscription) -> None:
        """Attach the response subscription; closed at once if already settled."""
        self._subscription = subscription
        if self.done:
            self._schedule_close()

    def start_deadline(self) -> None:
        """Fix the deadline `timeout` seconds from now."""
        self.deadline = self._loop.time() + self.timeout
        self._timer = self._loop.call_later(self.timeout, self._expire)

    def on_event(self, event: Event) -> None:
        """Transport callback for events matching the response filter."""
        if self._future.done():
            return
        if event.kind != self.kind or self.request_id not in event.tag_values("e"):
            logger.debug("Ignoring event %s: not a response to %s", event.id, self.request_id)
            return
        self._settle(ExchangeState.RESOLVED, result=event)

    def cancel(self) -> bool:
        """Abandon the exchange.

        Returns:
            True if this call cancelled it, False if it had already settled
        """
        return self._settle(
            ExchangeState.CANCELLED,
            error=ExchangeCancelled(f"Request {self.request_id} cancelled", self.request_id),
        )

    def abandon(self) -> None:
        """Cancel an exchange nobody will wait on, closing its subscription."""
        self.cancel()
        if self._future.done() and not self._future.cancelled():
            self._future.exception()

    def _expire(self) -> None:
        self._settle(
            ExchangeState.TIMED_OUT,
            error=ResponseTimeout(
                f"No response to {self.request_id} within {self.timeout:g}s",
                self.request_id,
            ),
        )

    def _settle(
        self,
        state: ExchangeState,
        result: Optional[Event] = None,
        error: Optional[Exception] = None,
    ) -> bool:
        if self._future.done():
            return False
        self.state = state
        if self._timer is not None:
            self._timer.cancel()
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(result)
        self._schedule_close()
        return True

    def _schedule_close(self) -> None:
        if self._subscription is not None and self._closing is None:
            self._closing = self._loop.create_task(self._close_subscription())

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        try:
            await subscription.close()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Failed to close subscription for %s: %s", self.request_id, e)

    async def wait(self) -> Any:
        """Wait for the exchange to settle.

        Returns:
            Parsed response (success or structured failure)

        Raises:
            ResponseTimeout: If the deadline passed first
            ExchangeCancelled: If the exchange was cancelled first
            MalformedResponse: If the response cannot be decrypted or parsed
        """
        try:
            event = await asyncio.shield(self._future)
        except asyncio.CancelledError:
            self.cancel()
            raise
        finally:
            if self._closing is not None:
                await self._closing

        try:
            plaintext = decrypt(event.content, self.conversation_key)
        except DecryptionError as e:
            self.state = ExchangeState.FAILED
            raise MalformedResponse(f"Cannot decrypt response {event.id}: {e}", self.request_id) from e

        try:
            return self._parse(plaintext)
        except MalformedResponse as e:
            self.state = ExchangeState.FAILED
            e.request_id = self.request_id
            raise


class ExchangeClient:
    """Issues encrypted requests and correlates their responses.

    Holds only the identity and the transport; every call gets its own
    PendingExchange, subscription and deadline.
    """

    def __init__(
        self,
        identity: Identity,
        transport: Transport,
        timeout: float = RESPONSE_TIMEOUT,
        attach_zap_request: bool = True,
    ):
        self.identity = identity
        self.transport = transport
        self.timeout = timeout
        self.attach_zap_request = attach_zap_request

    async def open_exchange(
        self,
        kind: int,
        target: str,
        relays: list[str],
        payload: dict[str, Any],
        parse: ResponseParser,
    ) -> PendingExchange:
        """Encrypt, sign and publish a request, returning its pending exchange.

        Args:
            kind: Request/response event kind
            target: Payee public key (hex)
            relays: Relays to publish to and listen on
            payload: Request payload, serialized as JSON
            parse: Parser for the decrypted response

        Returns:
            PendingExchange in AWAITING_RESPONSE (or already settled)
        """
        if not relays:
            raise ValueError("At least one relay is required")

        pending = PendingExchange(
            kind, target, self.identity.conversation_key(target), parse, self.timeout
        )
        content = encrypt(
            json.dumps(payload, separators=(",", ":"), ensure_ascii=False),
            pending.conversation_key,
        )
        pending.advance(ExchangeState.CONSTRUCTED)

        since = int(time.time())
        event = self.identity.sign_event(kind, [["p", target]], content, created_at=since)
        pending.request_id = event.id

        response_filter = Filter(
            kinds=[kind],
            pubkey_refs=[self.identity.public_key],
            event_refs=[event.id],
            since=since,
        )
        # Listen before publishing so an immediate reply is not missed
        try:
            subscription = await self.transport.subscribe(relays, response_filter, pending.on_event)
        except (OSError, asyncio.TimeoutError) as e:
            pending.state = ExchangeState.FAILED
            raise ExchangeError(f"Cannot subscribe for {event.id}: {e}", event.id) from e
        pending.attach(subscription)

        pending.start_deadline()
        try:
            pending.outcomes = await self.transport.publish(relays, event)
        except BaseException:
            pending.abandon()
            raise
        pending.advance(ExchangeState.PUBLISHED)

        accepted = sum(1 for outcome in pending.outcomes if outcome.ok)
        if accepted:
            logger.info("Request %s accepted by %d/%d relays", event.id, accepted, len(relays))
        else:
            logger.warning("Request %s accepted by no relay; waiting for deadline", event.id)

        pending.advance(ExchangeState.AWAITING_RESPONSE)
        return pending

    def zap_request(self, target: str, relay: str, amount: Optional[int] = None) -> str:
        """Signed zap request sent alongside an offer request, as JSON."""
        tags = [["p", target], ["relays", relay]]
        if amount:
            tags.append(["amount", str(amount)])
        return self.identity.sign_event(ZAP_REQUEST_KIND, tags, "").to_json()

    async def start_invoice_request(
        self,
        pointer: OfferPointer,
        amount: Optional[int] = None,
        zap: Optional[bool] = None,
        relays: Optional[list[str]] = None,
    ) -> PendingExchange:
        """Publish an invoice request; the caller waits on or cancels the result."""
        relays = relays or pointer.relays
        if zap is None:
            zap = self.attach_zap_request
        zap_json = self.zap_request(pointer.pubkey, relays[0], amount) if zap else None
        request = OfferRequest(offer=pointer.offer, amount=amount, zap=zap_json)
        return await self.open_exchange(
            OFFER_KIND, pointer.pubkey, relays, request.to_dict(), parse_offer_response
        )

    async def request_invoice(
        self,
        pointer: OfferPointer,
        amount: Optional[int] = None,
        zap: Optional[bool] = None,
        relays: Optional[list[str]] = None,
    ) -> OfferResponse:
        """Request an invoice for an offer.

        Args:
            pointer: Offer to request an invoice for
            amount: Amount in sats, for variable and spontaneous offers
            zap: Attach a signed zap request; client default when None
            relays: Relays to use instead of the pointer's own

        Returns:
            InvoiceResponse, or ErrorResponse if the payee refused
        """
        pending = await self.start_invoice_request(pointer, amount, zap, relays)
        return await pending.wait()

    async def start_debit_request(
        self,
        pointer: DebitPointer,
        amount_sats: int,
        frequency: Optional[BudgetFrequency] = None,
        bolt11: Optional[str] = None,
        relays: Optional[list[str]] = None,
    ) -> PendingExchange:
        """Publish a debit request; the caller waits on or cancels the result."""
        request = DebitRequest(
            amount_sats=amount_sats,
            pointer=pointer.pointer,
            frequency=frequency,
            bolt11=bolt11,
        )
        return await self.open_exchange(
            DEBIT_KIND,
            pointer.pubkey,
            relays or pointer.relays,
            request.to_dict(),
            parse_debit_response,
        )

    async def request_debit(
        self,
        pointer: DebitPointer,
        amount_sats: int,
        frequency: Optional[BudgetFrequency] = None,
        bolt11: Optional[str] = None,
        relays: Optional[list[str]] = None,
    ) -> DebitResponse:
        """Ask a payee to accept a recurring budget or pay an invoice.

        Args:
            pointer: Debit pointer of the wallet being debited
            amount_sats: Amount per period, or of the invoice
            frequency: Recurring schedule (mutually exclusive with bolt11)
            bolt11: Invoice to pay (mutually exclusive with frequency)
            relays: Relays to use instead of the pointer's own

        Returns:
            DebitAccepted, or ErrorResponse if the payee refused
        """
        pending = await self.start_debit_request(pointer, amount_sats, frequency, bolt11, relays)
        return await pending.wait()
