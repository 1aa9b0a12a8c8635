"""Client context owning identity, relay pool, resolver and exchange client."""

from typing import Optional

from mcp_noffer.config import Config
from mcp_noffer.exchange import ExchangeClient
from mcp_noffer.identity import Identity, IdentityStore
from mcp_noffer.messages import BudgetFrequency, DebitResponse, OfferResponse
from mcp_noffer.resolver import AddressResolver
from mcp_noffer.transport.interface import Transport
from mcp_noffer.transport.relay import RelayPool


class PaymentSession:
    """Everything a payer needs, created on first use and torn down by close().

    Usage:
        async with PaymentSession(config) as session:
            response = await session.request_invoice("alice@example.com", 1000)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        transport: Optional[Transport] = None,
        resolver: Optional[AddressResolver] = None,
        store: Optional[IdentityStore] = None,
    ):
        self.config = config or Config()
        self._transport = transport
        self._resolver = resolver
        self._store = store or IdentityStore(self.config.identity_path)
        self._identity: Optional[Identity] = None
        self._exchange: Optional[ExchangeClient] = None

    @property
    def identity(self) -> Identity:
        if self._identity is None:
            self._identity = self._store.load_or_create()
        return self._identity

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = RelayPool(self.config)
        return self._transport

    @property
    def resolver(self) -> AddressResolver:
        if self._resolver is None:
            self._resolver = AddressResolver(self.config)
        return self._resolver

    @property
    def exchange(self) -> ExchangeClient:
        if self._exchange is None:
            self._exchange = ExchangeClient(
                self.identity,
                self.transport,
                timeout=self.config.response_timeout,
                attach_zap_request=self.config.attach_zap_request,
            )
        return self._exchange

    async def request_invoice(self, text: str, amount: Optional[int] = None) -> OfferResponse:
        """Resolve an offer pointer or payment address and request an invoice."""
        pointer = await self.resolver.resolve_offer(text)
        relays = self.config.relays_for(pointer.relays)
        return await self.exchange.request_invoice(pointer, amount, relays=relays)

    async def request_debit(
        self,
        text: str,
        amount_sats: int,
        frequency: Optional[BudgetFrequency] = None,
        bolt11: Optional[str] = None,
    ) -> DebitResponse:
        """Resolve a debit pointer and send a debit request."""
        pointer = await self.resolver.resolve_debit(text)
        relays = self.config.relays_for(pointer.relays)
        return await self.exchange.request_debit(pointer, amount_sats, frequency, bolt11, relays)

    async def close(self):
        """Close relay connections and the HTTP client."""
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        if self._resolver is not None:
            await self._resolver.close()
            self._resolver = None
        self._exchange = None

    async def __aenter__(self) -> "PaymentSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
