"""Tests for the payment session."""

import httpx
import pytest
from mcp_noffer.config import Config
from mcp_noffer.errors import UnrecognizedInput
from mcp_noffer.identity import IdentityStore
from mcp_noffer.messages import BudgetFrequency, DebitAccepted, InvoiceResponse
from mcp_noffer.pointer import (
    DebitPointer,
    OfferPointer,
    encode_debit_pointer,
    encode_offer_pointer,
)
from mcp_noffer.resolver import AddressResolver
from mcp_noffer.session import PaymentSession


RELAY = "wss://relay.example"


@pytest.fixture
def config(tmp_path):
    return Config(
        extra_relays=["wss://backup.example"],
        response_timeout=1.0,
        identity_path=tmp_path / "identity.json",
    )


@pytest.fixture
def session(config, transport, payee):
    offer = encode_offer_pointer(OfferPointer(payee.identity.public_key, RELAY, "coffee"))

    def lookup(request):
        return httpx.Response(200, json={"nip69": offer})

    resolver = AddressResolver(
        config, client=httpx.AsyncClient(transport=httpx.MockTransport(lookup))
    )
    return PaymentSession(config, transport=transport, resolver=resolver)


class TestPaymentSession:
    """Test session wiring."""

    def test_identity_persisted(self, session, config):
        """The session identity is created once and stored."""
        identity = session.identity

        assert config.identity_path.exists()
        assert IdentityStore(config.identity_path).load().public_key == identity.public_key
        assert session.identity is identity

    def test_exchange_uses_config(self, session):
        assert session.exchange.timeout == 1.0
        assert session.exchange.attach_zap_request is True

    @pytest.mark.asyncio
    async def test_invoice_via_address(self, session, transport, payee):
        """A payment address is resolved and an invoice requested."""
        payee.auto_reply(lambda request: {"bolt11": "lnbc1"})

        response = await session.request_invoice("alice@example.com", 100)

        assert response == InvoiceResponse("lnbc1")
        assert transport.published[0][0] == [RELAY, "wss://backup.example"]
        assert payee.requests[0]["amount"] == 100

    @pytest.mark.asyncio
    async def test_debit_via_pointer(self, session, transport, payee):
        payee.auto_reply(lambda request: {"res": "ok"})
        pointer = encode_debit_pointer(DebitPointer(payee.identity.public_key, RELAY))

        response = await session.request_debit(pointer, 10, frequency=BudgetFrequency(1, "day"))

        assert response == DebitAccepted()
        assert payee.requests[0] == {"amount_sats": 10, "frequency": {"number": 1, "unit": "day"}}

    @pytest.mark.asyncio
    async def test_debit_rejects_offer(self, session, payee):
        """An offer pointer cannot be debited."""
        pointer = encode_offer_pointer(OfferPointer(payee.identity.public_key, RELAY, "coffee"))

        with pytest.raises(UnrecognizedInput):
            await session.request_debit(pointer, 10, bolt11="lnbc1")

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, session, transport):
        async with session:
            pass

        assert transport.closed
