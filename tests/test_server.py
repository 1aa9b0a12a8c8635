"""Tests for MCP server."""

import httpx
import pytest
from mcp_noffer.config import Config
from mcp_noffer.pointer import DebitPointer, OfferPointer, PriceType, encode_debit_pointer
from mcp_noffer.resolver import AddressResolver
from mcp_noffer.server import create_server, pointer_to_dict
from mcp_noffer.session import PaymentSession


PUBKEY = "33" * 32
RELAY = "wss://relay.example"


def _tool(server, name):
    return server._tool_manager._tools[name].fn


@pytest.fixture
def config(tmp_path):
    return Config(response_timeout=1.0, identity_path=tmp_path / "identity.json")


@pytest.fixture
def server(config):
    """Create a fresh server for each test."""
    return create_server(config)


@pytest.fixture
def wired_server(server, config, transport, payee):
    """Server whose session talks to the in-memory relay network."""
    def lookup(request):
        if request.url.host == "missing.example":
            return httpx.Response(200, json={"status": "ERROR", "reason": "unknown user"})
        encoded = _tool(server, "encode_offer")(payee.identity.public_key, RELAY, "coffee")
        return httpx.Response(200, json={"nip69": encoded["pointer"]})

    resolver = AddressResolver(
        config, client=httpx.AsyncClient(transport=httpx.MockTransport(lookup))
    )
    server._session = PaymentSession(config, transport=transport, resolver=resolver)
    return server


class TestServerCreation:
    """Test server initialization."""

    def test_create_server_returns_server(self):
        """create_server returns configured server."""
        server = create_server()
        assert server is not None

    @pytest.mark.asyncio
    async def test_server_has_expected_tools(self, server):
        """Server registers all expected tools."""
        tools = await server.list_tools()
        tool_names = {tool.name for tool in tools}

        assert tool_names == {
            "encode_offer",
            "encode_debit",
            "decode_pointer",
            "resolve_address",
            "get_identity",
            "request_invoice",
            "request_debit",
        }


class TestPointerTools:
    """Test offline pointer tools."""

    def test_encode_decode_offer(self, server):
        """encode_offer and decode_pointer roundtrip."""
        encoded = _tool(server, "encode_offer")(PUBKEY, RELAY, "coffee", "fixed", 1000)

        assert encoded["pointer"].startswith("noffer1")
        decoded = _tool(server, "decode_pointer")(encoded["pointer"])

        assert decoded == {
            "type": "noffer",
            "pubkey": PUBKEY,
            "relay": RELAY,
            "offer": "coffee",
            "price_type": "fixed",
            "price": 1000,
        }

    def test_encode_decode_debit(self, server):
        encoded = _tool(server, "encode_debit")(PUBKEY, RELAY, "sub")

        decoded = _tool(server, "decode_pointer")(encoded["pointer"])

        assert decoded == {"type": "ndebit", "pubkey": PUBKEY, "relay": RELAY, "pointer": "sub"}

    def test_encode_offer_unknown_price_type(self, server):
        result = _tool(server, "encode_offer")(PUBKEY, RELAY, "coffee", "free")

        assert "Unknown price type" in result["error"]

    def test_encode_offer_invalid_pubkey(self, server):
        result = _tool(server, "encode_offer")("abcd", RELAY, "coffee")

        assert "error" in result

    def test_encode_debit_empty_relay(self, server):
        result = _tool(server, "encode_debit")(PUBKEY, "")

        assert "Relay" in result["error"]

    def test_decode_invalid(self, server):
        """decode_pointer returns error for garbage input."""
        result = _tool(server, "decode_pointer")("noffer1notvalid")

        assert "error" in result

    def test_pointer_to_dict_spontaneous(self):
        pointer = OfferPointer(PUBKEY, RELAY, "tip", PriceType.SPONTANEOUS)

        assert pointer_to_dict(pointer)["price_type"] == "spontaneous"
        assert pointer_to_dict(pointer)["price"] is None


class TestSessionTools:
    """Test tools that use the payment session."""

    def test_get_identity(self, server, config):
        """The identity is created on first use."""
        result = _tool(server, "get_identity")()

        assert len(result["public_key"]) == 64
        assert config.identity_path.exists()
        assert _tool(server, "get_identity")() == result

    @pytest.mark.asyncio
    async def test_resolve_address(self, wired_server, payee):
        result = await _tool(wired_server, "resolve_address")("alice@example.com")

        assert result["type"] == "noffer"
        assert result["pubkey"] == payee.identity.public_key
        assert result["offer"] == "coffee"

    @pytest.mark.asyncio
    async def test_resolve_address_error(self, wired_server):
        result = await _tool(wired_server, "resolve_address")("bob@missing.example")

        assert result == {"error": "unknown user"}

    @pytest.mark.asyncio
    async def test_resolve_unrecognized(self, wired_server):
        result = await _tool(wired_server, "resolve_address")("hello")

        assert "Unrecognized" in result["error"]

    @pytest.mark.asyncio
    async def test_request_invoice(self, wired_server, payee):
        """An invoice is requested from a resolved address."""
        payee.auto_reply(lambda request: {"bolt11": "lnbc500n1test"})

        result = await _tool(wired_server, "request_invoice")("alice@example.com", 500)

        assert result == {"ok": True, "bolt11": "lnbc500n1test"}
        assert payee.requests[0]["amount"] == 500

    @pytest.mark.asyncio
    async def test_request_invoice_refused(self, wired_server, payee):
        """A payee refusal is reported as data."""
        payee.auto_reply(lambda request: {"code": 3, "error": "offer expired"})

        result = await _tool(wired_server, "request_invoice")("alice@example.com")

        assert result == {"ok": False, "code": 3, "error": "offer expired", "reason": "expired"}

    @pytest.mark.asyncio
    async def test_request_debit_budget(self, wired_server, payee):
        payee.auto_reply(lambda request: {"res": "ok"})
        pointer = encode_debit_pointer(DebitPointer(payee.identity.public_key, RELAY, "sub"))

        result = await _tool(wired_server, "request_debit")(
            pointer, 1000, frequency_number=2, frequency_unit="week"
        )

        assert result == {"ok": True, "preimage": None}
        assert payee.requests[0]["frequency"] == {"number": 2, "unit": "week"}

    @pytest.mark.asyncio
    async def test_request_debit_needs_one_mode(self, wired_server, payee):
        """Neither a frequency nor an invoice is an error."""
        pointer = encode_debit_pointer(DebitPointer(payee.identity.public_key, RELAY))

        result = await _tool(wired_server, "request_debit")(pointer, 1000)

        assert "exactly one" in result["error"]
