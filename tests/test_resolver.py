"""Tests for pointer and address resolution."""

import httpx
import pytest
from mcp_noffer.errors import (
    ChecksumMismatch,
    DiscoveryError,
    MissingPointerField,
    UnrecognizedInput,
)
from mcp_noffer.pointer import (
    DebitPointer,
    OfferPointer,
    PriceType,
    encode_debit_pointer,
    encode_offer_pointer,
)
from mcp_noffer.resolver import AddressResolver, discovery_url, strip_scheme


PUBKEY = "22" * 32
RELAY = "wss://relay.example"
OFFER = OfferPointer(PUBKEY, RELAY, "coffee", PriceType.FIXED, 1000)
DEBIT = DebitPointer(PUBKEY, RELAY, "sub")


def _resolver(handler, requests=None):
    """Resolver whose HTTP client answers with `handler`."""
    def record(request):
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return AddressResolver(client=client)


class TestHelpers:
    """Test input normalization helpers."""

    @pytest.mark.parametrize("text,expected", [
        ("lightning:noffer1abc", "noffer1abc"),
        ("LIGHTNING:alice@example.com", "alice@example.com"),
        ("  ndebit1xyz ", "ndebit1xyz"),
    ])
    def test_strip_scheme(self, text, expected):
        assert strip_scheme(text) == expected

    def test_discovery_url(self):
        """Addresses map to the well-known lookup path."""
        assert discovery_url("alice@example.com") == (
            "https://example.com/.well-known/lnurlp/alice"
        )

    @pytest.mark.parametrize("address", ["@example.com", "alice@", "a@b@c", "a@b/c"])
    def test_invalid_address(self, address):
        with pytest.raises(UnrecognizedInput):
            discovery_url(address)


class TestResolvePointers:
    """Test resolution of pointer strings."""

    @pytest.fixture
    def resolver(self):
        def fail(request):
            raise AssertionError("no HTTP expected")
        return _resolver(fail)

    @pytest.mark.asyncio
    async def test_offer_string(self, resolver):
        assert await resolver.resolve(encode_offer_pointer(OFFER)) == OFFER

    @pytest.mark.asyncio
    async def test_debit_string(self, resolver):
        assert await resolver.resolve(encode_debit_pointer(DEBIT)) == DEBIT

    @pytest.mark.asyncio
    async def test_lightning_scheme(self, resolver):
        """A lightning: prefix is stripped before decoding."""
        assert await resolver.resolve("lightning:" + encode_offer_pointer(OFFER)) == OFFER

    @pytest.mark.asyncio
    async def test_corrupt_pointer(self, resolver):
        """A bad checksum surfaces as an encoding error."""
        encoded = encode_offer_pointer(OFFER)
        last = "q" if encoded[-1] != "q" else "p"

        with pytest.raises(ChecksumMismatch):
            await resolver.resolve(encoded[:-1] + last)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["hello", "npub1abc", ""])
    async def test_unrecognized(self, resolver, text):
        with pytest.raises(UnrecognizedInput):
            await resolver.resolve(text)

    @pytest.mark.asyncio
    async def test_resolve_offer_rejects_debit(self, resolver):
        with pytest.raises(UnrecognizedInput, match="offer"):
            await resolver.resolve_offer(encode_debit_pointer(DEBIT))

    @pytest.mark.asyncio
    async def test_resolve_debit_rejects_offer(self, resolver):
        with pytest.raises(UnrecognizedInput, match="debit"):
            await resolver.resolve_debit(encode_offer_pointer(OFFER))


class TestDiscovery:
    """Test payment address lookup."""

    @pytest.mark.asyncio
    async def test_single_lookup(self):
        """One GET to the well-known URL yields the advertised pointer."""
        requests = []
        resolver = _resolver(
            lambda r: httpx.Response(200, json={"nip69": encode_offer_pointer(OFFER)}),
            requests,
        )

        pointer = await resolver.resolve("alice@example.com")

        assert pointer == OFFER
        assert len(requests) == 1
        assert requests[0].method == "GET"
        assert str(requests[0].url) == "https://example.com/.well-known/lnurlp/alice"

    @pytest.mark.asyncio
    async def test_pointer_with_scheme(self):
        """An advertised pointer may carry a lightning: scheme."""
        resolver = _resolver(
            lambda r: httpx.Response(200, json={"nip69": "lightning:" + encode_offer_pointer(OFFER)})
        )

        assert await resolver.resolve("lightning:alice@example.com") == OFFER

    @pytest.mark.asyncio
    async def test_error_status(self):
        """An ERROR status surfaces its reason."""
        resolver = _resolver(
            lambda r: httpx.Response(200, json={"status": "ERROR", "reason": "no such user"})
        )

        with pytest.raises(DiscoveryError, match="no such user") as exc_info:
            await resolver.resolve("bob@example.com")
        assert exc_info.value.reason == "no such user"

    @pytest.mark.asyncio
    async def test_missing_pointer_field(self):
        """A document without the pointer field is a distinct error."""
        resolver = _resolver(lambda r: httpx.Response(200, json={"callback": "https://x"}))

        with pytest.raises(MissingPointerField, match="missing nip69"):
            await resolver.resolve("alice@example.com")

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Non-2xx responses without an error body fail."""
        resolver = _resolver(lambda r: httpx.Response(404, json={}))

        with pytest.raises(DiscoveryError, match="404"):
            await resolver.resolve("alice@example.com")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        resolver = _resolver(lambda r: httpx.Response(200, text="<html>"))

        with pytest.raises(DiscoveryError, match="Invalid JSON"):
            await resolver.resolve("alice@example.com")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Transport errors are wrapped."""
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        resolver = _resolver(refuse)

        with pytest.raises(DiscoveryError, match="failed"):
            await resolver.resolve("alice@example.com")

    @pytest.mark.asyncio
    async def test_does_not_close_borrowed_client(self):
        """A client passed in stays open after close()."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        resolver = AddressResolver(client=client)

        await resolver.close()

        assert not client.is_closed
        await client.aclose()
