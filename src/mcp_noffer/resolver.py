"""Resolve user input into a pointer.

Accepted input:
- noffer1... / ndebit1... pointer strings
- name@domain payment addresses, looked up at
  https://domain/.well-known/lnurlp/name
- either of the above behind a "lightning:" URI scheme
"""

import logging
from typing import Optional

import httpx

from mcp_noffer.config import Config
from mcp_noffer.errors import (
    DiscoveryError,
    MissingPointerField,
    UnrecognizedInput,
)
from mcp_noffer.pointer import (
    DEBIT_PREFIX,
    OFFER_PREFIX,
    DebitPointer,
    OfferPointer,
    Pointer,
    decode_offer_pointer,
    decode_pointer,
)


logger = logging.getLogger(__name__)

LIGHTNING_SCHEME = "lightning:"

# Discovery document field carrying the offer pointer
POINTER_FIELD = "nip69"


def strip_scheme(text: str) -> str:
    """Remove a leading lightning: scheme and surrounding whitespace."""
    text = text.strip()
    if text.lower().startswith(LIGHTNING_SCHEME):
        text = text[len(LIGHTNING_SCHEME):]
    return text


def discovery_url(address: str) -> str:
    """Well-known discovery URL for a name@domain address."""
    name, _, domain = address.partition("@")
    if not name or not domain or "@" in domain or "/" in domain:
        raise UnrecognizedInput(f"Invalid payment address: {address!r}")
    return f"https://{domain}/.well-known/lnurlp/{name}"


class AddressResolver:
    """Turns pointer strings and payment addresses into pointers."""

    def __init__(self, config: Optional[Config] = None, client: Optional[httpx.AsyncClient] = None):
        config = config or Config()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=config.discovery_timeout,
            follow_redirects=True,
        )

    async def close(self):
        """Close HTTP client if this resolver created it."""
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, text: str) -> Pointer:
        """Resolve input into an offer or debit pointer.

        Args:
            text: Pointer string or payment address, optionally with a
                lightning: scheme

        Returns:
            Decoded OfferPointer or DebitPointer

        Raises:
            EncodingError: If a pointer string is malformed
            DiscoveryError: If the address lookup fails
            UnrecognizedInput: If the input has no recognizable shape
        """
        text = strip_scheme(text)
        lowered = text.lower()

        if lowered.startswith(OFFER_PREFIX + "1") or lowered.startswith(DEBIT_PREFIX + "1"):
            return decode_pointer(text)
        if "@" in text:
            return await self.discover(text)
        raise UnrecognizedInput(f"Unrecognized input: {text[:32]!r}")

    async def resolve_offer(self, text: str) -> OfferPointer:
        """Resolve input that must name an offer."""
        pointer = await self.resolve(text)
        if not isinstance(pointer, OfferPointer):
            raise UnrecognizedInput("Input is not an offer pointer")
        return pointer

    async def resolve_debit(self, text: str) -> DebitPointer:
        """Resolve input that must name a debit pointer."""
        pointer = await self.resolve(text)
        if not isinstance(pointer, DebitPointer):
            raise UnrecognizedInput("Input is not a debit pointer")
        return pointer

    async def discover(self, address: str) -> OfferPointer:
        """Look up the offer pointer published for a payment address.

        Args:
            address: name@domain

        Returns:
            OfferPointer decoded from the discovery document

        Raises:
            DiscoveryError: On HTTP failure, invalid JSON or an error status
            MissingPointerField: If the document carries no pointer
        """
        url = discovery_url(address)
        logger.debug("Resolving %s via %s", address, url)

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Request to {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise DiscoveryError(
                f"Invalid JSON from {url} (HTTP {response.status_code})"
            )
        if not isinstance(data, dict):
            raise DiscoveryError(f"Unexpected response from {url}")

        if data.get("status") == "ERROR":
            raise DiscoveryError(str(data.get("reason", "unknown error")))
        if response.is_error:
            raise DiscoveryError(f"HTTP {response.status_code} from {url}")

        pointer = data.get(POINTER_FIELD)
        if not pointer or not isinstance(pointer, str):
            raise MissingPointerField(f"missing {POINTER_FIELD} from lnurl address {address}")

        return decode_offer_pointer(strip_scheme(pointer))
