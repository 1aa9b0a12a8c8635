"""MCP server for Lightning offers and debits over relays.

This server exposes tools for encoding and decoding noffer/ndebit
pointers, resolving payment addresses, and requesting invoices or debits
from a payee.
"""

import logging
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from mcp_noffer.config import Config, load_config
from mcp_noffer.errors import NofferError
from mcp_noffer.messages import BudgetFrequency, response_to_dict
from mcp_noffer.pointer import (
    DebitPointer,
    OfferPointer,
    Pointer,
    PriceType,
    decode_pointer as decode_pointer_string,
    encode_debit_pointer,
    encode_offer_pointer,
)
from mcp_noffer.session import PaymentSession


def pointer_to_dict(pointer: Pointer) -> dict[str, Any]:
    """Flatten a pointer into a plain dict for tool output."""
    if isinstance(pointer, OfferPointer):
        return {
            "type": "noffer",
            "pubkey": pointer.pubkey,
            "relay": pointer.relay,
            "offer": pointer.offer,
            "price_type": pointer.price_type.name.lower(),
            "price": pointer.price,
        }
    return {
        "type": "ndebit",
        "pubkey": pointer.pubkey,
        "relay": pointer.relay,
        "pointer": pointer.pointer,
    }


def create_server(config: Optional[Config] = None) -> FastMCP:
    """Create and configure the MCP server with all tools.

    Args:
        config: Optional configuration. If not provided, uses defaults.

    Returns:
        Configured FastMCP server instance.
    """
    if config is None:
        config = Config()

    mcp = FastMCP("mcp-noffer")

    # Store config on server for access by tools
    mcp._config = config
    mcp._session: Optional[PaymentSession] = None

    def get_session() -> PaymentSession:
        """Get or create the payment session."""
        if mcp._session is None:
            mcp._session = PaymentSession(config)
        return mcp._session

    # =========================================================================
    # Pointers (offline)
    # =========================================================================

    @mcp.tool()
    def encode_offer(
        pubkey: str,
        relay: str,
        offer: str,
        price_type: str = "fixed",
        price: Optional[int] = None,
    ) -> dict:
        """Encode an offer as a noffer pointer string.

        Args:
            pubkey: Payee public key (64 hex characters)
            relay: Relay URL the payee listens on
            offer: Offer identifier
            price_type: 'fixed', 'variable' or 'spontaneous'. Default: 'fixed'
            price: Price in sats (optional)

        Returns:
            Dictionary with 'pointer' containing the noffer string.
        """
        try:
            pointer = OfferPointer(
                pubkey=pubkey,
                relay=relay,
                offer=offer,
                price_type=PriceType[price_type.upper()],
                price=price,
            )
        except KeyError:
            return {"error": f"Unknown price type: {price_type}"}
        except ValueError as e:
            return {"error": str(e)}
        return {"pointer": encode_offer_pointer(pointer)}

    @mcp.tool()
    def encode_debit(pubkey: str, relay: str, pointer: Optional[str] = None) -> dict:
        """Encode a debit pointer as an ndebit string.

        Args:
            pubkey: Wallet public key (64 hex characters)
            relay: Relay URL the wallet listens on
            pointer: Pointer identifier (optional)

        Returns:
            Dictionary with 'pointer' containing the ndebit string.
        """
        try:
            debit = DebitPointer(pubkey=pubkey, relay=relay, pointer=pointer)
        except ValueError as e:
            return {"error": str(e)}
        return {"pointer": encode_debit_pointer(debit)}

    @mcp.tool()
    def decode_pointer(pointer: str) -> dict:
        """Decode a noffer or ndebit pointer string.

        Args:
            pointer: noffer1... or ndebit1... string

        Returns:
            Dictionary with the pointer fields.
        """
        try:
            return pointer_to_dict(decode_pointer_string(pointer))
        except ValueError as e:
            return {"error": str(e)}

    @mcp.tool()
    async def resolve_address(address: str) -> dict:
        """Resolve a payment address or pointer string into pointer fields.

        Args:
            address: name@domain, noffer1..., or ndebit1..., optionally
                prefixed with 'lightning:'

        Returns:
            Dictionary with the resolved pointer fields.
        """
        try:
            pointer = await get_session().resolver.resolve(address)
        except NofferError as e:
            return {"error": str(e)}
        return pointer_to_dict(pointer)

    @mcp.tool()
    def get_identity() -> dict:
        """Show the public key requests are sent from.

        Returns:
            Dictionary with 'public_key'.
        """
        return {"public_key": get_session().identity.public_key}

    # =========================================================================
    # Exchanges
    # =========================================================================

    @mcp.tool()
    async def request_invoice(address: str, amount: Optional[int] = None) -> dict:
        """Request an invoice from an offer.

        Args:
            address: noffer string or name@domain payment address
            amount: Amount in sats, for variable or spontaneous offers

        Returns:
            Dictionary with 'bolt11' on success, or the payee's error
            'code', 'error' and 'reason'.
        """
        try:
            response = await get_session().request_invoice(address, amount)
        except (NofferError, ValueError) as e:
            return {"error": str(e)}
        return response_to_dict(response)

    @mcp.tool()
    async def request_debit(
        address: str,
        amount_sats: int,
        frequency_number: Optional[int] = None,
        frequency_unit: Optional[str] = None,
        bolt11: Optional[str] = None,
    ) -> dict:
        """Ask a wallet to accept a recurring budget or pay an invoice.

        Args:
            address: ndebit pointer string
            amount_sats: Amount per period, or of the invoice
            frequency_number: Payments per period (with frequency_unit)
            frequency_unit: 'day', 'week' or 'month'
            bolt11: Invoice to pay instead of a recurring budget

        Returns:
            Dictionary with 'ok' and 'preimage' on success, or the payee's
            error 'code', 'error' and 'reason'.
        """
        try:
            frequency = None
            if frequency_unit is not None:
                frequency = BudgetFrequency(
                    number=frequency_number if frequency_number is not None else 1,
                    unit=frequency_unit,
                )
            response = await get_session().request_debit(
                address, amount_sats, frequency=frequency, bolt11=bolt11
            )
        except (NofferError, ValueError) as e:
            return {"error": str(e)}
        return response_to_dict(response)

    return mcp


def main():
    """Entry point for the MCP server."""
    from pathlib import Path

    logging.basicConfig(level=logging.INFO)

    # Try to load config from standard locations
    config_paths = [
        Path("mcp-noffer.toml"),
        Path.home() / ".config" / "mcp-noffer" / "config.toml",
    ]

    config = None
    for path in config_paths:
        if path.exists():
            config = load_config(path)
            break

    if config is None:
        config = Config()

    server = create_server(config)
    server.run()


if __name__ == "__main__":
    main()
