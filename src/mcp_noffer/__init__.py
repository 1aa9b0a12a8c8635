"""Lightning offer and debit pointers, and their encrypted exchange over relays."""

__version__ = "0.1.0"

# Server entry points
from mcp_noffer.server import create_server, main

# Configuration
from mcp_noffer.config import Config, load_config

# Pointer encoding/decoding
from mcp_noffer.pointer import (
    OfferPointer,
    DebitPointer,
    PriceType,
    encode_offer_pointer,
    decode_offer_pointer,
    encode_debit_pointer,
    decode_debit_pointer,
    decode_pointer,
)

# TLV primitives
from mcp_noffer.tlv import encode_tlv, decode_tlv

# Resolution and exchange
from mcp_noffer.resolver import AddressResolver
from mcp_noffer.exchange import ExchangeClient, ExchangeState, PendingExchange
from mcp_noffer.session import PaymentSession

__all__ = [
    # Version
    "__version__",
    # Server
    "create_server",
    "main",
    # Config
    "Config",
    "load_config",
    # Pointers
    "OfferPointer",
    "DebitPointer",
    "PriceType",
    "encode_offer_pointer",
    "decode_offer_pointer",
    "encode_debit_pointer",
    "decode_debit_pointer",
    "decode_pointer",
    # TLV
    "encode_tlv",
    "decode_tlv",
    # Exchange
    "AddressResolver",
    "ExchangeClient",
    "ExchangeState",
    "PendingExchange",
    "PaymentSession",
]
