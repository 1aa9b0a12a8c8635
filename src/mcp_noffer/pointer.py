"""Offer and debit pointer encoding and decoding.

A pointer is a TLV structure wrapped in a bech32 string:

| Kind  | Prefix | 0      | 1     | 2          | 3          | 4              |
|-------|--------|--------|-------|------------|------------|----------------|
| Offer | noffer | pubkey | relay | offer id   | price type | price (opt.)   |
| Debit | ndebit | pubkey | relay | pointer id |            |                |

Pointers routinely exceed the 90 character limit of plain bech32, so the
string layer is built from the `bech32` package primitives with a 5000
character ceiling.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

import bech32

from mcp_noffer.errors import (
    ChecksumMismatch,
    EncodingError,
    InvalidEnumValue,
    InvalidFieldLength,
    MissingField,
    PrefixMismatch,
    ValueTooLong,
)
from mcp_noffer.tlv import TLV, decode_tlv, encode_tlv


OFFER_PREFIX = "noffer"
DEBIT_PREFIX = "ndebit"

MAX_POINTER_LENGTH = 5000
CHECKSUM_LENGTH = 6

# TLV tags
TAG_PUBKEY = 0
TAG_RELAY = 1
TAG_OFFER = 2
TAG_POINTER = 2
TAG_PRICE_TYPE = 3
TAG_PRICE = 4

PUBKEY_LENGTH = 32
PRICE_LENGTH = 4
MAX_UINT32 = 0xFFFFFFFF


class PriceType(IntEnum):
    """How the payee prices an offer."""

    FIXED = 0        # Exact price
    VARIABLE = 1     # Payer proposes an amount within a range
    SPONTANEOUS = 2  # Any amount


def _check_pubkey(pubkey: str) -> str:
    try:
        raw = bytes.fromhex(pubkey)
    except (TypeError, ValueError):
        raise EncodingError(f"Public key is not valid hex: {pubkey!r}")
    if len(raw) != PUBKEY_LENGTH:
        raise InvalidFieldLength(TAG_PUBKEY, PUBKEY_LENGTH, len(raw))
    return raw.hex()


def _check_uint32(name: str, value: Optional[int]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= MAX_UINT32:
        raise EncodingError(f"{name} out of uint32 range: {value}")


@dataclass
class OfferPointer:
    """Pointer to a payee offer."""

    pubkey: str
    relay: str
    offer: str
    price_type: PriceType = PriceType.FIXED
    price: Optional[int] = None

    def __post_init__(self):
        self.pubkey = _check_pubkey(self.pubkey)
        if not self.relay:
            raise EncodingError("Relay must not be empty")
        if not self.offer:
            raise EncodingError("Offer id must not be empty")
        try:
            self.price_type = PriceType(self.price_type)
        except ValueError:
            raise InvalidEnumValue(f"Unknown price type: {self.price_type!r}")
        _check_uint32("Price", self.price)

    @property
    def relays(self) -> list[str]:
        return [self.relay]


@dataclass
class DebitPointer:
    """Pointer to a payee accepting debit requests."""

    pubkey: str
    relay: str
    pointer: Optional[str] = None

    def __post_init__(self):
        self.pubkey = _check_pubkey(self.pubkey)
        if not self.relay:
            raise EncodingError("Relay must not be empty")
        if self.pointer == "":
            raise EncodingError("Pointer id must not be empty when present")

    @property
    def relays(self) -> list[str]:
        return [self.relay]


Pointer = Union[OfferPointer, DebitPointer]


# =============================================================================
# Bech32 string layer
# =============================================================================


def encode_bech32(hrp: str, data: bytes) -> str:
    """Encode bytes as a checksummed bech32 string without the 90 char cap.

    Args:
        hrp: Human-readable prefix
        data: Payload bytes

    Returns:
        Lowercase bech32 string

    Raises:
        ValueTooLong: If the result exceeds MAX_POINTER_LENGTH
    """
    words = bech32.convertbits(data, 8, 5, True)
    values = list(bech32.bech32_hrp_expand(hrp)) + list(words)
    polymod = bech32.bech32_polymod(values + [0] * CHECKSUM_LENGTH) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(CHECKSUM_LENGTH)]

    encoded = hrp + "1" + "".join(bech32.CHARSET[d] for d in list(words) + checksum)
    if len(encoded) > MAX_POINTER_LENGTH:
        raise ValueTooLong(
            f"Encoded pointer is {len(encoded)} characters "
            f"(maximum {MAX_POINTER_LENGTH})"
        )
    return encoded


def decode_bech32(text: str) -> tuple[str, bytes]:
    """Decode a checksummed bech32 string into its prefix and bytes.

    Args:
        text: Bech32 string (all lowercase or all uppercase)

    Returns:
        Tuple of (prefix, payload bytes)

    Raises:
        ChecksumMismatch: If the string is malformed or the checksum fails
    """
    if len(text) > MAX_POINTER_LENGTH:
        raise ChecksumMismatch(
            f"Pointer too long: {len(text)} characters (maximum {MAX_POINTER_LENGTH})"
        )
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise ChecksumMismatch("Pointer contains invalid characters")
    if text.lower() != text and text.upper() != text:
        raise ChecksumMismatch("Pointer mixes upper and lower case")

    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + CHECKSUM_LENGTH + 1 > len(text):
        raise ChecksumMismatch("Pointer has no valid separator")

    hrp = text[:pos]
    body = text[pos + 1:]
    if any(c not in bech32.CHARSET for c in body):
        raise ChecksumMismatch("Pointer contains non-bech32 characters")

    values = [bech32.CHARSET.find(c) for c in body]
    if bech32.bech32_polymod(list(bech32.bech32_hrp_expand(hrp)) + values) != 1:
        raise ChecksumMismatch("Pointer checksum mismatch")

    data = bech32.convertbits(values[:-CHECKSUM_LENGTH], 5, 8, False)
    if data is None:
        raise ChecksumMismatch("Pointer has invalid padding")
    return hrp, bytes(data)


# =============================================================================
# TLV field helpers
# =============================================================================


def _first(tlv: TLV, tag: int, length: Optional[int] = None) -> Optional[bytes]:
    values = tlv.get(tag)
    if not values:
        return None
    value = values[0]
    if length is not None and len(value) != length:
        raise InvalidFieldLength(tag, length, len(value))
    return value


def _required(tlv: TLV, tag: int, length: Optional[int] = None) -> bytes:
    value = _first(tlv, tag, length)
    if value is None:
        raise MissingField(tag)
    return value


def _text(tag: int, value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        raise EncodingError(f"TLV field {tag} is not valid UTF-8")


# =============================================================================
# Offer pointers
# =============================================================================


def offer_to_tlv(pointer: OfferPointer) -> TLV:
    """Build the TLV structure for an offer pointer."""
    tlv: TLV = {
        TAG_PUBKEY: [bytes.fromhex(pointer.pubkey)],
        TAG_RELAY: [pointer.relay.encode("utf-8")],
        TAG_OFFER: [pointer.offer.encode("utf-8")],
        TAG_PRICE_TYPE: [bytes([int(pointer.price_type)])],
    }
    # Zero is a valid price; only None is omitted
    if pointer.price is not None:
        tlv[TAG_PRICE] = [pointer.price.to_bytes(PRICE_LENGTH, "big")]
    return tlv


def offer_from_tlv(tlv: TLV) -> OfferPointer:
    """Validate a TLV structure and build an offer pointer from it."""
    pubkey = _required(tlv, TAG_PUBKEY, PUBKEY_LENGTH)
    relay = _text(TAG_RELAY, _required(tlv, TAG_RELAY))
    offer = _text(TAG_OFFER, _required(tlv, TAG_OFFER))
    price_type_byte = _required(tlv, TAG_PRICE_TYPE, 1)[0]
    price_bytes = _first(tlv, TAG_PRICE, PRICE_LENGTH)

    try:
        price_type = PriceType(price_type_byte)
    except ValueError:
        raise InvalidEnumValue(f"Unknown price type: {price_type_byte:#x}")

    return OfferPointer(
        pubkey=pubkey.hex(),
        relay=relay,
        offer=offer,
        price_type=price_type,
        price=int.from_bytes(price_bytes, "big") if price_bytes is not None else None,
    )


def encode_offer_pointer(pointer: OfferPointer) -> str:
    """Encode an offer pointer as a noffer string.

    Args:
        pointer: Offer pointer to encode

    Returns:
        noffer1... string
    """
    return encode_bech32(OFFER_PREFIX, encode_tlv(offer_to_tlv(pointer)))


def decode_offer_pointer(text: str) -> OfferPointer:
    """Decode a noffer string.

    Args:
        text: noffer1... string

    Returns:
        Decoded OfferPointer

    Raises:
        EncodingError: If the string is malformed, has the wrong prefix,
            or lacks a required field
    """
    hrp, data = decode_bech32(text)
    if hrp != OFFER_PREFIX:
        raise PrefixMismatch(OFFER_PREFIX, hrp)
    return offer_from_tlv(decode_tlv(data))


# =============================================================================
# Debit pointers
# =============================================================================


def debit_to_tlv(pointer: DebitPointer) -> TLV:
    """Build the TLV structure for a debit pointer."""
    tlv: TLV = {
        TAG_PUBKEY: [bytes.fromhex(pointer.pubkey)],
        TAG_RELAY: [pointer.relay.encode("utf-8")],
    }
    if pointer.pointer is not None:
        tlv[TAG_POINTER] = [pointer.pointer.encode("utf-8")]
    return tlv


def debit_from_tlv(tlv: TLV) -> DebitPointer:
    """Validate a TLV structure and build a debit pointer from it."""
    pubkey = _required(tlv, TAG_PUBKEY, PUBKEY_LENGTH)
    relay = _text(TAG_RELAY, _required(tlv, TAG_RELAY))
    pointer_bytes = _first(tlv, TAG_POINTER)

    return DebitPointer(
        pubkey=pubkey.hex(),
        relay=relay,
        pointer=_text(TAG_POINTER, pointer_bytes) if pointer_bytes is not None else None,
    )


def encode_debit_pointer(pointer: DebitPointer) -> str:
    """Encode a debit pointer as an ndebit string."""
    return encode_bech32(DEBIT_PREFIX, encode_tlv(debit_to_tlv(pointer)))


def decode_debit_pointer(text: str) -> DebitPointer:
    """Decode an ndebit string.

    Raises:
        EncodingError: If the string is malformed, has the wrong prefix,
            or lacks a required field
    """
    hrp, data = decode_bech32(text)
    if hrp != DEBIT_PREFIX:
        raise PrefixMismatch(DEBIT_PREFIX, hrp)
    return debit_from_tlv(decode_tlv(data))


def encode_pointer(pointer: Pointer) -> str:
    """Encode either pointer kind."""
    if isinstance(pointer, OfferPointer):
        return encode_offer_pointer(pointer)
    return encode_debit_pointer(pointer)


def decode_pointer(text: str) -> Pointer:
    """Decode a noffer or ndebit string, dispatching on its prefix.

    Raises:
        PrefixMismatch: If the prefix is neither noffer nor ndebit
    """
    hrp, data = decode_bech32(text)
    if hrp == OFFER_PREFIX:
        return offer_from_tlv(decode_tlv(data))
    if hrp == DEBIT_PREFIX:
        return debit_from_tlv(decode_tlv(data))
    raise PrefixMismatch(f"{OFFER_PREFIX}|{DEBIT_PREFIX}", hrp)
