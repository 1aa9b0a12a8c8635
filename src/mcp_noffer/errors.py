"""Exception types raised by the pointer codec, resolver and exchange."""

from typing import Optional


class NofferError(Exception):
    """Base class for all errors raised by this package."""


# =============================================================================
# Encoding
# =============================================================================


class EncodingError(NofferError, ValueError):
    """Malformed pointer, TLV stream or field value."""


class ValueTooLong(EncodingError):
    """A TLV value does not fit in a one-byte length."""


class TruncatedEntry(EncodingError):
    """The TLV buffer ended inside an entry."""


class ChecksumMismatch(EncodingError):
    """The bech32 string is malformed or its checksum does not verify."""


class PrefixMismatch(EncodingError):
    """The human-readable prefix is not the one expected."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Expected prefix {expected!r}, got {actual!r}")
        self.expected = expected
        self.actual = actual


class MissingField(EncodingError):
    """A required TLV tag is absent."""

    def __init__(self, tag: int):
        super().__init__(f"Missing required TLV field {tag}")
        self.tag = tag


class InvalidFieldLength(EncodingError):
    """A TLV value has the wrong length for its tag."""

    def __init__(self, tag: int, expected: int, actual: int):
        super().__init__(
            f"TLV field {tag} must be {expected} bytes, got {actual}"
        )
        self.tag = tag
        self.expected = expected
        self.actual = actual


class InvalidEnumValue(EncodingError):
    """A single-byte enum field holds an undefined value."""


class UnrecognizedInput(NofferError, ValueError):
    """Input is neither a pointer string nor a payment address."""


# =============================================================================
# Discovery
# =============================================================================


class DiscoveryError(NofferError):
    """HTTP discovery of a pointer from a payment address failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MissingPointerField(DiscoveryError):
    """The discovery document carries no pointer."""


# =============================================================================
# Transport and exchange
# =============================================================================


class TransportPublishError(NofferError):
    """A single relay rejected or failed a publish."""

    def __init__(self, relay: str, message: str):
        super().__init__(f"{relay}: {message}")
        self.relay = relay
        self.message = message


class DecryptionError(NofferError, ValueError):
    """An encrypted payload could not be authenticated or decoded."""


class ExchangeError(NofferError):
    """A request/response exchange ended without a usable response."""

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id


class ResponseTimeout(ExchangeError):
    """No matching response arrived before the deadline."""


class ExchangeCancelled(ExchangeError):
    """The caller abandoned the exchange."""


class MalformedResponse(ExchangeError):
    """The decrypted response matches no known response shape."""
