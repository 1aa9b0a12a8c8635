"""Request payloads and response shapes exchanged with a payee.

Offer flow:
- Request: {"offer": str, "amount"?: int, "zap"?: str}
- Success: {"bolt11": str}
- Failure: {"code": int, "error": str, "range"?: {"min": int, "max": int}}

Debit flow:
- Request: {"pointer"?: str, "amount_sats": int,
            "frequency": {"number": int, "unit": "day"|"week"|"month"}}
        or {"pointer"?: str, "amount_sats": int, "bolt11": str}
- Success: {"res": "ok", "preimage"?: str}
- Failure: {"code": int, "error": str}
"""

import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from mcp_noffer.errors import MalformedResponse


MAX_UINT16 = 0xFFFF
MAX_UINT32 = 0xFFFFFFFF


def _check_uint(name: str, value: Any, maximum: int = MAX_UINT32) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} out of range: {value}")


class FrequencyUnit(Enum):
    """Recurring debit period."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class OfferFailureReason(IntEnum):
    """Named failure codes returned for offer requests."""
    INVALID_OFFER = 1
    TEMPORARY_FAILURE = 2
    EXPIRED = 3
    UNSUPPORTED_FEATURE = 4
    INVALID_AMOUNT = 5


class DebitFailureReason(IntEnum):
    """Named failure codes returned for debit requests."""
    DENIED = 1
    TEMPORARY_FAILURE = 2
    EXPIRED = 3
    RATE_LIMITED = 4
    INVALID_AMOUNT = 5
    INVALID_REQUEST = 6


# =============================================================================
# Requests
# =============================================================================


@dataclass
class OfferRequest:
    """Request for an invoice against an offer."""

    offer: str
    amount: Optional[int] = None
    zap: Optional[str] = None

    def __post_init__(self):
        if not self.offer:
            raise ValueError("Offer id must not be empty")
        if self.amount is not None:
            _check_uint("Amount", self.amount)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"offer": self.offer}
        if self.amount is not None:
            data["amount"] = self.amount
        if self.zap is not None:
            data["zap"] = self.zap
        return data


@dataclass
class BudgetFrequency:
    """Recurring debit schedule: `number` payments per `unit`."""

    number: int
    unit: FrequencyUnit

    def __post_init__(self):
        _check_uint("Frequency number", self.number)
        self.unit = FrequencyUnit(self.unit)

    def to_dict(self) -> dict[str, Any]:
        return {"number": self.number, "unit": self.unit.value}


@dataclass
class DebitRequest:
    """Debit request: a recurring budget or a one-off invoice payment."""

    amount_sats: int
    pointer: Optional[str] = None
    frequency: Optional[BudgetFrequency] = None
    bolt11: Optional[str] = None

    def __post_init__(self):
        _check_uint("Amount", self.amount_sats)
        if (self.frequency is None) == (self.bolt11 is None):
            raise ValueError("Debit request needs exactly one of frequency or bolt11")
        if self.bolt11 == "":
            raise ValueError("bolt11 must not be empty")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.pointer is not None:
            data["pointer"] = self.pointer
        data["amount_sats"] = self.amount_sats
        if self.frequency is not None:
            data["frequency"] = self.frequency.to_dict()
        else:
            data["bolt11"] = self.bolt11
        return data


# =============================================================================
# Responses
# =============================================================================


@dataclass
class InvoiceResponse:
    """Offer success: a payable invoice."""
    bolt11: str


@dataclass
class DebitAccepted:
    """Debit success, with the payment preimage when a bolt11 was paid."""
    preimage: Optional[str] = None


@dataclass
class AmountRange:
    """Acceptable amount bounds returned with an invalid-amount failure."""
    min: int
    max: int


@dataclass
class ErrorResponse:
    """Structured failure returned by the payee.

    This is data, not an exception: callers inspect `code` or `reason`.
    """

    code: int
    error: str
    range: Optional[AmountRange] = None
    kind: str = "offer"

    @property
    def reason(self) -> Optional[Union[OfferFailureReason, DebitFailureReason]]:
        """Named reason for the code, or None if the code is unknown."""
        reasons = DebitFailureReason if self.kind == "debit" else OfferFailureReason
        try:
            return reasons(self.code)
        except ValueError:
            return None


OfferResponse = Union[InvoiceResponse, ErrorResponse]
DebitResponse = Union[DebitAccepted, ErrorResponse]


def _parse_error(data: dict[str, Any], kind: str) -> Optional[ErrorResponse]:
    code = data.get("code")
    error = data.get("error")
    if code is None or not isinstance(error, str):
        return None
    try:
        _check_uint("Error code", code, MAX_UINT16)
    except ValueError as e:
        raise MalformedResponse(str(e))

    amount_range = None
    raw_range = data.get("range")
    if raw_range is not None:
        try:
            amount_range = AmountRange(min=int(raw_range["min"]), max=int(raw_range["max"]))
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(f"Invalid range in error response: {e}")

    return ErrorResponse(code=code, error=error, range=amount_range, kind=kind)


def _load(text: Union[str, dict]) -> dict[str, Any]:
    if isinstance(text, dict):
        return text
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Response is not JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedResponse("Response is not a JSON object")
    return data


def parse_offer_response(text: Union[str, dict]) -> OfferResponse:
    """Parse a decrypted offer response.

    Args:
        text: Decrypted JSON text (or an already parsed dict)

    Returns:
        InvoiceResponse or ErrorResponse

    Raises:
        MalformedResponse: If the shape is neither success nor failure
    """
    data = _load(text)
    bolt11 = data.get("bolt11")
    if isinstance(bolt11, str) and bolt11:
        return InvoiceResponse(bolt11=bolt11)

    error = _parse_error(data, "offer")
    if error is not None:
        return error
    raise MalformedResponse(f"Unrecognized offer response: {sorted(data)}")


def parse_debit_response(text: Union[str, dict]) -> DebitResponse:
    """Parse a decrypted debit response.

    Raises:
        MalformedResponse: If the shape is neither success nor failure
    """
    data = _load(text)
    if data.get("res") == "ok":
        preimage = data.get("preimage")
        if preimage is not None and not isinstance(preimage, str):
            raise MalformedResponse("Preimage must be a string")
        return DebitAccepted(preimage=preimage)

    error = _parse_error(data, "debit")
    if error is not None:
        return error
    raise MalformedResponse(f"Unrecognized debit response: {sorted(data)}")


def response_to_dict(response: Union[OfferResponse, DebitResponse]) -> dict[str, Any]:
    """Flatten a response into a plain dict for tool output."""
    if isinstance(response, InvoiceResponse):
        return {"ok": True, "bolt11": response.bolt11}
    if isinstance(response, DebitAccepted):
        return {"ok": True, "preimage": response.preimage}

    result: dict[str, Any] = {
        "ok": False,
        "code": response.code,
        "error": response.error,
        "reason": response.reason.name.lower() if response.reason else None,
    }
    if response.range is not None:
        result["range"] = {"min": response.range.min, "max": response.range.max}
    return result
