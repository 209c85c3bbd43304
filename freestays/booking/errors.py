"""Backend error decoding and the booking flow's exception hierarchy.

Error bodies from the reservation backend are loosely shaped
(``message``, ``error``, ``title``, ``priceChanged``, ``totalPrice``, all
optional). They are decoded once, here, into one of three variants so the
flow never inspects raw dicts.
"""

import json
from dataclasses import dataclass
from typing import Optional, Union

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."


@dataclass(frozen=True)
class PriceChangedBackendError:
    new_price: Optional[float]
    message: Optional[str] = None
    kind: str = "priceChanged"


@dataclass(frozen=True)
class MessageBackendError:
    text: str
    kind: str = "message"


@dataclass(frozen=True)
class UnknownBackendError:
    status: int
    kind: str = "unknown"

    @property
    def text(self) -> str:
        return f"HTTP {self.status}"


BackendError = Union[PriceChangedBackendError, MessageBackendError, UnknownBackendError]


def _as_price(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def decode_backend_error(status: int, body_text: Optional[str]) -> BackendError:
    try:
        body = json.loads(body_text) if body_text else None
    except ValueError:
        body = None

    if not isinstance(body, dict):
        if status == 401:
            return MessageBackendError(SESSION_EXPIRED_MESSAGE)
        return UnknownBackendError(status)

    text = None
    for key in ("message", "error", "title"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            break

    if body.get("priceChanged") is True:
        return PriceChangedBackendError(_as_price(body.get("totalPrice")), text)
    if text:
        return MessageBackendError(text)
    if status == 401:
        return MessageBackendError(SESSION_EXPIRED_MESSAGE)
    return UnknownBackendError(status)


class BookingFlowError(Exception):
    """Any failure that ends a submission with one user-facing message."""

    outcome = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GuestValidationError(BookingFlowError):
    outcome = "invalid"

    def __init__(self, missing: list):
        super().__init__("Please fill in all required guest and contact fields.")
        self.missing = list(missing)


def price_changed_message(new_price: Optional[float], currency: Optional[str] = None) -> str:
    if new_price is None:
        return "The price of this room has changed. Please review the booking again."
    suffix = f" {currency}" if currency else ""
    return (f"The price of this room has changed to {new_price:.2f}{suffix}. "
            "Please review the booking again.")


class PriceChangedError(BookingFlowError):
    outcome = "price_changed_error"

    def __init__(self, new_price: Optional[float], currency: Optional[str] = None):
        super().__init__(price_changed_message(new_price, currency))
        self.new_price = new_price


class BackendRejectedError(BookingFlowError):
    outcome = "backend_error"

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class ContractViolationError(BookingFlowError):
    outcome = "contract_violation"


class PaymentConfigError(BookingFlowError):
    outcome = "config_error"

    def __init__(self, message: str = "Online payment is not configured. Please contact support."):
        super().__init__(message)


class PaymentProviderError(BookingFlowError):
    outcome = "payment_error"


class LockExpiredError(BookingFlowError):
    outcome = "lock_expired"

    def __init__(self):
        super().__init__("Your price hold has expired. Please start the booking again.")


def raise_for_backend_error(stage: str, status: int, body_text: Optional[str],
                            currency: Optional[str] = None,
                            price_lock: bool = False) -> None:
    """Translate a non-2xx response into the matching flow exception.

    A price-change body only becomes ``PriceChangedError`` for the stage that
    takes the price lock (``price_lock=True``). Anywhere else it is an
    ordinary rejection, so the guest's draft survives it.
    """
    decoded = decode_backend_error(status, body_text)
    if isinstance(decoded, PriceChangedBackendError):
        if price_lock:
            raise PriceChangedError(decoded.new_price, currency)
        raise BackendRejectedError(
            status, decoded.message or price_changed_message(decoded.new_price, currency))
    if isinstance(decoded, MessageBackendError):
        raise BackendRejectedError(status, decoded.text)
    raise BackendRejectedError(status, f"{stage} failed ({decoded.text})")
