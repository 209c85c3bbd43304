from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    # Backend and browser speak camelCase; Python code uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GuestRecord(_CamelModel):
    first_name: str = ""
    last_name: str = ""

    def is_complete(self) -> bool:
        return bool(self.first_name.strip()) and bool(self.last_name.strip())


class ChildGuestRecord(GuestRecord):
    age: int = 0

    def is_complete(self) -> bool:
        return super().is_complete() and 1 <= self.age <= 17


class Itinerary(_CamelModel):
    hotel_id: int
    room_id: int
    room_type_id: int
    meal_id: int
    check_in_date: date
    check_out_date: date
    search_price: float = Field(..., ge=0, description="Price the guest saw on the search page")
    currency: str = "EUR"


class BookingIntent(_CamelModel):
    """Everything one submission sends to the reservation backend.

    Assembled fresh from the draft on every submit, never stored.
    """

    itinerary: Itinerary
    rooms: int = 1
    adults: int
    children: int
    children_ages: str = ""
    guest_name: str
    guest_email: str
    guest_phone: str
    special_requests: str = ""
    language: str
    customer_country: str
    pass_purchase_type: Optional[str] = None
    pass_code_valid: Optional[bool] = None

    def _itinerary_fields(self, price: float) -> dict:
        it = self.itinerary
        return {
            "hotelId": it.hotel_id,
            "roomId": it.room_id,
            "roomTypeId": it.room_type_id,
            "mealId": it.meal_id,
            "checkInDate": it.check_in_date.isoformat(),
            "checkOutDate": it.check_out_date.isoformat(),
            "rooms": self.rooms,
            "adults": self.adults,
            "children": self.children,
            "childrenAges": self.children_ages,
            "guestName": self.guest_name,
            "guestEmail": self.guest_email,
            "guestPhone": self.guest_phone,
            "searchPrice": price,
            "isSuperDeal": False,
            "specialRequests": self.special_requests,
            "currency": it.currency,
            "language": self.language,
            "customerCountry": self.customer_country,
        }

    def prebook_payload(self) -> dict:
        return self._itinerary_fields(self.itinerary.search_price)

    def checkout_payload(self, pre_book_code: str, price: float,
                         success_url: str, cancel_url: str) -> dict:
        body = self._itinerary_fields(price)
        body.update({
            "preBookCode": pre_book_code,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
        })
        if self.pass_purchase_type is not None:
            body["passPurchaseType"] = self.pass_purchase_type
        if self.pass_code_valid is not None:
            body["passCodeValid"] = self.pass_code_valid
        return body


class ReservationLock(_CamelModel):
    pre_book_code: str
    total_price: Optional[float] = None
    price_changed: bool = False
    original_price: Optional[float] = None
    currency: Optional[str] = None
    expires_at: datetime

    def seconds_remaining(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.expires_at - now).total_seconds()))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.seconds_remaining(now) <= 0

    @classmethod
    def from_response(cls, body: dict, lock_seconds: int,
                      now: Optional[datetime] = None) -> "ReservationLock":
        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=lock_seconds)
        raw_expiry = body.get("expiresAt")
        if raw_expiry:
            try:
                parsed = datetime.fromisoformat(str(raw_expiry).replace("Z", "+00:00"))
                expires_at = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
            except ValueError:
                pass
        return cls(
            pre_book_code=body["preBookCode"],
            total_price=body.get("totalPrice"),
            price_changed=bool(body.get("priceChanged", False)),
            original_price=body.get("originalPrice"),
            currency=body.get("currency"),
            expires_at=expires_at,
        )


class PaymentSession(_CamelModel):
    session_id: str
    booking_id: Optional[str] = None


class BookingDetail(_CamelModel):
    """Booking as the success page shows it, after the webhook confirmed it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Union[int, str]
    guest_email: Optional[str] = None
    total_price: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
