import httpx
from typing import Any, Dict, Optional

from freestays.config import settings
from freestays.obs.logger import log_event
from freestays.types import BookingDetail, BookingIntent, PaymentSession, ReservationLock
from freestays.booking.errors import ContractViolationError, raise_for_backend_error
from freestays.booking.ports import AuthProvider, anonymous

PREBOOK_PATH = "/bookings/hotels/prebook"
CHECKOUT_PATH = "/bookings/hotels/checkout-session"


class ReservationClient:
    """Thin async client for the reservation backend.

    One request per call, no retries: every stage of the checkout is
    single-attempt and the caller decides what a failure means.
    """

    def __init__(self, base_url: str = None, auth: AuthProvider = anonymous,
                 http: Optional[httpx.AsyncClient] = None,
                 lock_seconds: int = None):
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.auth = auth
        self.lock_seconds = lock_seconds or settings.PREBOOK_LOCK_SECONDS
        self._http = http or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(
                connect=settings.HTTP_CONNECT_TIMEOUT,
                read=settings.HTTP_READ_TIMEOUT,
                write=settings.HTTP_READ_TIMEOUT,
                pool=settings.HTTP_READ_TIMEOUT,
            ),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self.auth()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _json_body(self, stage: str, r: httpx.Response) -> Dict[str, Any]:
        try:
            body = r.json()
        except ValueError:
            raise ContractViolationError(f"{stage} returned an unreadable response.")
        if not isinstance(body, dict):
            raise ContractViolationError(f"{stage} returned an unexpected response.")
        return body

    async def prebook(self, intent: BookingIntent) -> ReservationLock:
        log_event(
            "prebook_request",
            hotel_id=intent.itinerary.hotel_id,
            room_id=intent.itinerary.room_id,
            search_price=intent.itinerary.search_price,
            guest_email=intent.guest_email,
        )
        r = await self._http.post(
            f"{self.base_url}{PREBOOK_PATH}",
            json=intent.prebook_payload(),
            headers=self._headers(),
        )
        log_event("prebook_response", status=r.status_code)
        if not r.is_success:
            raise_for_backend_error("PreBook", r.status_code, r.text,
                                    intent.itinerary.currency, price_lock=True)

        body = self._json_body("PreBook", r)
        if not body.get("preBookCode"):
            raise ContractViolationError("Price confirmation did not return a reservation code.")
        return ReservationLock.from_response(body, self.lock_seconds)

    async def create_checkout_session(self, intent: BookingIntent, lock: ReservationLock,
                                      success_url: str, cancel_url: str) -> PaymentSession:
        price = lock.total_price if lock.total_price is not None else intent.itinerary.search_price
        payload = intent.checkout_payload(lock.pre_book_code, price, success_url, cancel_url)
        log_event("checkout_request", pre_book_code=lock.pre_book_code, price=price)
        r = await self._http.post(
            f"{self.base_url}{CHECKOUT_PATH}",
            json=payload,
            headers=self._headers(),
        )
        log_event("checkout_response", status=r.status_code)
        if not r.is_success:
            raise_for_backend_error("Checkout", r.status_code, r.text, intent.itinerary.currency)

        body = self._json_body("Checkout", r)
        session_id = body.get("sessionId")
        if not isinstance(session_id, str) or not session_id.strip():
            raise ContractViolationError("Payment session could not be created (missing session id).")
        booking_id = body.get("bookingId")
        return PaymentSession(
            session_id=session_id,
            booking_id=str(booking_id) if booking_id is not None else None,
        )

    async def release_prebook(self, pre_book_code: str) -> None:
        r = await self._http.post(
            f"{self.base_url}{PREBOOK_PATH}/{pre_book_code}/release",
            headers=self._headers(),
        )
        if not r.is_success:
            raise_for_backend_error("Release", r.status_code, r.text)

    async def get_booking(self, booking_id: str) -> BookingDetail:
        r = await self._http.get(
            f"{self.base_url}/Bookings/{booking_id}",
            headers=self._headers(),
        )
        if not r.is_success:
            raise_for_backend_error("Booking lookup", r.status_code, r.text)
        body = self._json_body("Booking lookup", r)
        # Some endpoints wrap the record in {"data": {...}}
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise ContractViolationError("Booking lookup returned an unexpected response.")
        return BookingDetail.model_validate(data)

    async def aclose(self) -> None:
        await self._http.aclose()
