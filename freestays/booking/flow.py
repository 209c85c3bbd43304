"""
Booking checkout flow

Runs one submission through the three stages, strictly in order:

    Idle -> Validating -> PreBooking -> (PriceConfirm) -> CheckingOut
         -> Redirecting -> External

Any failure returns the flow to Idle with exactly one message shown to the
guest. Nothing is retried; the guest submits again to start over. A price
change nobody has answered yet stops at PriceConfirm and keeps the draft.
"""

import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import httpx

from freestays.config import settings
from freestays.obs.logger import log_event
from freestays.obs.metrics import count_outcome, observe_stage
from freestays.types import BookingIntent, PaymentSession, ReservationLock
from freestays.booking.client import ReservationClient
from freestays.booking.draft import BookingDraft
from freestays.booking.errors import BookingFlowError, LockExpiredError, PriceChangedError
from freestays.booking.payment import PaymentRedirector
from freestays.booking.ports import DraftResetter, UserPrompt

SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"
NETWORK_ERROR_MESSAGE = "Could not reach the booking service. Please try again."
UNEXPECTED_ERROR_MESSAGE = "Something went wrong while booking. Please try again."


class FlowState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PREBOOKING = "prebooking"
    PRICE_CONFIRM = "price_confirm"
    CHECKING_OUT = "checking_out"
    REDIRECTING = "redirecting"
    EXTERNAL = "external"  # guest is on the payment provider's page


@dataclass
class FlowResult:
    outcome: str
    state: FlowState
    message: Optional[str] = None
    lock: Optional[ReservationLock] = None
    session: Optional[PaymentSession] = None
    redirect_url: Optional[str] = None
    draft_reset: bool = False

    @property
    def redirected(self) -> bool:
        return self.state is FlowState.EXTERNAL


def success_url(origin: str, locale: str) -> str:
    return f"{origin.rstrip('/')}/{locale}/booking/success?session_id={SESSION_PLACEHOLDER}"


def cancel_url(origin: str, locale: str) -> str:
    return f"{origin.rstrip('/')}/{locale}/booking/cancel"


def price_change_question(old_price: float, new_price: float, currency: str) -> str:
    return (f"The price has changed from {old_price:.2f} {currency} to "
            f"{new_price:.2f} {currency}. Do you want to continue with the new price?")


class BookingCheckoutFlow:
    """Checkout orchestration for one booking form.

    A second ``submit()`` while one is running is ignored: the busy flag is
    the only shared state guarded here.
    """

    def __init__(self, draft: BookingDraft, client: ReservationClient,
                 redirector: PaymentRedirector, prompt: UserPrompt,
                 resetter: Optional[DraftResetter] = None,
                 origin: str = None,
                 clock: Callable[[], datetime] = None):
        self.draft = draft
        self.client = client
        self.redirector = redirector
        self.prompt = prompt
        self.resetter = resetter
        self.origin = origin or settings.PUBLIC_ORIGIN
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = FlowState.IDLE
        self.lock: Optional[ReservationLock] = None
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def lock_seconds_remaining(self) -> Optional[int]:
        """Countdown for the current price hold, None before PreBook succeeds."""
        if self.lock is None:
            return None
        return self.lock.seconds_remaining(self.clock())

    async def submit(self) -> FlowResult:
        if self._busy:
            count_outcome("busy")
            log_event("booking_submit_ignored", level="WARN", state=self.state.value)
            return FlowResult(outcome="busy", state=self.state)

        self._busy = True
        self.lock = None
        log_event("booking_submit_started", hotel_id=self.draft.itinerary.hotel_id)
        try:
            result = await self._run()
        except BookingFlowError as e:
            result = await self._fail(e)
        except httpx.HTTPError as e:
            log_event("booking_network_error", level="ERROR", error=f"{type(e).__name__}: {e}")
            result = await self._finish_failed("network_error", NETWORK_ERROR_MESSAGE)
        except Exception as e:
            log_event("booking_unexpected_error", level="ERROR", error=f"{type(e).__name__}: {e}")
            result = await self._finish_failed("unexpected_error", UNEXPECTED_ERROR_MESSAGE)
        finally:
            self._busy = False

        count_outcome(result.outcome)
        return result

    async def _run(self) -> FlowResult:
        self.state = FlowState.VALIDATING
        intent = self.draft.build_intent()

        self.state = FlowState.PREBOOKING
        with observe_stage("prebook"):
            lock = await self.client.prebook(intent)
        self.lock = lock

        if lock.price_changed:
            answer = self._confirm_price(intent, lock)
            if answer is None:
                # Not agreed to yet: keep the draft, drop this hold.
                # The next submission takes a fresh lock.
                await self._release(lock.pre_book_code)
                self.state = FlowState.IDLE
                return FlowResult(outcome="price_confirmation_required",
                                  state=FlowState.PRICE_CONFIRM, lock=lock)
            if not answer:
                await self._reset(lock.pre_book_code)
                self.state = FlowState.IDLE
                return FlowResult(outcome="price_declined", state=self.state,
                                  lock=lock, draft_reset=True)
            if lock.is_expired(self.clock()):
                raise LockExpiredError()

        self.state = FlowState.CHECKING_OUT
        with observe_stage("checkout"):
            session = await self.client.create_checkout_session(
                intent,
                lock,
                success_url(self.origin, self.draft.locale),
                cancel_url(self.origin, self.draft.locale),
            )

        self.state = FlowState.REDIRECTING
        with observe_stage("redirect"):
            url = await self.redirector.redirect_to_checkout(session.session_id)

        self.state = FlowState.EXTERNAL
        return FlowResult(outcome="redirected", state=self.state, lock=lock,
                          session=session, redirect_url=url)

    def _confirm_price(self, intent: BookingIntent, lock: ReservationLock) -> Optional[bool]:
        self.state = FlowState.PRICE_CONFIRM
        old_price = lock.original_price if lock.original_price is not None \
            else intent.itinerary.search_price
        new_price = lock.total_price if lock.total_price is not None else old_price
        currency = lock.currency or intent.itinerary.currency
        log_event("price_changed", old_price=old_price, new_price=new_price, currency=currency)
        answer = self.prompt.confirm(price_change_question(old_price, new_price, currency), new_price)
        return None if answer is None else bool(answer)

    async def _fail(self, error: BookingFlowError) -> FlowResult:
        failed_in = self.state
        # Only a price change reported by PreBook invalidates what was entered
        reset = isinstance(error, PriceChangedError) and failed_in is FlowState.PREBOOKING
        return await self._finish_failed(error.outcome, error.message, reset=reset)

    async def _finish_failed(self, outcome: str, message: str, reset: bool = False) -> FlowResult:
        failed_in = self.state
        log_event("booking_flow_failed", level="WARN", outcome=outcome,
                  state=failed_in.value, message=message)
        self.prompt.notify(message)
        if reset:
            await self._reset(None)
        self.state = FlowState.IDLE
        return FlowResult(outcome=outcome, state=failed_in, message=message,
                          lock=self.lock, draft_reset=reset)

    async def _reset(self, pre_book_code: Optional[str]) -> None:
        log_event("booking_flow_reset", had_lock=bool(pre_book_code))
        if self.resetter is not None:
            pending = self.resetter.reset_booking_draft()
            if inspect.isawaitable(pending):
                await pending
        await self._release(pre_book_code)

    async def _release(self, pre_book_code: Optional[str]) -> None:
        if not pre_book_code:
            return
        try:
            await self.client.release_prebook(pre_book_code)
        except (BookingFlowError, httpx.HTTPError) as e:
            log_event("prebook_release_failed", level="WARN", error=str(e))
