from contextlib import asynccontextmanager
from typing import Any, List, Literal, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from freestays.config import settings
from freestays.types import ChildGuestRecord, GuestRecord, Itinerary
from freestays.booking.client import ReservationClient
from freestays.booking.draft import BookingDraft
from freestays.booking.errors import BookingFlowError
from freestays.booking.flow import BookingCheckoutFlow
from freestays.booking.payment import HostedCheckoutRedirector
from freestays.booking.ports import CallbackResetter, MappingTokenProvider, PresetPrompt
from freestays.infrastructure.rate_limit import SubmitThrottle
from freestays.obs.context import draft_id_var, locale_var
from freestays.obs.logger import log_event
from freestays.obs.metrics import get_metrics_snapshot
from freestays.obs.middleware import ObservabilityMiddleware
from freestays.session.store import MemoryDraftStore, RedisDraftStore

load_dotenv()


def _new_http() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(
            connect=settings.HTTP_CONNECT_TIMEOUT,
            read=settings.HTTP_READ_TIMEOUT,
            write=settings.HTTP_READ_TIMEOUT,
            pool=settings.HTTP_READ_TIMEOUT,
        ),
    )


async def _connect_redis(app: FastAPI) -> Optional[aioredis.Redis]:
    """Share drafts and submit counts through Redis when REDIS_URL is set.

    If Redis cannot be reached at startup the per-process stores stay in place.
    """
    if not settings.REDIS_URL:
        return None
    client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except RedisError as e:
        log_event("redis_unavailable", level="WARN", error=str(e))
        await client.aclose()
        return None
    app.state.draft_store = RedisDraftStore(client)
    app.state.rate_limiter = SubmitThrottle(redis_client=client)
    log_event("redis_connected")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_event("startup", env=settings.APP_ENV, api_url=settings.API_URL)
    if getattr(app.state, "http", None) is None:
        app.state.http = _new_http()
    redis_client = await _connect_redis(app)
    if not settings.PAYMENT_PUBLISHABLE_KEY:
        log_event("payment_key_missing", level="WARN")

    yield

    await app.state.http.aclose()
    if redis_client is not None:
        await redis_client.aclose()
    log_event("shutdown")


api = FastAPI(
    title="FreeStays Booking Checkout",
    version="1.0.0",
    lifespan=lifespan,
)
api.state.draft_store = MemoryDraftStore()
api.state.rate_limiter = SubmitThrottle()
api.state.active_flows = {}
api.state.http = None


class DraftIn(BaseModel):
    itinerary: Itinerary
    adults: int = Field(..., ge=0, le=9)
    children: int = Field(0, ge=0, le=9)
    email: Optional[str] = None
    phone: Optional[str] = None
    special_requests: Optional[str] = Field(None, alias="specialRequests")
    adult_guests: Optional[List[GuestRecord]] = Field(None, alias="adultGuests")
    child_guests: Optional[List[ChildGuestRecord]] = Field(None, alias="childGuests")
    pass_purchase_type: Optional[str] = Field(None, alias="passPurchaseType")
    pass_code_valid: Optional[bool] = Field(None, alias="passCodeValid")

    model_config = {"populate_by_name": True}


class GuestFieldUpdate(BaseModel):
    kind: Literal["adult", "child"]
    index: int = Field(..., ge=0)
    field: str
    value: Any = None


class ContactUpdate(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    special_requests: Optional[str] = Field(None, alias="specialRequests")

    model_config = {"populate_by_name": True}


class SubmitIn(BaseModel):
    # The new price the guest was shown and agreed to
    accepted_price: Optional[float] = Field(None, alias="acceptedPrice")
    decline_price_change: bool = Field(False, alias="declinePriceChange")

    model_config = {"populate_by_name": True}


def _http(request: Request) -> httpx.AsyncClient:
    if request.app.state.http is None:
        request.app.state.http = _new_http()
    return request.app.state.http


def _enter(locale: str, draft_id: str) -> None:
    locale_var.set(locale)
    draft_id_var.set(draft_id)


async def _load_draft(request: Request, draft_id: str) -> BookingDraft:
    data = await request.app.state.draft_store.get(draft_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Booking draft not found or expired")
    return BookingDraft.from_dict(data)


def _draft_view(draft_id: str, draft: BookingDraft) -> dict:
    view = draft.to_dict()
    view.update({
        "draftId": draft_id,
        "isValid": not draft.validation_problems(),
        "missing": draft.validation_problems(),
    })
    return view


@api.get("/health")
async def health():
    return {"status": "healthy", "service": "booking-checkout"}


@api.get("/metrics")
async def metrics(request: Request):
    snapshot = get_metrics_snapshot()
    snapshot["active_submissions"] = sum(
        1 for flow in request.app.state.active_flows.values() if flow.busy
    )
    return snapshot


@api.put("/{locale}/booking/drafts/{draft_id}")
async def put_draft(request: Request, locale: str, draft_id: str, body: DraftIn):
    _enter(locale, draft_id)
    store = request.app.state.draft_store
    existing = await store.get(draft_id)
    if existing is not None:
        draft = BookingDraft.from_dict(existing)
        draft.itinerary = body.itinerary
        draft.locale = locale
        draft.set_occupancy(body.adults, body.children)
        draft.pass_purchase_type = body.pass_purchase_type
        draft.pass_code_valid = body.pass_code_valid
    else:
        draft = BookingDraft(
            itinerary=body.itinerary,
            locale=locale,
            adults=body.adults,
            children=body.children,
            pass_purchase_type=body.pass_purchase_type,
            pass_code_valid=body.pass_code_valid,
        )

    roster = draft.roster
    for i, guest in enumerate((body.adult_guests or [])[:body.adults]):
        roster.set_adult_field(i, "firstName", guest.first_name)
        roster.set_adult_field(i, "lastName", guest.last_name)
    for i, child in enumerate((body.child_guests or [])[:body.children]):
        roster.set_child_field(i, "firstName", child.first_name)
        roster.set_child_field(i, "lastName", child.last_name)
        roster.set_child_field(i, "age", child.age)
    roster.set_contact(body.email, body.phone, body.special_requests)

    await store.set(draft_id, draft.to_dict())
    log_event("draft_saved", adults=body.adults, children=body.children)
    return _draft_view(draft_id, draft)


@api.get("/{locale}/booking/drafts/{draft_id}")
async def get_draft(request: Request, locale: str, draft_id: str):
    _enter(locale, draft_id)
    return _draft_view(draft_id, await _load_draft(request, draft_id))


@api.patch("/{locale}/booking/drafts/{draft_id}/guests")
async def patch_guest(request: Request, locale: str, draft_id: str, body: GuestFieldUpdate):
    _enter(locale, draft_id)
    draft = await _load_draft(request, draft_id)
    try:
        if body.kind == "adult":
            draft.roster.set_adult_field(body.index, body.field, body.value)
        else:
            draft.roster.set_child_field(body.index, body.field, body.value)
    except IndexError:
        raise HTTPException(status_code=422, detail=f"No {body.kind} guest at index {body.index}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await request.app.state.draft_store.set(draft_id, draft.to_dict())
    return _draft_view(draft_id, draft)


@api.patch("/{locale}/booking/drafts/{draft_id}/contact")
async def patch_contact(request: Request, locale: str, draft_id: str, body: ContactUpdate):
    _enter(locale, draft_id)
    draft = await _load_draft(request, draft_id)
    draft.roster.set_contact(body.email, body.phone, body.special_requests)
    await request.app.state.draft_store.set(draft_id, draft.to_dict())
    return _draft_view(draft_id, draft)


@api.post("/{locale}/booking/drafts/{draft_id}/submit")
async def submit_draft(request: Request, locale: str, draft_id: str, body: SubmitIn):
    _enter(locale, draft_id)
    state = request.app.state

    client_ip = request.client.host if request.client else "unknown"
    throttle = await state.rate_limiter.hit(client_ip)
    if not throttle.allowed:
        return JSONResponse(
            {"status": "rate_limited", "retryAfter": throttle.retry_after},
            status_code=429,
            headers={"Retry-After": str(throttle.retry_after)},
        )

    running = state.active_flows.get(draft_id)
    if running is not None and running.busy:
        return JSONResponse({"status": "busy", "state": running.state.value}, status_code=409)

    draft = await _load_draft(request, draft_id)
    prompt = PresetPrompt(accepted_price=body.accepted_price, decline=body.decline_price_change)
    flow = BookingCheckoutFlow(
        draft=draft,
        client=ReservationClient(auth=MappingTokenProvider(request.cookies), http=_http(request)),
        redirector=HostedCheckoutRedirector(),
        prompt=prompt,
        resetter=CallbackResetter(lambda: state.draft_store.clear(draft_id)),
        origin=settings.PUBLIC_ORIGIN,
    )
    state.active_flows[draft_id] = flow
    try:
        result = await flow.submit()
    finally:
        if state.active_flows.get(draft_id) is flow:
            state.active_flows.pop(draft_id, None)

    if result.redirected:
        return {
            "status": "redirect",
            "redirectUrl": result.redirect_url,
            "sessionId": result.session.session_id,
            "bookingId": result.session.booking_id,
        }

    if result.outcome == "price_confirmation_required":
        # Resubmit with acceptedPrice=newPrice to go ahead at this price
        return JSONResponse(
            {
                "status": "price_confirmation_required",
                "draftReset": False,
                "newPrice": prompt.amounts[-1],
                "currency": result.lock.currency or draft.itinerary.currency,
                "question": prompt.questions[-1],
            },
            status_code=409,
        )

    if result.outcome in ("price_declined", "price_changed_error"):
        payload = {
            "status": "price_changed",
            "draftReset": result.draft_reset,
            "messages": prompt.messages,
        }
        if prompt.questions:
            payload.update({
                "newPrice": prompt.amounts[-1],
                "question": prompt.questions[-1],
            })
        return JSONResponse(payload, status_code=409)

    return JSONResponse(
        {
            "status": "failed",
            "outcome": result.outcome,
            "state": result.state.value,
            "messages": prompt.messages,
            "missing": draft.validation_problems() if result.outcome == "invalid" else [],
        },
        status_code=400,
    )


@api.get("/{locale}/booking/success")
async def booking_success(request: Request, locale: str,
                          session_id: Optional[str] = None,
                          booking_id: Optional[str] = Query(None, alias="bookingId")):
    locale_var.set(locale)
    if not booking_id:
        return RedirectResponse(url=f"/{locale}", status_code=307)
    client = ReservationClient(auth=MappingTokenProvider(request.cookies), http=_http(request))
    try:
        booking = await client.get_booking(booking_id)
    except BookingFlowError as e:
        log_event("booking_lookup_failed", level="WARN", booking_id=booking_id, error=e.message)
        return JSONResponse({"status": "unknown", "bookingId": booking_id, "message": e.message},
                            status_code=502)
    except httpx.HTTPError as e:
        log_event("booking_lookup_failed", level="WARN", booking_id=booking_id, error=str(e))
        return JSONResponse({"status": "unknown", "bookingId": booking_id}, status_code=502)
    return {
        "status": "confirmed",
        "sessionId": session_id,
        "booking": booking.model_dump(mode="json", by_alias=True),
    }


@api.get("/{locale}/booking/cancel")
async def booking_cancel(locale: str):
    locale_var.set(locale)
    log_event("payment_cancelled")
    return {
        "status": "cancelled",
        "message": "Payment was cancelled. Your card has not been charged.",
        "searchUrl": f"/{locale}/search",
    }


# Apply middleware
app = ObservabilityMiddleware(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.APP_ENV == "dev",
        log_level="info"
    )
