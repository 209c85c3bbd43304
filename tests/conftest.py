import os
import sys
import json
import asyncio
import inspect
from datetime import date

import httpx
import pytest

# Ensure project root is on sys.path so `import freestays` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from freestays.types import Itinerary
from freestays.booking.draft import BookingDraft
from freestays.obs.metrics import reset_metrics


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


class FakeBackend:
    """Scripted reservation backend behind httpx.MockTransport.

    Each path maps to a list of (status, body) replies consumed in order;
    the last reply repeats. Every request is recorded.
    """

    def __init__(self):
        self.replies = {}
        self.calls = []

    def reply(self, path_suffix, status=200, body=None):
        self.replies.setdefault(path_suffix, []).append((status, body))
        return self

    def calls_to(self, path_suffix):
        return [c for c in self.calls if c["path"].endswith(path_suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        raw = request.content.decode() if request.content else ""
        self.calls.append({
            "method": request.method,
            "path": request.url.path,
            "headers": dict(request.headers),
            "json": json.loads(raw) if raw else None,
        })
        for suffix, queue in self.replies.items():
            if request.url.path.endswith(suffix):
                status, body = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(body, str):
                    return httpx.Response(status, text=body)
                return httpx.Response(status, json=body)
        return httpx.Response(404, json={"message": f"no route for {request.url.path}"})

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class RecordingPrompt:
    def __init__(self, answer=True):
        self.answer = answer
        self.questions = []
        self.amounts = []
        self.messages = []

    def confirm(self, message, amount=None):
        self.questions.append(message)
        self.amounts.append(amount)
        return self.answer

    def notify(self, message):
        self.messages.append(message)


class RecordingRedirector:
    def __init__(self):
        self.session_ids = []

    async def redirect_to_checkout(self, session_id):
        self.session_ids.append(session_id)
        return f"https://pay.example/{session_id}"


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def prompt():
    return RecordingPrompt()


@pytest.fixture
def redirector():
    return RecordingRedirector()


@pytest.fixture
def itinerary():
    return Itinerary(
        hotel_id=1201,
        room_id=55,
        room_type_id=7,
        meal_id=3,
        check_in_date=date(2026, 2, 15),
        check_out_date=date(2026, 2, 20),
        search_price=240.0,
        currency="EUR",
    )


@pytest.fixture
def filled_draft(itinerary):
    """Two adults and one child, every field valid."""
    draft = BookingDraft(itinerary=itinerary, locale="en", adults=2, children=1)
    r = draft.roster
    r.set_adult_field(0, "firstName", "Ada")
    r.set_adult_field(0, "lastName", "Lovelace")
    r.set_adult_field(1, "firstName", "Charles")
    r.set_adult_field(1, "lastName", "Babbage")
    r.set_child_field(0, "firstName", "Byron")
    r.set_child_field(0, "lastName", "Lovelace")
    r.set_child_field(0, "age", "9")
    r.set_contact(email="ada@example.com", phone="+44 20 7946 0018",
                  special_requests="Late arrival")
    return draft
