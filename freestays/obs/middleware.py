"""Request timing, counters and request ids for the booking service.

Metrics are labelled with the matched route template
(``/{locale}/booking/drafts/{draft_id}``), never the raw path, so draft ids
and locales do not each open a new series. Requests that match no route
share the ``unmatched`` label.
"""

import re
import time
import uuid
from typing import Any, Callable

from freestays.obs.context import clear_context, request_id_var
from freestays.obs.logger import log_event
from freestays.obs.metrics import inc_counter, record_timing

UNMATCHED_ROUTE = "unmatched"
REQUEST_ID_HEADER = b"x-request-id"
# Accept a caller's id only if it is short and header-safe
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def _incoming_request_id(scope: dict) -> str:
    for name, value in scope.get("headers") or []:
        if name.lower() == REQUEST_ID_HEADER:
            candidate = value.decode("latin-1")
            if _REQUEST_ID_RE.match(candidate):
                return candidate
            break
    return str(uuid.uuid4())


def route_template(scope: dict) -> str:
    """The path template the router matched, read after the app ran."""
    return getattr(scope.get("route"), "path", None) or UNMATCHED_ROUTE


class ObservabilityMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        clear_context()
        req_id = _incoming_request_id(scope)
        request_id_var.set(req_id)
        method = scope.get("method", "")
        start = time.monotonic()
        status_code = 500

        async def send_wrapper(message: dict):
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 200))
                headers = [h for h in message.get("headers", []) if h[0].lower() != REQUEST_ID_HEADER]
                headers.append((REQUEST_ID_HEADER, req_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            log_event("request_failed", level="ERROR", method=method,
                      route=route_template(scope), error=f"{type(e).__name__}: {e}")
            raise
        finally:
            route = route_template(scope)
            elapsed_ms = (time.monotonic() - start) * 1000.0
            record_timing("request_latency_ms", elapsed_ms, {"route": route, "method": method})
            inc_counter("requests_total", {"route": route, "method": method,
                                           "status": str(status_code)})
            log_event(
                "request",
                method=method,
                route=route,
                status=status_code,
                ms_total=round(elapsed_ms, 2),
            )
