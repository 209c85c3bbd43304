"""Structured JSON logging to stdout.

Low overhead, minimal dependencies, safe for production stdout collectors.
Guest contact details never reach the log line unredacted.
"""

from typing import Any, Dict
from datetime import datetime, timezone
import json

from freestays.obs.context import request_id_var, draft_id_var


_EMAIL_KEYS = ("email", "guest_email", "guestEmail")
_PHONE_KEYS = ("phone", "guest_phone", "guestPhone")


def _redact_phone(value: Any) -> Any:
    s = str(value) if value is not None else ""
    if not s:
        return s
    digits = [c for c in s if c.isdigit()]
    if len(digits) < 4:
        return "***"
    tail = "".join(digits[-4:])
    return f"***{tail}"


def _redact_email(value: Any) -> Any:
    s = str(value) if value is not None else ""
    if not s:
        return s
    local, sep, domain = s.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def log_event(event: str, **fields: Any) -> None:
    now = datetime.now(timezone.utc).isoformat()
    payload: Dict[str, Any] = {
        "ts": now,
        "level": fields.pop("level", "INFO"),
        "event": event,
        "request_id": request_id_var.get(),
    }
    # Attach context vars if not provided explicitly
    payload["draft_id"] = fields.pop("draft_id", None) or draft_id_var.get()

    for k, v in fields.items():
        if k in _EMAIL_KEYS:
            payload[k] = _redact_email(v)
        elif k in _PHONE_KEYS:
            payload[k] = _redact_phone(v)
        else:
            payload[k] = v

    try:
        print(json.dumps(payload, separators=(",", ":"), default=str))
    except (TypeError, ValueError):
        # As a last resort, avoid crashing the flow due to logging
        pass
