"""Request context helpers using ContextVars.

Holds request-scoped identifiers (request_id, the booking draft being worked
on) so log lines can be correlated without threading them through every call.
"""

from contextvars import ContextVar
from typing import Optional


# Public ContextVars (names are stable API)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
draft_id_var: ContextVar[Optional[str]] = ContextVar("draft_id", default=None)
locale_var: ContextVar[Optional[str]] = ContextVar("locale", default=None)


def clear_context() -> None:
    """Reset context variables to defaults."""
    request_id_var.set(None)
    draft_id_var.set(None)
    locale_var.set(None)
