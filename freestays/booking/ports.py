"""Capabilities the checkout flow needs from its host.

The flow never reads cookies, opens dialogs or clears storage itself; the
web layer (or a test) hands it these.
"""

from typing import Any, Awaitable, Callable, List, Mapping, Optional, Protocol, Union

AuthProvider = Callable[[], Optional[str]]

# Browser storage keys, checked in this order
TOKEN_KEYS = ("admin_token", "token")

# Prices are compared to the cent
PRICE_TOLERANCE = 0.005


class UserPrompt(Protocol):
    def confirm(self, message: str, amount: Optional[float] = None) -> Optional[bool]:
        """Ask a yes/no question about ``amount``.

        ``None`` means the guest has not answered yet.
        """

    def notify(self, message: str) -> None:
        """Show a terminal message."""


class DraftResetter(Protocol):
    def reset_booking_draft(self) -> Union[None, Awaitable[None]]:
        """Discard everything entered for this booking. May be a coroutine."""


def anonymous() -> Optional[str]:
    return None


class StaticTokenProvider:
    def __init__(self, token: Optional[str]):
        self.token = token or None

    def __call__(self) -> Optional[str]:
        return self.token


class MappingTokenProvider:
    """Read the bearer token from a cookie-like mapping at call time."""

    def __init__(self, source: Mapping[str, str], keys=TOKEN_KEYS):
        self.source = source
        self.keys = keys

    def __call__(self) -> Optional[str]:
        for key in self.keys:
            value = self.source.get(key)
            if value:
                return value
        return None


class PresetPrompt:
    """Answers a price confirmation from what came with the submit request.

    Over HTTP there is no dialog: the guest sees the new price in one
    response and agrees to it in the next request by sending that amount
    back. The answer is yes only for the amount agreed to. Any other price
    is unanswered, so the flow stops and shows it. ``decline`` is an
    explicit no.
    """

    def __init__(self, accepted_price: Optional[float] = None, decline: bool = False):
        self.accepted_price = accepted_price
        self.decline = decline
        self.questions: List[str] = []
        self.amounts: List[Optional[float]] = []
        self.messages: List[str] = []

    def confirm(self, message: str, amount: Optional[float] = None) -> Optional[bool]:
        self.questions.append(message)
        self.amounts.append(amount)
        if self.decline:
            return False
        if self.accepted_price is None or amount is None:
            return None
        if abs(self.accepted_price - amount) < PRICE_TOLERANCE:
            return True
        return None

    def notify(self, message: str) -> None:
        self.messages.append(message)


class CallbackResetter:
    def __init__(self, callback: Callable[[], Any]):
        self.callback = callback
        self.calls = 0

    def reset_booking_draft(self) -> Any:
        self.calls += 1
        return self.callback()
