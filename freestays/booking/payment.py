"""Hand-off to the payment provider's hosted checkout page.

This is the last thing the flow does: once the guest is sent to the hosted
page, charge capture and hotel confirmation happen in the backend webhook.
"""

from typing import Callable, Optional, Protocol
from urllib.parse import quote

from freestays.config import settings
from freestays.obs.logger import log_event
from freestays.booking.errors import PaymentConfigError, PaymentProviderError


class PaymentRedirector(Protocol):
    async def redirect_to_checkout(self, session_id: str) -> str:
        """Send the guest to the hosted page; returns the URL used."""


class HostedCheckoutRedirector:
    def __init__(self, publishable_key: Optional[str] = None,
                 checkout_url: Optional[str] = None,
                 navigate: Optional[Callable[[str], None]] = None):
        self.publishable_key = publishable_key if publishable_key is not None \
            else settings.PAYMENT_PUBLISHABLE_KEY
        self.checkout_url = (checkout_url or settings.PAYMENT_CHECKOUT_URL).rstrip("/")
        self.navigate = navigate
        self._initialized = False

    def _initialize(self) -> None:
        if self._initialized:
            return
        key = (self.publishable_key or "").strip()
        if not key:
            raise PaymentConfigError()
        # Secret keys must never reach the guest's browser
        if not key.startswith("pk_"):
            raise PaymentProviderError("Invalid payment provider key. Please contact support.")
        self._initialized = True

    async def redirect_to_checkout(self, session_id: str) -> str:
        self._initialize()
        if not session_id or not session_id.strip():
            raise PaymentProviderError("Payment session is missing.")
        url = f"{self.checkout_url}/{quote(session_id, safe='')}"
        log_event("payment_redirect", session_id=session_id)
        if self.navigate is not None:
            try:
                self.navigate(url)
            except Exception as e:
                raise PaymentProviderError(f"Could not open the payment page: {e}") from e
        return url
