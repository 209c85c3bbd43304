from typing import Any, Dict, Optional

from freestays.config import settings
from freestays.types import BookingIntent, Itinerary
from freestays.booking.errors import GuestValidationError
from freestays.booking.roster import GuestRoster


class BookingDraft:
    """What the guest has entered so far for one room.

    Survives failed submissions; only an explicit reset discards it.
    """

    def __init__(self, itinerary: Itinerary, locale: str, adults: int, children: int,
                 roster: Optional[GuestRoster] = None,
                 pass_purchase_type: Optional[str] = None,
                 pass_code_valid: Optional[bool] = None):
        self.itinerary = itinerary
        self.locale = locale
        self.pass_purchase_type = pass_purchase_type
        self.pass_code_valid = pass_code_valid
        self.roster = roster or GuestRoster()
        self.adults = 0
        self.children = 0
        self.set_occupancy(adults, children)

    def set_occupancy(self, adults: int, children: int) -> None:
        self.adults = adults
        self.children = children
        self.roster.resize(adults, children)

    def validation_problems(self):
        problems = self.roster.missing_fields()
        if len(self.roster.adults) != self.adults or len(self.roster.children) != self.children:
            problems.append("occupancy")
        return problems

    def build_intent(self, customer_country: str = None) -> BookingIntent:
        problems = self.validation_problems()
        if problems:
            raise GuestValidationError(problems)
        roster = self.roster
        return BookingIntent(
            itinerary=self.itinerary,
            adults=self.adults,
            children=self.children,
            children_ages=roster.children_ages,
            guest_name=roster.billing_name,
            guest_email=roster.email.strip(),
            guest_phone=roster.phone.strip(),
            special_requests=roster.special_requests,
            language=self.locale,
            customer_country=customer_country or settings.CUSTOMER_COUNTRY,
            pass_purchase_type=self.pass_purchase_type,
            pass_code_valid=self.pass_code_valid,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itinerary": self.itinerary.model_dump(mode="json", by_alias=True),
            "locale": self.locale,
            "adults": self.adults,
            "children": self.children,
            "roster": self.roster.to_dict(),
            "passPurchaseType": self.pass_purchase_type,
            "passCodeValid": self.pass_code_valid,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookingDraft":
        return cls(
            itinerary=Itinerary.model_validate(data["itinerary"]),
            locale=data["locale"],
            adults=data["adults"],
            children=data["children"],
            roster=GuestRoster.from_dict(data.get("roster", {})),
            pass_purchase_type=data.get("passPurchaseType"),
            pass_code_valid=data.get("passCodeValid"),
        )
