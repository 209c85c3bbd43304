"""Guest roster kept in step with the room occupancy.

Adult 0 doubles as the billing contact. Validity is derived from the current
records on every call, never cached, so it cannot go stale after an edit or
a resize.
"""

import math
import re
from typing import Any, Dict, List

from freestays.types import ChildGuestRecord, GuestRecord

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

_NAME_FIELDS = {
    "firstName": "first_name",
    "first_name": "first_name",
    "lastName": "last_name",
    "last_name": "last_name",
}


def coerce_age(value: Any) -> int:
    """Read an age the way a number input would; anything unparseable is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    m = _LEADING_INT_RE.match(str(value or ""))
    if not m:
        return 0
    try:
        return int(m.group(1))
    except ValueError:
        # longer than the interpreter's int digit limit
        return 0


def _check_index(index: int, guests: list, kind: str) -> None:
    if not 0 <= index < len(guests):
        raise IndexError(f"No {kind} guest at index {index}")


class GuestRoster:
    def __init__(self, adults: int = 0, children: int = 0):
        self.adults: List[GuestRecord] = []
        self.children: List[ChildGuestRecord] = []
        self.email = ""
        self.phone = ""
        self.special_requests = ""
        self.resize(adults, children)

    def resize(self, adults: int, children: int) -> None:
        """Grow with blank records or truncate to the given counts."""
        if adults < 0 or children < 0:
            raise ValueError("guest counts cannot be negative")
        del self.adults[adults:]
        while len(self.adults) < adults:
            self.adults.append(GuestRecord())
        del self.children[children:]
        while len(self.children) < children:
            self.children.append(ChildGuestRecord())

    def set_adult_field(self, index: int, field: str, value: Any) -> None:
        _check_index(index, self.adults, "adult")
        attr = _NAME_FIELDS.get(field)
        if attr is None:
            raise ValueError(f"Unknown adult field: {field}")
        setattr(self.adults[index], attr, "" if value is None else str(value))

    def set_child_field(self, index: int, field: str, value: Any) -> None:
        _check_index(index, self.children, "child")
        child = self.children[index]
        if field == "age":
            child.age = coerce_age(value)
            return
        attr = _NAME_FIELDS.get(field)
        if attr is None:
            raise ValueError(f"Unknown child field: {field}")
        setattr(child, attr, "" if value is None else str(value))

    def set_contact(self, email: str = None, phone: str = None,
                    special_requests: str = None) -> None:
        if email is not None:
            self.email = email
        if phone is not None:
            self.phone = phone
        if special_requests is not None:
            self.special_requests = special_requests

    def missing_fields(self) -> List[str]:
        """Names of everything still blocking submission, in form order."""
        missing: List[str] = []
        if not self.adults:
            missing.append("adults[0]")
        for i, adult in enumerate(self.adults):
            if not adult.first_name.strip():
                missing.append(f"adults[{i}].firstName")
            if not adult.last_name.strip():
                missing.append(f"adults[{i}].lastName")
        if not self.email.strip():
            missing.append("email")
        elif not EMAIL_RE.search(self.email.strip()):
            missing.append("email.format")
        if not self.phone.strip():
            missing.append("phone")
        for i, child in enumerate(self.children):
            if not child.first_name.strip():
                missing.append(f"children[{i}].firstName")
            if not child.last_name.strip():
                missing.append(f"children[{i}].lastName")
            if not 1 <= child.age <= 17:
                missing.append(f"children[{i}].age")
        return missing

    def is_valid(self) -> bool:
        return not self.missing_fields()

    @property
    def billing_name(self) -> str:
        if not self.adults:
            return ""
        lead = self.adults[0]
        return f"{lead.first_name.strip()} {lead.last_name.strip()}".strip()

    @property
    def children_ages(self) -> str:
        return ",".join(str(c.age) for c in self.children)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adults": [a.model_dump(by_alias=True) for a in self.adults],
            "children": [c.model_dump(by_alias=True) for c in self.children],
            "email": self.email,
            "phone": self.phone,
            "specialRequests": self.special_requests,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuestRoster":
        roster = cls()
        roster.adults = [GuestRecord.model_validate(a) for a in data.get("adults", [])]
        roster.children = [ChildGuestRecord.model_validate(c) for c in data.get("children", [])]
        roster.set_contact(
            email=data.get("email", ""),
            phone=data.get("phone", ""),
            special_requests=data.get("specialRequests", ""),
        )
        return roster
