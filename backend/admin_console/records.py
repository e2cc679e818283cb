"""
Canonical in-memory shapes for organizations and their memberships.

WHY: The lifecycle core works on immutable snapshots, never on ORM rows or
raw API payloads. Directory Service implementations normalize whatever they
receive into these records exactly once (see services/directory_service.py),
so nothing downstream branches on alternate field names.

DESIGN:
- Every record is a frozen dataclass; changes produce new records via
  dataclasses.replace, so a committed snapshot can never be edited in place.
- Owner display fields (owner_name/owner_email) are derived from the member
  whose role is Owner. They are not stored anywhere.
- addressLink is derived from the coordinates.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from .time_utils import to_iso_date
from .validation import address_link, coerce_coordinate


class OrgStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"


class MemberRole(str, enum.Enum):
    OWNER = "Owner"
    ADMIN = "Admin"
    MANAGER = "Manager"
    SALES_REP = "Sales Rep"

    @classmethod
    def parse(cls, value: Any) -> "MemberRole":
        """Accept 'Sales Rep', 'SalesRep', 'sales_rep' and friends."""
        if isinstance(value, cls):
            return value
        key = str(value or "").replace(" ", "").replace("_", "").replace("-", "").lower()
        for role in cls:
            if role.value.replace(" ", "").lower() == key:
                return role
        raise ValueError(f"Unknown member role: {value!r}")


@dataclass(frozen=True)
class ActingUser:
    """
    The operator performing an action.

    Passed explicitly into every lifecycle operation instead of being read
    from ambient session state, so authorization checks stay pure.
    """
    id: str
    name: str
    role: str


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    @property
    def address_link(self) -> str:
        return address_link(self.latitude, self.longitude)


@dataclass(frozen=True)
class WorkingHours:
    """Opaque passthrough fields; the core never computes with them."""
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    half_day_check_out: Optional[str] = None
    weekly_off_day: Optional[str] = None
    timezone: Optional[str] = None


@dataclass(frozen=True)
class Deactivation:
    reason: str
    date: date


@dataclass(frozen=True)
class SubscriptionExtensionRecord:
    """Append-only history entry. Never mutated after creation."""
    extension_date: date
    duration: str
    previous_end_date: date
    new_end_date: date
    extended_by: str

    def to_dict(self) -> dict:
        return {
            "extension_date": to_iso_date(self.extension_date),
            "duration": self.duration,
            "previous_end_date": to_iso_date(self.previous_end_date),
            "new_end_date": to_iso_date(self.new_end_date),
            "extended_by": self.extended_by,
        }


@dataclass(frozen=True)
class SubscriptionRecord:
    status: SubscriptionStatus
    expiry: date
    type: str
    history: tuple[SubscriptionExtensionRecord, ...] = ()


@dataclass(frozen=True)
class MemberRecord:
    id: str
    name: str
    email: str
    role: MemberRole
    email_verified: bool = False
    is_active: bool = True
    last_active: str = "Never"
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    citizenship_id: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return self.role is MemberRole.OWNER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "email_verified": self.email_verified,
            "is_active": self.is_active,
            "last_active": self.last_active,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "citizenship_id": self.citizenship_id,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "date_of_birth": to_iso_date(self.date_of_birth),
            "gender": self.gender,
        }


# Fields an operator may change through an edit session
EDITABLE_FIELDS = (
    "name",
    "address",
    "phone",
    "tax_id",
    "latitude",
    "longitude",
    "check_in",
    "check_out",
    "half_day_check_out",
    "weekly_off_day",
    "timezone",
    "subscription_type",
)

_WORKING_HOURS_FIELDS = ("check_in", "check_out", "half_day_check_out", "weekly_off_day", "timezone")


@dataclass(frozen=True)
class OrganizationRecord:
    id: str
    name: str
    address: str
    phone: str
    tax_id: str
    location: Location
    status: OrgStatus
    subscription: SubscriptionRecord
    created_date: date
    email_verified: bool = False
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    members: tuple[MemberRecord, ...] = ()
    deactivation: Optional[Deactivation] = None

    @property
    def is_active(self) -> bool:
        return self.status is OrgStatus.ACTIVE

    @property
    def owner(self) -> Optional[MemberRecord]:
        for member in self.members:
            if member.is_owner:
                return member
        return None

    @property
    def owner_name(self) -> str:
        owner = self.owner
        return owner.name if owner else ""

    @property
    def owner_email(self) -> str:
        owner = self.owner
        return owner.email if owner else ""

    @property
    def address_link(self) -> str:
        return self.location.address_link

    def member(self, member_id: str) -> Optional[MemberRecord]:
        for m in self.members:
            if m.id == member_id:
                return m
        return None

    def editable_values(self) -> dict[str, Any]:
        values = {
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "subscription_type": self.subscription.type,
        }
        for name in _WORKING_HOURS_FIELDS:
            values[name] = getattr(self.working_hours, name)
        return values

    def with_editable_values(self, values: Mapping[str, Any]) -> "OrganizationRecord":
        """Return a copy with the given (already validated) editable fields applied."""
        unknown = set(values) - set(EDITABLE_FIELDS)
        if unknown:
            raise KeyError(f"Not editable: {', '.join(sorted(unknown))}")

        merged = {**self.editable_values(), **values}
        latitude = coerce_coordinate(merged["latitude"])
        longitude = coerce_coordinate(merged["longitude"])
        return replace(
            self,
            name=str(merged["name"]).strip(),
            address=str(merged["address"]).strip(),
            phone=merged["phone"],
            tax_id=merged["tax_id"] or "",
            location=Location(
                latitude=self.location.latitude if latitude is None else latitude,
                longitude=self.location.longitude if longitude is None else longitude,
            ),
            subscription=replace(self.subscription, type=merged["subscription_type"]),
            working_hours=WorkingHours(**{name: merged[name] for name in _WORKING_HOURS_FIELDS}),
        )

    def with_members(self, members: Iterable[MemberRecord]) -> "OrganizationRecord":
        return replace(self, members=tuple(members))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "address_link": self.address_link,
            "status": self.status.value,
            "email_verified": self.email_verified,
            "deactivation": (
                {
                    "reason": self.deactivation.reason,
                    "date": to_iso_date(self.deactivation.date),
                }
                if self.deactivation else None
            ),
            "subscription": {
                "status": self.subscription.status.value,
                "expiry": to_iso_date(self.subscription.expiry),
                "type": self.subscription.type,
                "history": [entry.to_dict() for entry in self.subscription.history],
            },
            "working_hours": {
                name: getattr(self.working_hours, name) for name in _WORKING_HOURS_FIELDS
            },
            "created_date": to_iso_date(self.created_date),
            "members": [m.to_dict() for m in self.members],
        }
