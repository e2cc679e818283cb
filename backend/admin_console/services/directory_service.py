# Overview: Directory Service contract and the one normalization stage for its payloads.

"""
Organization/Membership Directory Service

WHY: Organizations and memberships are owned by a directory (our SQL tables
or a remote REST backend). The lifecycle core only ever talks to this
contract and only ever sees canonical records.

CONTRACT (all awaitable):
- fetch_organization(id) -> OrganizationRecord, members and history included
- update_organization(id, fields) -> OrganizationRecord, full and normalized
- set_organization_active(id, active) -> None
- extend_subscription(id, duration) -> ExtensionResult(organization, extension)

FAILURES: every failure (transport, rejection, unreadable payload) surfaces
as PersistenceError with the service-provided message when there is one.

NORMALIZATION: backends have shipped the same organization under different
field names over time (_id vs id, panVatNumber vs panOrVatNumber, users vs
members, flat vs nested subscription fields...). normalize_organization()
absorbs all of that once, here, so nothing downstream branches on it.
"""

from __future__ import annotations

import abc
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from ..records import (
    ActingUser,
    Deactivation,
    Location,
    MemberRecord,
    MemberRole,
    OrganizationRecord,
    OrgStatus,
    SubscriptionExtensionRecord,
    SubscriptionRecord,
    SubscriptionStatus,
    WorkingHours,
)
from ..time_utils import parse_iso_date, utcnow
from ..validation import coerce_coordinate
from .membership_service import InvariantViolation, MembershipRegistry


GENERIC_FAILURE_MESSAGE = "The directory service could not complete the request. Please try again."

_MAP_LINK_COORDS_RE = re.compile(r"q=([-\d.]+),([-\d.]+)")


class PersistenceError(RuntimeError):
    """
    Raised when the directory could not complete a call.

    The message is the service-provided one when available, otherwise a
    generic fallback. A PersistenceError never leaves partial state behind.
    """

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        super().__init__(message or GENERIC_FAILURE_MESSAGE)
        self.message = message or GENERIC_FAILURE_MESSAGE
        self.status_code = status_code


class OrganizationNotFoundError(PersistenceError):
    """Raised when the directory has no organization with the given id."""
    pass


@dataclass(frozen=True)
class ExtensionResult:
    organization: OrganizationRecord
    extension: SubscriptionExtensionRecord


class DirectoryService(abc.ABC):
    """Persistence and fetch for organizations and their memberships."""

    @abc.abstractmethod
    async def fetch_organization(self, org_id: str) -> OrganizationRecord:
        ...

    @abc.abstractmethod
    async def update_organization(
        self,
        org_id: str,
        fields: Mapping[str, Any],
        *,
        actor: Optional[ActingUser] = None,
    ) -> OrganizationRecord:
        """
        Apply partial fields and return the full normalized organization.

        `fields` uses canonical names (records.EDITABLE_FIELDS) plus
        "members", a list of member dicts (MemberRecord.to_dict shape)
        replacing the membership list wholesale.
        """

    @abc.abstractmethod
    async def set_organization_active(
        self,
        org_id: str,
        active: bool,
        *,
        reason: Optional[str] = None,
        actor: Optional[ActingUser] = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def extend_subscription(
        self,
        org_id: str,
        duration: str,
        *,
        actor: Optional[ActingUser] = None,
    ) -> ExtensionResult:
        ...

    async def aclose(self) -> None:
        """Release connections, if the implementation holds any."""
        return None


# =============================================================================
# NORMALIZATION
# =============================================================================

def _first(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "active")
    return bool(value)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _person_name(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return value.get("name")
    return value


def _coords_from_link(link: Any) -> Optional[tuple[float, float]]:
    if not link:
        return None
    match = _MAP_LINK_COORDS_RE.search(str(link))
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def normalize_member(payload: Mapping[str, Any]) -> MemberRecord:
    member_id = _first(payload, "_id", "id")
    if member_id is None:
        raise PersistenceError("Directory returned a member without an id")
    try:
        role = MemberRole.parse(_first(payload, "role", default=MemberRole.SALES_REP.value))
    except ValueError as exc:
        raise PersistenceError(str(exc))
    return MemberRecord(
        id=str(member_id),
        name=_text(_first(payload, "name")),
        email=_text(_first(payload, "email")),
        role=role,
        email_verified=_as_bool(_first(payload, "emailVerified", "email_verified", "isEmailVerified")),
        is_active=_as_bool(_first(payload, "isActive", "is_active"), default=True),
        last_active=_text(_first(payload, "lastActive", "last_active", default="Never")),
        phone=_first(payload, "phone"),
        tax_id=_first(payload, "taxId", "tax_id", "panNumber", "pan_number"),
        citizenship_id=_first(payload, "citizenshipId", "citizenship_id", "citizenshipNumber"),
        address=_first(payload, "address"),
        latitude=coerce_coordinate(_first(payload, "latitude")),
        longitude=coerce_coordinate(_first(payload, "longitude")),
        date_of_birth=parse_iso_date(_first(payload, "dateOfBirth", "date_of_birth", "dob")),
        gender=_first(payload, "gender"),
    )


def _normalize_extension(payload: Mapping[str, Any]) -> SubscriptionExtensionRecord:
    extended_by = _first(payload, "extendedBy", "extended_by", default="")
    return SubscriptionExtensionRecord(
        extension_date=parse_iso_date(_first(payload, "extensionDate", "extension_date")),
        duration=_text(_first(payload, "extensionDuration", "duration")),
        previous_end_date=parse_iso_date(_first(payload, "previousEndDate", "previous_end_date")),
        new_end_date=parse_iso_date(_first(payload, "newEndDate", "new_end_date")),
        extended_by=_text(_person_name(extended_by)),
    )


def normalize_extension(payload: Mapping[str, Any]) -> SubscriptionExtensionRecord:
    try:
        return _normalize_extension(payload)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Directory returned an unreadable subscription extension: {exc}")


def _normalize_subscription(payload: Mapping[str, Any]) -> SubscriptionRecord:
    nested = payload.get("subscription")
    source: Mapping[str, Any] = nested if isinstance(nested, Mapping) else payload

    expiry = parse_iso_date(_first(source, "expiry", "subscriptionEndDate", "subscriptionExpiry", "subscription_expiry"))
    if expiry is None:
        raise PersistenceError("Directory returned an organization without a subscription end date")

    status_value = _first(source, "status" if source is nested else "subscriptionStatus", "subscription_status")
    if status_value is None:
        active_flag = _first(source, "isSubscriptionActive", "is_subscription_active")
        status = SubscriptionStatus.ACTIVE if _as_bool(active_flag) else SubscriptionStatus.EXPIRED
    else:
        status = SubscriptionStatus(str(status_value).capitalize())

    history_payload = _first(source, "history", "subscriptionHistory", "subscription_history", default=[])
    history = tuple(_normalize_extension(entry) for entry in history_payload)

    return SubscriptionRecord(
        status=status,
        expiry=expiry,
        type=_text(_first(source, "type", "subscriptionDuration", "subscriptionType", "subscription_type", default="6months")),
        history=history,
    )


def _normalize_members(payload: Mapping[str, Any], org_id: str) -> tuple[MemberRecord, ...]:
    members_payload = _first(payload, "members", "users", default=None)
    if members_payload:
        return tuple(normalize_member(m) for m in members_payload)

    # Older backends only return the owner's denormalized fields
    owner = payload.get("owner") if isinstance(payload.get("owner"), Mapping) else {}
    user = payload.get("user") if isinstance(payload.get("user"), Mapping) else {}
    name = _first(payload, "ownerName") or owner.get("name") or user.get("name")
    if name is None and isinstance(payload.get("owner"), str):
        name = payload["owner"]
    email = _first(payload, "ownerEmail") or owner.get("email") or user.get("email") or payload.get("email")
    if not name and not email:
        return ()
    owner_id = _first(owner, "_id", "id") or _first(user, "_id", "id") or f"{org_id}-owner"
    return (
        MemberRecord(
            id=str(owner_id),
            name=_text(name),
            email=_text(email),
            role=MemberRole.OWNER,
            email_verified=True,
            is_active=True,
            last_active="Never",
        ),
    )


def _normalize_deactivation(payload: Mapping[str, Any]) -> Optional[Deactivation]:
    nested = payload.get("deactivation")
    if isinstance(nested, Mapping):
        reason, when = nested.get("reason"), nested.get("date")
    else:
        reason = _first(payload, "deactivationReason", "deactivation_reason")
        when = _first(payload, "deactivatedDate", "deactivatedAt", "deactivated_at")
    if reason is None and when is None:
        return None
    return Deactivation(reason=_text(reason), date=parse_iso_date(when) or utcnow().date())


def _normalize_organization(payload: Mapping[str, Any]) -> OrganizationRecord:
    org_id = _first(payload, "_id", "id")
    if org_id is None:
        raise PersistenceError("Directory returned an organization without an id")
    org_id = str(org_id)

    latitude = coerce_coordinate(_first(payload, "latitude"))
    longitude = coerce_coordinate(_first(payload, "longitude"))
    if not latitude and not longitude:
        recovered = _coords_from_link(_first(payload, "googleMapLink", "addressLink", "address_link"))
        if recovered:
            latitude, longitude = recovered

    if "status" in payload and isinstance(payload["status"], str):
        status = OrgStatus(payload["status"].capitalize())
    else:
        status = OrgStatus.ACTIVE if _as_bool(_first(payload, "isActive", "is_active"), default=True) else OrgStatus.INACTIVE

    hours = payload.get("working_hours") if isinstance(payload.get("working_hours"), Mapping) else payload
    working_hours = WorkingHours(
        check_in=_first(hours, "check_in", "checkInTime", "checkIn"),
        check_out=_first(hours, "check_out", "checkOutTime", "checkOut"),
        half_day_check_out=_first(hours, "half_day_check_out", "halfDayCheckOutTime", "halfDayCheckOut"),
        weekly_off_day=_first(hours, "weekly_off_day", "weeklyOffDay", "weeklyOff"),
        timezone=_first(hours, "timezone"),
    )

    members = _normalize_members(payload, org_id)
    try:
        MembershipRegistry(members)
    except (InvariantViolation, ValueError) as exc:
        raise PersistenceError(f"Directory returned an inconsistent member list: {exc}")

    return OrganizationRecord(
        id=org_id,
        name=_text(_first(payload, "name")),
        address=_text(_first(payload, "address")),
        phone=_text(_first(payload, "phone")),
        tax_id=_text(_first(payload, "tax_id", "taxId", "panVatNumber", "panOrVatNumber", "panVat")),
        location=Location(latitude=latitude or 0.0, longitude=longitude or 0.0),
        status=status,
        subscription=_normalize_subscription(payload),
        created_date=parse_iso_date(_first(payload, "created_date", "createdDate", "createdAt")) or utcnow().date(),
        email_verified=_as_bool(_first(payload, "email_verified", "emailVerified")),
        working_hours=working_hours,
        members=members,
        deactivation=_normalize_deactivation(payload),
    )


def normalize_organization(payload: Mapping[str, Any]) -> OrganizationRecord:
    """
    Build the canonical OrganizationRecord from any known payload shape.

    Raises:
        PersistenceError: If the payload cannot be read as an organization
    """
    if not isinstance(payload, Mapping):
        raise PersistenceError("Directory returned an unreadable organization payload")
    try:
        return _normalize_organization(payload)
    except PersistenceError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Directory returned an unreadable organization: {exc}")


def members_payload(members: Iterable[MemberRecord]) -> list[dict]:
    """Member list in the shape update_organization() expects under "members"."""
    return [m.to_dict() for m in members]
