# Overview: Ownership transfer protocol; validates first, then swaps roles in one step.

"""
Ownership Transfer Protocol

Two modes, chosen explicitly by the caller:

    existing  An existing non-Owner member becomes Owner.
    new       A new person (full profile) is onboarded directly as Owner.

In both modes the previous Owner becomes an Admin. Nothing else about any
membership changes.

RULES:
1. Validation is front-loaded. Once it passes, applying the transfer cannot
   fail half-way, so either every role change lands or none does.
2. The protocol never writes owner display fields on the organization.
   Those are derived from the registry by whoever holds the organization.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Mapping

from ..records import MemberRecord, MemberRole
from ..validation import (
    ValidationError,
    collect_errors,
    validate_address,
    validate_citizenship_id,
    validate_date_of_birth,
    validate_email,
    validate_gender,
    validate_latitude,
    validate_longitude,
    validate_person_name,
    validate_phone,
    validate_tax_id_edit,
)
from .membership_service import MembershipRegistry, MemberNotFoundError, member_from_profile, new_member_id


class TransferMode(str, enum.Enum):
    EXISTING = "existing"
    NEW = "new"


@dataclass(frozen=True)
class TransferOutcome:
    registry: MembershipRegistry
    new_owner: MemberRecord
    previous_owner: MemberRecord


PROFILE_RULES = {
    "name": validate_person_name,
    "email": validate_email,
    "phone": validate_phone,
    "tax_id": validate_tax_id_edit,
    "citizenship_id": validate_citizenship_id,
    "address": validate_address,
    "latitude": validate_latitude,
    "longitude": validate_longitude,
    "gender": validate_gender,
}


def validate_member_profile(profile: Mapping[str, Any], *, today: date) -> dict[str, str]:
    """Field->error map for a new member profile (empty when valid)."""
    errors = collect_errors(profile, PROFILE_RULES)
    dob_error = validate_date_of_birth(profile.get("date_of_birth"), today=today)
    if dob_error:
        errors["date_of_birth"] = dob_error
    return errors


def transfer_to_existing(registry: MembershipRegistry, target_id: str) -> TransferOutcome:
    """
    Promote an existing member to Owner.

    Raises:
        ValidationError: If the target is unknown or already the Owner
    """
    try:
        target = registry.get(target_id)
    except MemberNotFoundError:
        raise ValidationError("target_id", "Selected user is not a member of this organization")

    # Structurally impossible under single ownership unless the caller is stale
    if target.is_owner:
        raise ValidationError("target_id", "already owner")

    previous_owner = registry.owner
    updated = registry._with_owner(target.id)
    return TransferOutcome(
        registry=updated,
        new_owner=updated.get(target.id),
        previous_owner=updated.get(previous_owner.id),
    )


def transfer_to_new(
    registry: MembershipRegistry,
    profile: Mapping[str, Any],
    *,
    today: date,
    id_factory: Callable[[], str] = new_member_id,
) -> TransferOutcome:
    """
    Onboard a new person as Owner.

    Raises:
        ValidationError: With every failing profile field in .errors
        ConflictError: If the email is already used by a member
    """
    errors = validate_member_profile(profile, today=today)
    if errors:
        raise ValidationError(None, "New owner profile is invalid", errors)

    registry.require_unique_email(profile["email"])

    previous_owner = registry.owner
    new_owner = member_from_profile(profile, member_id=id_factory(), role=MemberRole.OWNER)
    updated = registry._with_new_owner(new_owner)
    return TransferOutcome(
        registry=updated,
        new_owner=new_owner,
        previous_owner=updated.get(previous_owner.id),
    )
