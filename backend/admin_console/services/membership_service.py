# Overview: In-memory membership registry; enforces single ownership and access state.

"""
Membership Registry

WHY: An organization's member list carries the one structural invariant of
the console. Keeping it in a small immutable type means every mutation is
checked in one place and a half-applied change cannot be observed.

INVARIANTS:
1. Exactly one member has role Owner (checked on every construction).
2. The Owner cannot be revoked directly; ownership must be transferred first.
3. Member emails are unique within the organization, case-insensitively.
4. Operations never mutate the registry they are called on; they return a
   new registry (or the same one when nothing changes).

Owner promotion/demotion is private. Only the ownership transfer protocol
(services/ownership_service.py) calls the _with_owner/_with_new_owner
helpers, which swap roles in a single step.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from ..records import MemberRecord, MemberRole
from ..validation import ConflictError, coerce_coordinate, format_phone


class InvariantViolation(ValueError):
    """
    Raised when an operation would break a structural rule.

    Seeing one usually means the caller acted on stale state (e.g. a UI
    offering "revoke" on the Owner row). Nothing is changed.
    """
    pass


class MemberNotFoundError(LookupError):
    """Raised when a member id does not belong to the organization."""
    pass


def new_member_id() -> str:
    return uuid.uuid4().hex


def email_key(email: str) -> str:
    return (email or "").strip().lower()


def member_from_profile(
    profile: Mapping[str, Any],
    *,
    member_id: str,
    role: MemberRole,
) -> MemberRecord:
    """Build a fresh member from an already validated profile."""
    dob = profile.get("date_of_birth")
    if isinstance(dob, str) and dob:
        dob = date.fromisoformat(dob)
    return MemberRecord(
        id=member_id,
        name=str(profile["name"]).strip(),
        email=str(profile["email"]).strip(),
        role=role,
        email_verified=False,
        is_active=True,
        last_active="Never",
        phone=format_phone(profile.get("phone")) or None,
        tax_id=(str(profile.get("tax_id") or "").strip() or None),
        citizenship_id=(str(profile.get("citizenship_id") or "").strip() or None),
        address=(str(profile.get("address") or "").strip() or None),
        latitude=coerce_coordinate(profile.get("latitude")),
        longitude=coerce_coordinate(profile.get("longitude")),
        date_of_birth=dob or None,
        gender=profile.get("gender") or None,
    )


class MembershipRegistry:
    """Immutable member list of one organization."""

    def __init__(self, members: Iterable[MemberRecord]):
        members = tuple(members)

        owners = [m for m in members if m.is_owner]
        if len(owners) != 1:
            raise InvariantViolation(
                f"Organization must have exactly one Owner, found {len(owners)}"
            )

        ids: set[str] = set()
        emails: set[str] = set()
        for member in members:
            if member.id in ids:
                raise InvariantViolation(f"Duplicate member id {member.id}")
            ids.add(member.id)

            key = email_key(member.email)
            if key in emails:
                raise ConflictError("email", f"Email {member.email} is already used by another member")
            emails.add(key)

        self._members = members

    def __iter__(self) -> Iterator[MemberRecord]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MembershipRegistry):
            return NotImplemented
        return self._members == other._members

    def __repr__(self) -> str:
        return f"<MembershipRegistry members={len(self._members)} owner={self.owner.name!r}>"

    @property
    def members(self) -> tuple[MemberRecord, ...]:
        return self._members

    @property
    def owner(self) -> MemberRecord:
        for member in self._members:
            if member.is_owner:
                return member
        # Unreachable: construction guarantees one Owner
        raise InvariantViolation("Organization has no Owner")

    def get(self, member_id: str) -> MemberRecord:
        for member in self._members:
            if member.id == member_id:
                return member
        raise MemberNotFoundError(f"Member {member_id} not found")

    def find_by_email(self, email: str) -> Optional[MemberRecord]:
        key = email_key(email)
        for member in self._members:
            if email_key(member.email) == key:
                return member
        return None

    def require_unique_email(self, email: str) -> None:
        """
        Raises:
            ConflictError: If a member already uses this email (any case)
        """
        existing = self.find_by_email(email)
        if existing is not None:
            raise ConflictError(
                "email",
                f"Email {email} is already used by {existing.name}",
            )

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def revoke(self, member_id: str) -> "MembershipRegistry":
        """
        Mark a member inactive.

        Raises:
            MemberNotFoundError: If the member is unknown
            InvariantViolation: If the member is the Owner
        """
        member = self.get(member_id)
        if member.is_owner:
            raise InvariantViolation(
                f"Cannot revoke access for {member.name}: the Owner must transfer ownership first"
            )
        if not member.is_active:
            return self
        return self._replace_member(replace(member, is_active=False))

    def grant(self, member_id: str) -> "MembershipRegistry":
        """Mark a member active. Email verification state does not matter."""
        member = self.get(member_id)
        if member.is_active:
            return self
        return self._replace_member(replace(member, is_active=True))

    def add(
        self,
        profile: Mapping[str, Any],
        role: MemberRole,
        *,
        id_factory: Callable[[], str] = new_member_id,
    ) -> "MembershipRegistry":
        """
        Add a new non-Owner member.

        Raises:
            InvariantViolation: If role is Owner (owners come from transfers only)
            ConflictError: If the email is already taken
        """
        role = MemberRole.parse(role)
        if role is MemberRole.OWNER:
            raise InvariantViolation("Owners can only be created through an ownership transfer")
        self.require_unique_email(profile.get("email", ""))
        member = member_from_profile(profile, member_id=id_factory(), role=role)
        return MembershipRegistry(self._members + (member,))

    # ------------------------------------------------------------------
    # Ownership helpers (ownership_service only)
    # ------------------------------------------------------------------

    def _promote(self, members: tuple[MemberRecord, ...], member_id: str) -> tuple[MemberRecord, ...]:
        return tuple(
            replace(m, role=MemberRole.OWNER) if m.id == member_id else m
            for m in members
        )

    def _demote(self, members: tuple[MemberRecord, ...], owner_id: str) -> tuple[MemberRecord, ...]:
        return tuple(
            replace(m, role=MemberRole.ADMIN) if m.id == owner_id else m
            for m in members
        )

    def _with_owner(self, member_id: str) -> "MembershipRegistry":
        """Swap roles: member_id becomes Owner, the current Owner becomes Admin."""
        target = self.get(member_id)
        current_owner = self.owner
        members = self._demote(self._members, current_owner.id)
        members = self._promote(members, target.id)
        return MembershipRegistry(members)

    def _with_new_owner(self, member: MemberRecord) -> "MembershipRegistry":
        """Add an Owner-role member and demote the current Owner in one step."""
        if not member.is_owner:
            raise InvariantViolation("New owner record must carry the Owner role")
        self.require_unique_email(member.email)
        members = self._demote(self._members, self.owner.id)
        return MembershipRegistry((member,) + members)

    def _replace_member(self, updated: MemberRecord) -> "MembershipRegistry":
        return MembershipRegistry(
            updated if m.id == updated.id else m for m in self._members
        )
