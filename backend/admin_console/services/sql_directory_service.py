# Overview: Flask-SQLAlchemy implementation of the Directory Service, with audit and session revocation.

"""
SQL Directory Service

WHY: Lets the console run against its own database (and lets tests run the
full lifecycle against in-memory SQLite) without a remote directory.

RULES:
1. Every method commits or rolls back as a unit. A failed call leaves no
   partial rows behind.
2. Results always go through normalize_organization(), same as the remote
   client, so the core sees identical records from both.
3. Deactivation revokes every live session of the organization in the same
   transaction: all users are logged out.
4. Revoking a member's access revokes that member's sessions.
5. Lifecycle actions are appended to security_events.

MUST run inside a Flask app context.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Membership, Organization, SecurityEvent, SessionToken, SubscriptionExtension
from ..records import ActingUser, MemberRole, OrganizationRecord, SubscriptionStatus
from ..time_utils import parse_iso_date, utcnow
from .directory_service import (
    DirectoryService,
    ExtensionResult,
    OrganizationNotFoundError,
    PersistenceError,
    normalize_extension,
    normalize_organization,
)
from .membership_service import email_key
from .status_service import extension_end_date


logger = logging.getLogger(__name__)


# Canonical field -> Organization column
ORGANIZATION_COLUMNS = {
    "name": "name",
    "address": "address",
    "phone": "phone",
    "tax_id": "tax_id",
    "latitude": "latitude",
    "longitude": "longitude",
    "subscription_type": "subscription_type",
    "check_in": "check_in_time",
    "check_out": "check_out_time",
    "half_day_check_out": "half_day_check_out_time",
    "weekly_off_day": "weekly_off_day",
    "timezone": "timezone",
}

MEMBER_COLUMNS = (
    "name",
    "email",
    "role",
    "email_verified",
    "is_active",
    "phone",
    "tax_id",
    "citizenship_id",
    "address",
    "latitude",
    "longitude",
    "gender",
)


def log_security_event(
    org_id: str | None,
    event_type: str,
    *,
    actor: Optional[ActingUser] = None,
    action: str | None = None,
    reason: str | None = None,
    success: bool = True,
) -> SecurityEvent:
    """
    Append a lifecycle action to the audit trail.

    Does NOT commit; the caller's transaction owns the row.

    event_type examples:
    - ORG_DEACTIVATED / ORG_REACTIVATED
    - SUBSCRIPTION_EXTENDED
    - OWNERSHIP_TRANSFERRED
    - ACCESS_GRANTED / ACCESS_REVOKED
    - MEMBER_ADDED
    - ORG_UPDATED
    """
    event = SecurityEvent(
        org_id=org_id,
        actor_id=actor.id if actor else None,
        actor_name=actor.name if actor else None,
        event_type=event_type,
        action=action,
        success=success,
        reason=reason,
    )
    db.session.add(event)
    return event


def _revoke_sessions(reason: str, **filters: Any) -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(is_revoked=False, **filters).all()

    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    return len(sessions)


def revoke_organization_sessions(org_id: str, reason: str) -> int:
    """
    Revoke all live sessions of an organization's members.

    Returns count of sessions revoked. Does NOT commit.
    """
    return _revoke_sessions(reason, org_id=org_id)


def revoke_member_sessions(membership_id: str, reason: str) -> int:
    """Revoke all live sessions of one member. Does NOT commit."""
    return _revoke_sessions(reason, membership_id=membership_id)


class SqlDirectoryService(DirectoryService):
    def __init__(self, *, clock: Callable[[], Any] = utcnow):
        self._clock = clock

    async def fetch_organization(self, org_id: str) -> OrganizationRecord:
        return normalize_organization(self._payload(self._get(org_id)))

    async def update_organization(
        self,
        org_id: str,
        fields: Mapping[str, Any],
        *,
        actor: Optional[ActingUser] = None,
    ) -> OrganizationRecord:
        org = self._get(org_id)
        try:
            changed = []
            for key, value in fields.items():
                if key == "members":
                    continue
                column = ORGANIZATION_COLUMNS.get(key)
                if column is None:
                    raise PersistenceError(f"Unknown organization field: {key}")
                if getattr(org, column) != value:
                    setattr(org, column, value)
                    changed.append(key)
            if changed:
                log_security_event(org.id, "ORG_UPDATED", actor=actor, action="UPDATE", reason=", ".join(changed))

            if fields.get("members") is not None:
                self._sync_members(org, fields["members"], actor)

            db.session.commit()
        except PersistenceError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to update organization %s: %s", org_id, exc)
            raise PersistenceError("Failed to save organization changes")

        return await self.fetch_organization(org_id)

    async def set_organization_active(
        self,
        org_id: str,
        active: bool,
        *,
        reason: Optional[str] = None,
        actor: Optional[ActingUser] = None,
    ) -> None:
        org = self._get(org_id)
        try:
            org.is_active = active
            if active:
                # deactivation_reason/deactivated_at stay for audit
                log_security_event(org.id, "ORG_REACTIVATED", actor=actor, action="ACTIVATE")
            else:
                org.deactivation_reason = reason
                org.deactivated_at = self._today()
                revoked = revoke_organization_sessions(org.id, "Organization deactivated")
                log_security_event(
                    org.id,
                    "ORG_DEACTIVATED",
                    actor=actor,
                    action="DEACTIVATE",
                    reason=f"{reason} ({revoked} sessions revoked)",
                )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to change status of organization %s: %s", org_id, exc)
            raise PersistenceError("Failed to change organization status")

    async def extend_subscription(
        self,
        org_id: str,
        duration: str,
        *,
        actor: Optional[ActingUser] = None,
    ) -> ExtensionResult:
        org = self._get(org_id)
        today = self._today()
        try:
            new_end = extension_end_date(org.subscription_end_date, today, duration)
        except ValueError as exc:
            raise PersistenceError(str(exc), status_code=400)

        try:
            extension = SubscriptionExtension(
                org_id=org.id,
                extension_date=today,
                duration=duration,
                previous_end_date=org.subscription_end_date,
                new_end_date=new_end,
                extended_by=actor.name if actor else "System",
                extended_by_user_id=actor.id if actor else None,
            )
            db.session.add(extension)
            org.subscription_end_date = new_end
            org.subscription_status = SubscriptionStatus.ACTIVE.value
            log_security_event(
                org.id,
                "SUBSCRIPTION_EXTENDED",
                actor=actor,
                action="EXTEND_SUBSCRIPTION",
                reason=f"{duration}: {extension.previous_end_date.isoformat()} -> {new_end.isoformat()}",
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to extend subscription of organization %s: %s", org_id, exc)
            raise PersistenceError("Failed to extend subscription")

        organization = await self.fetch_organization(org_id)
        return ExtensionResult(organization=organization, extension=normalize_extension(extension.to_dict()))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _today(self):
        now = self._clock()
        return now.date() if hasattr(now, "date") else now

    def _get(self, org_id: str) -> Organization:
        org = db.session.get(Organization, org_id)
        if org is None:
            raise OrganizationNotFoundError(f"Organization {org_id} not found", status_code=404)
        return org

    def _payload(self, org: Organization) -> dict:
        payload = org.to_dict()
        # The stored status only changes on extend; lapse is derived from the end date
        if org.subscription_end_date is not None and org.subscription_end_date < self._today():
            payload["subscription_status"] = SubscriptionStatus.EXPIRED.value
        payload["members"] = [m.to_dict() for m in org.memberships]
        payload["subscription_history"] = [e.to_dict() for e in org.subscription_extensions]
        return payload

    def _sync_members(self, org: Organization, members: list[Mapping[str, Any]], actor: Optional[ActingUser]) -> None:
        """Replace the membership list wholesale, auditing each kind of change."""
        existing = {m.id: m for m in org.memberships}
        previous_owner = next(
            ((m.id, m.email) for m in existing.values() if m.role == MemberRole.OWNER.value),
            (None, None),
        )
        new_owner = None
        incoming_ids = set()

        for data in members:
            member_id = data.get("id")
            if not member_id:
                raise PersistenceError("Member is missing an id")
            incoming_ids.add(member_id)
            if data.get("role") == MemberRole.OWNER.value:
                new_owner = data

            row = existing.get(member_id)
            if row is None:
                row = Membership(id=member_id, org_id=org.id)
                db.session.add(row)
                log_security_event(org.id, "MEMBER_ADDED", actor=actor, action="ADD_MEMBER", reason=data.get("email"))
            else:
                if row.is_active != data.get("is_active", row.is_active):
                    event = "ACCESS_GRANTED" if data.get("is_active") else "ACCESS_REVOKED"
                    log_security_event(org.id, event, actor=actor, action=event, reason=row.email)
                    if not data.get("is_active"):
                        revoke_member_sessions(row.id, "Access revoked")

            for column in MEMBER_COLUMNS:
                if column in data:
                    setattr(row, column, data[column])
            row.email_key = email_key(row.email)
            if "date_of_birth" in data:
                row.date_of_birth = parse_iso_date(data["date_of_birth"])

        for member_id, row in existing.items():
            if member_id not in incoming_ids:
                db.session.delete(row)

        # Promoting an existing member and adding a new owner both land here
        if new_owner is not None and new_owner["id"] != previous_owner[0]:
            log_security_event(
                org.id,
                "OWNERSHIP_TRANSFERRED",
                actor=actor,
                action="TRANSFER_OWNERSHIP",
                reason=f"New owner: {new_owner.get('email')} (was {previous_owner[1]})",
            )

        # Unique (org_id, email_key) is checked per row; flush before commit
        # so a swap of emails between members surfaces here, not later.
        db.session.flush()
