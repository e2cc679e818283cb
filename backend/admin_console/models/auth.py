from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class Membership(db.Model):
    """
    A person's membership in one organization.

    MULTI-TENANT: Memberships are scoped to organizations via org_id.
    Email uniqueness is per organization and case-insensitive (email_key).

    ROLES: Owner, Admin, Manager, Sales Rep. Exactly one Owner per
    organization; the directory refuses member lists that break this.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        db.UniqueConstraint("org_id", "email_key", name="uq_memberships_org_email"),
        db.Index("ix_memberships_org_role", "org_id", "role"),
    )

    id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    org_id = db.Column(db.String(32), db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    email_key = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False)

    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_active_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Profile collected when onboarding (new owner / added member)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(14), nullable=True)
    citizenship_id = db.Column(db.String(20), nullable=True)
    address = db.Column(db.Text, nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    gender = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship(
        "Organization",
        backref=db.backref("memberships", lazy=True, order_by="Membership.created_at"),
    )

    def __repr__(self) -> str:
        return f"<Membership id={self.id} org_id={self.org_id} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "email_verified": self.email_verified,
            "is_active": self.is_active,
            "last_active": to_utc_z(self.last_active_at) or "Never",
            "phone": self.phone,
            "tax_id": self.tax_id,
            "citizenship_id": self.citizenship_id,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "date_of_birth": to_iso_date(self.date_of_birth),
            "gender": self.gender,
        }


class SessionToken(db.Model):
    """
    Login session of a member.

    WHY here: deactivating an organization must log every member out, so the
    directory revokes these rows in the same transaction as the status flip.
    Tokens themselves are issued upstream; only the hash is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_org_revoked", "org_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    membership_id = db.Column(db.String(32), db.ForeignKey("memberships.id"), nullable=False, index=True)
    org_id = db.Column(db.String(32), db.ForeignKey("organizations.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    membership = db.relationship("Membership", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "membership_id": self.membership_id,
            "org_id": self.org_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at),
            "revoked_reason": self.revoked_reason,
        }
