from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


def _new_id() -> str:
    return uuid.uuid4().hex


class Organization(db.Model):
    """
    Tenant root: every customer account is an Organization.

    WHY: The SQL-backed directory stores organizations here. Owner display
    fields are NOT columns; they are derived from the Owner membership.

    DESIGN:
    - Opaque string ids (uuid4 hex) so the same ids work against a remote
      directory
    - is_active mirrors the Active/Inactive status
    - deactivation_reason/deactivated_at are kept after reactivation (audit)
    - Subscription history lives in subscription_extensions (append-only)
    """
    __tablename__ = "organizations"

    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=False, default="")
    phone = db.Column(db.String(32), nullable=False, default="")
    tax_id = db.Column(db.String(14), nullable=False, default="")

    latitude = db.Column(db.Float, nullable=False, default=0.0)
    longitude = db.Column(db.Float, nullable=False, default=0.0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    email_verified = db.Column(db.Boolean, nullable=False, default=False)

    subscription_status = db.Column(db.String(16), nullable=False, default="Active")
    subscription_end_date = db.Column(db.Date, nullable=False, index=True)
    subscription_type = db.Column(db.String(16), nullable=False, default="6months")

    # Opaque working-hours passthrough
    check_in_time = db.Column(db.String(16), nullable=True)
    check_out_time = db.Column(db.String(16), nullable=True)
    half_day_check_out_time = db.Column(db.String(16), nullable=True)
    weekly_off_day = db.Column(db.String(16), nullable=True)
    timezone = db.Column(db.String(64), nullable=True)

    deactivation_reason = db.Column(db.Text, nullable=True)
    deactivated_at = db.Column(db.Date, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_active": self.is_active,
            "email_verified": self.email_verified,
            "subscription_status": self.subscription_status,
            "subscription_expiry": to_iso_date(self.subscription_end_date),
            "subscription_type": self.subscription_type,
            "working_hours": {
                "check_in": self.check_in_time,
                "check_out": self.check_out_time,
                "half_day_check_out": self.half_day_check_out_time,
                "weekly_off_day": self.weekly_off_day,
                "timezone": self.timezone,
            },
            "deactivation_reason": self.deactivation_reason,
            "deactivated_at": to_iso_date(self.deactivated_at),
            "created_date": to_iso_date(self.created_at.date()) if self.created_at else None,
            "updated_at": to_utc_z(self.updated_at),
        }


class SubscriptionExtension(db.Model):
    """
    One subscription extension.

    IMMUTABLE: Append-only. Rows are never updated or deleted, so the
    history is the audit trail of every extension ever granted.
    """
    __tablename__ = "subscription_extensions"
    __table_args__ = (
        db.Index("ix_subscription_extensions_org_date", "org_id", "extension_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.String(32), db.ForeignKey("organizations.id"), nullable=False, index=True)

    extension_date = db.Column(db.Date, nullable=False)
    duration = db.Column(db.String(16), nullable=False)
    previous_end_date = db.Column(db.Date, nullable=False)
    new_end_date = db.Column(db.Date, nullable=False)

    # Display name at the time of the extension, plus the id for lookups
    extended_by = db.Column(db.String(255), nullable=False)
    extended_by_user_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship(
        "Organization",
        backref=db.backref("subscription_extensions", lazy=True, order_by="SubscriptionExtension.id"),
    )

    def to_dict(self) -> dict:
        return {
            "extension_date": to_iso_date(self.extension_date),
            "duration": self.duration,
            "previous_end_date": to_iso_date(self.previous_end_date),
            "new_end_date": to_iso_date(self.new_end_date),
            "extended_by": self.extended_by,
        }
