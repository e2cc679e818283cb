from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Audit log of console lifecycle actions.

    WHY: Deactivations, ownership transfers and access changes must be
    traceable to the operator who made them, long after the fact.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_security_events_actor_type", "actor_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.String(32), db.ForeignKey("organizations.id"), nullable=True, index=True)

    # Operators are authenticated upstream; we only keep what they told us
    actor_id = db.Column(db.String(64), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # ORG_DEACTIVATED, OWNERSHIP_TRANSFERRED, ...
    action = db.Column(db.String(64), nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    organization = db.relationship("Organization", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "event_type": self.event_type,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
