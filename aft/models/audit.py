"""
AFT Workflow Service
Audit domain model.

Models:
    - AftAuditLog: immutable, append-only trail of request lifecycle events.
"""

import json
from datetime import UTC, datetime

from aft.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "created",
    "submitted",
    "approved",
    "rejected",
    "cancelled",
    "transfer_initiated",
    "transfer_completed",
    "transfer_signed",
    "sme_signed",
    "media_disposition",
}


class AftAuditLog(db.Model):
    """
    One row per status mutation of an AFT request.

    ``changes_json`` carries the ledger keys the transition wrote so the trail
    can be read without diffing ledger snapshots.
    """

    __tablename__ = "aft_audit_log"
    __table_args__ = (
        db.Index("idx_aft_audit_request", "request_id"),
        db.Index("idx_aft_audit_actor", "actor_user_id"),
        db.Index("idx_aft_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("aft_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_user_id = db.Column(db.Integer, nullable=False)
    actor_role = db.Column(db.String(30), nullable=False)

    action = db.Column(db.String(40), nullable=False, comment="submitted | approved | transfer_signed | …")
    old_status = db.Column(db.String(30), nullable=True)
    new_status = db.Column(db.String(30), nullable=True)
    notes = db.Column(db.Text, default="")
    changes_json = db.Column(db.Text, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def changes(self) -> dict:
        """Deserialise *changes_json* to a Python dict."""
        try:
            return json.loads(self.changes_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "notes": self.notes,
            "changes": self.changes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AftAuditLog {self.id}: {self.action} {self.old_status}->{self.new_status}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    request_id: int,
    actor_user_id: int,
    actor_role: str,
    action: str,
    old_status: str | None,
    new_status: str | None,
    notes: str = "",
    changes: dict | None = None,
) -> AftAuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AftAuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AftAuditLog(
        request_id=request_id,
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        action=action,
        old_status=old_status,
        new_status=new_status,
        notes=notes or "",
        changes_json=json.dumps(changes or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
