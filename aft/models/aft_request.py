"""
AFT Workflow Service
Request domain model.

Models:
    - AftRequest: one Assured File Transfer request and its two JSON ledgers.

The ``status`` column is the single source of truth for workflow position.
``approval_data`` and ``transfer_data`` hold the serialized approval and
transfer ledgers; they are only ever written together with ``status`` by
``aft.services.request_gateway``.  ``version`` is the compare-and-swap token
every gateway write checks and increments.
"""

import json
from datetime import datetime, timezone

from aft.models import db
from aft.workflow.constants import AFT_STATUSES, DRAFT

_STATUS_CHECK = "status IN (" + ",".join(f"'{s}'" for s in AFT_STATUSES) + ")"


def _load_json(raw):
    try:
        value = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, TypeError):
        return {}
    return value if isinstance(value, dict) else {}


class AftRequest(db.Model):
    """
    Aggregate root of the AFT workflow.
    Request number format: AFT<yymmdd>-<4 base36 chars> (generated in service layer).
    """

    __tablename__ = "aft_requests"
    __table_args__ = (
        db.CheckConstraint(_STATUS_CHECK, name="ck_aft_request_status"),
        db.Index("idx_aft_request_status", "status"),
        db.Index("idx_aft_request_requestor", "requestor_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_number = db.Column(db.String(30), unique=True, nullable=False)

    # Classification
    transfer_type = db.Column(
        db.String(20), nullable=False,
        comment="low-to-low | low-to-high | high-to-low | high-to-high",
    )
    classification = db.Column(db.String(200), nullable=False)
    transfer_purpose = db.Column(db.Text, default="")
    data_description = db.Column(db.Text, default="")

    # Workflow position
    status = db.Column(db.String(30), nullable=False, default=DRAFT)
    version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Compare-and-swap token, incremented on every workflow write",
    )

    # Ledgers
    approval_data = db.Column(db.Text, comment="JSON: approval ledger (dao/approver/cpso signatures)")
    transfer_data = db.Column(db.Text, comment="JSON: transfer ledger (DTA/SME signatures, disposition)")
    rejection_reason = db.Column(db.Text, nullable=True)

    # Actors (informational only, never gating)
    requestor_id = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.Integer, nullable=True)
    dta_id = db.Column(db.Integer, nullable=True)
    sme_id = db.Column(db.Integer, nullable=True)
    media_custodian_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    audit_entries = db.relationship(
        "AftAuditLog", backref="aft_request", lazy="dynamic",
        cascade="all, delete-orphan", order_by="AftAuditLog.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "request_number": self.request_number,
            "transfer_type": self.transfer_type,
            "classification": self.classification,
            "transfer_purpose": self.transfer_purpose,
            "data_description": self.data_description,
            "status": self.status,
            "version": self.version,
            "approval_data": _load_json(self.approval_data),
            "transfer_data": _load_json(self.transfer_data),
            "rejection_reason": self.rejection_reason,
            "requestor_id": self.requestor_id,
            "approver_id": self.approver_id,
            "dta_id": self.dta_id,
            "sme_id": self.sme_id,
            "media_custodian_id": self.media_custodian_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<AftRequest {self.id}: {self.request_number} [{self.status}]>"
