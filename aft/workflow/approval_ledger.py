"""
Approval ledger — pre-transfer DAO / Approver / CPSO signatures.

Pure functions over the ledger value; the caller owns all I/O.

Persisted shape:

    {requiresDAOApproval: bool, transferType: str,
     signatures: {dao?, approver?, cpso?: SignatureRecord},
     completedAt: str | null}

``requiresDAOApproval`` is fixed when the ledger is first created and is
never recomputed from the request's transfer type afterwards.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from aft.core.exceptions import ConflictError
from aft.workflow.constants import (
    APPROVAL_ORDER,
    DAO,
    PENDING_APPROVER,
    PENDING_CPSO,
    PENDING_DAO,
    PENDING_DTA,
    requires_dao_approval,
)
from aft.workflow.signature import SignatureRecord

logger = logging.getLogger(__name__)

_PENDING_STATUS_FOR_ROLE = {
    "dao": PENDING_DAO,
    "approver": PENDING_APPROVER,
    "cpso": PENDING_CPSO,
}

_KNOWN_KEYS = frozenset({"requiresDAOApproval", "transferType", "signatures", "completedAt"})


@dataclass(frozen=True)
class ApprovalLedger:
    requires_dao_approval: bool
    transfer_type: str
    signatures: dict[str, SignatureRecord] = field(default_factory=dict)
    completed_at: str | None = None
    extra: dict = field(default_factory=dict, compare=False)

    @classmethod
    def new(cls, transfer_type: str) -> ApprovalLedger:
        return cls(
            requires_dao_approval=requires_dao_approval(transfer_type),
            transfer_type=transfer_type,
        )

    @property
    def required_roles(self) -> tuple[str, ...]:
        if self.requires_dao_approval:
            return APPROVAL_ORDER
        return tuple(r for r in APPROVAL_ORDER if r != DAO)

    def to_dict(self) -> dict:
        d = dict(self.extra)
        d.update({
            "requiresDAOApproval": self.requires_dao_approval,
            "transferType": self.transfer_type,
            "signatures": {role: sig.to_dict() for role, sig in self.signatures.items()},
            "completedAt": self.completed_at,
        })
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def parse_approval_ledger(raw: str | None, transfer_type: str) -> ApprovalLedger:
    """Deserialize a persisted approval ledger.

    Missing, blank, malformed or non-object JSON yields a fresh ledger for
    *transfer_type*; the transition carries on rather than failing on data
    written by an older workflow revision.
    """
    if raw is None or not str(raw).strip():
        return ApprovalLedger.new(transfer_type)
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning(
            "Malformed approval ledger, starting fresh: %s", exc,
            extra={"event_type": "ledger_anomaly"},
        )
        return ApprovalLedger.new(transfer_type)
    if not isinstance(data, dict):
        logger.warning(
            "Approval ledger is a %s, not an object; starting fresh", type(data).__name__,
            extra={"event_type": "ledger_anomaly"},
        )
        return ApprovalLedger.new(transfer_type)

    stored_type = data.get("transferType") or transfer_type
    requires_dao = data.get("requiresDAOApproval")
    if not isinstance(requires_dao, bool):
        requires_dao = requires_dao_approval(stored_type)

    signatures = {}
    raw_signatures = data.get("signatures")
    if isinstance(raw_signatures, dict):
        for role, entry in raw_signatures.items():
            record = SignatureRecord.from_dict(entry)
            if record is not None:
                signatures[role] = record

    completed_at = data.get("completedAt")
    return ApprovalLedger(
        requires_dao_approval=requires_dao,
        transfer_type=stored_type,
        signatures=signatures,
        completed_at=completed_at if isinstance(completed_at, str) and completed_at else None,
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


def first_missing_role(ledger: ApprovalLedger) -> str | None:
    """First required role, in dao → approver → cpso order, without a signature."""
    for role in ledger.required_roles:
        if role not in ledger.signatures:
            return role
    return None


def next_approval_status(ledger: ApprovalLedger) -> str:
    """Derive the status a ledger implies.

    Idempotent: the same ledger always yields the same status, so a retried
    transition lands where the first attempt would have.
    """
    missing = first_missing_role(ledger)
    if missing is None:
        return PENDING_DTA
    return _PENDING_STATUS_FOR_ROLE[missing]


def record_approval(
    ledger: ApprovalLedger,
    role_key: str,
    signature: SignatureRecord,
    now: datetime | None = None,
) -> tuple[ApprovalLedger, str]:
    """Add *signature* under *role_key* and return the new ledger and status.

    Raises:
        ConflictError: the ledger already holds a signature for *role_key*.
    """
    if role_key in ledger.signatures:
        raise ConflictError("Approval ledger", reason=f"already holds a {role_key} signature")

    updated = replace(ledger, signatures={**ledger.signatures, role_key: signature})
    status = next_approval_status(updated)
    if status == PENDING_DTA and updated.completed_at is None:
        now = now or datetime.now(timezone.utc)
        updated = replace(updated, completed_at=now.isoformat())
    return updated, status
