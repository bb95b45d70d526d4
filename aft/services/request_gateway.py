"""
Persistence gateway for AFT requests.

The only module that writes ``aft_requests`` or ``aft_audit_log``.  A
workflow write is one transaction:

    UPDATE aft_requests
       SET status, approval_data, transfer_data, …, updated_at, version = version + 1
     WHERE id = :id AND version = :version_read
    INSERT INTO aft_audit_log …
    COMMIT

Zero matched rows means another transition committed first: the
transaction is rolled back and ``StaleStateError`` raised, so status, both
ledgers and the audit trail are always written together or not at all.

db.session.commit() is called only in this file (service layer ownership).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from aft.core.exceptions import DuplicateRequestNumberError, NotFoundError, StaleStateError
from aft.models import db
from aft.models.aft_request import AftRequest
from aft.models.audit import write_audit

logger = logging.getLogger(__name__)

# Columns a transition may set besides status/ledgers.
_WRITABLE_COLUMNS = frozenset({"rejection_reason", "dta_id", "sme_id", "approver_id", "media_custodian_id"})


@dataclass(frozen=True)
class RequestSnapshot:
    """Immutable view of a request row as read at the start of a transition."""

    id: int
    request_number: str
    transfer_type: str
    status: str
    approval_data: str | None
    transfer_data: str | None
    requestor_id: int
    version: int


@dataclass(frozen=True)
class AuditEntry:
    actor_user_id: int
    actor_role: str
    action: str
    notes: str = ""
    changes: dict | None = None


def load_request(request_id: int) -> RequestSnapshot:
    """Read the current state of a request.

    Raises:
        NotFoundError: no request with this id.
    """
    req = db.session.get(AftRequest, request_id, populate_existing=True)
    if req is None:
        raise NotFoundError("AFT request", request_id)
    return RequestSnapshot(
        id=req.id,
        request_number=req.request_number,
        transfer_type=req.transfer_type,
        status=req.status,
        approval_data=req.approval_data,
        transfer_data=req.transfer_data,
        requestor_id=req.requestor_id,
        version=req.version,
    )


def get_request(request_id: int) -> AftRequest:
    req = db.session.get(AftRequest, request_id)
    if req is None:
        raise NotFoundError("AFT request", request_id)
    return req


def request_number_exists(request_number: str) -> bool:
    return (
        db.session.query(AftRequest.id).filter_by(request_number=request_number).first()
        is not None
    )


def insert_request(audit: AuditEntry, **columns) -> AftRequest:
    """Insert a new request together with its creation audit row.

    Raises:
        DuplicateRequestNumberError: another insert claimed the number first.
    """
    req = AftRequest(**columns)
    try:
        db.session.add(req)
        db.session.flush()
        write_audit(
            request_id=req.id,
            actor_user_id=audit.actor_user_id,
            actor_role=audit.actor_role,
            action=audit.action,
            old_status=None,
            new_status=req.status,
            notes=audit.notes,
            changes=audit.changes,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if not request_number_exists(columns.get("request_number")):
            logger.exception("Failed to insert AFT request %s", columns.get("request_number"))
            raise
        raise DuplicateRequestNumberError(columns["request_number"]) from None
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to insert AFT request %s", columns.get("request_number"))
        raise
    return req


def save_transition(
    snapshot: RequestSnapshot,
    new_status: str,
    audit: AuditEntry,
    *,
    approval_data: str | None = None,
    transfer_data: str | None = None,
    **columns,
) -> AftRequest:
    """Conditionally write a transition and its audit row.

    Only the ledgers passed in are written; ``None`` leaves a ledger column
    untouched.

    Raises:
        StaleStateError: the row's version no longer matches *snapshot*.
    """
    unknown = set(columns) - _WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Columns not writable by a transition: {sorted(unknown)}")

    values = dict(columns)
    values.update(
        status=new_status,
        updated_at=datetime.now(timezone.utc),
        version=snapshot.version + 1,
    )
    if approval_data is not None:
        values["approval_data"] = approval_data
    if transfer_data is not None:
        values["transfer_data"] = transfer_data

    stmt = (
        update(AftRequest)
        .where(AftRequest.id == snapshot.id, AftRequest.version == snapshot.version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            logger.warning(
                "Lost write race on AFT request %s (expected version %s)",
                snapshot.request_number, snapshot.version,
                extra={"aft_request_id": snapshot.id, "event_type": "stale_write"},
            )
            raise StaleStateError("AFT request", snapshot.id)
        write_audit(
            request_id=snapshot.id,
            actor_user_id=audit.actor_user_id,
            actor_role=audit.actor_role,
            action=audit.action,
            old_status=snapshot.status,
            new_status=new_status,
            notes=audit.notes,
            changes=audit.changes,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to persist transition for AFT request %s", snapshot.request_number)
        raise

    return db.session.get(AftRequest, snapshot.id, populate_existing=True)
