"""
AFT Request Lifecycle Service

The orchestrating state machine.  Every operation runs the same sequence:

    1. identify the actor (UnauthorizedError without one)
    2. load the request snapshot through the gateway (NotFoundError)
    3. check the eligibility table for (operation, status, role) (ForbiddenError)
    4. validate the payload (ValidationError, per field)
    5. apply the pure ledger update and derive the next status
    6. write status + ledger + one audit row as one compare-and-swap
       transaction (StaleStateError when another write got there first)

Nothing is written before step 6, so every error leaves the request as it was.

Operations:
    create_request, submit, approve, reject, cancel,
    initiate_transfer, transfer_complete, transfer_sign, sme_sign,
    media_disposition, available_actions

Usage:
    from aft.services.lifecycle_service import approve

    result = approve(request_id, actor, {"signature": "...", "date": "2026-01-05"})
    result.new_status   # "pending_cpso"
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable

from aft.core.exceptions import (
    ConflictError,
    DuplicateRequestNumberError,
    ForbiddenError,
    StaleStateError,
    UnauthorizedError,
    ValidationError,
)
from aft.models.aft_request import AftRequest
from aft.services import request_gateway as gateway
from aft.services.request_gateway import AuditEntry, RequestSnapshot
from aft.workflow import transitions as tx
from aft.workflow.approval_ledger import (
    ApprovalLedger,
    first_missing_role,
    next_approval_status,
    parse_approval_ledger,
    record_approval,
)
from aft.workflow.constants import (
    ADMIN,
    CANCELLED,
    DRAFT,
    DTA,
    PENDING_DTA,
    REJECTED,
    REQUESTOR,
    TRANSFER_TYPES,
)
from aft.workflow.disposition import describe, parse_disposition
from aft.workflow.signature import (
    Actor,
    SignatureRecord,
    parse_technical_validation,
    parse_transfer_completion,
)
from aft.workflow.transfer_ledger import (
    ORPHANED_SECONDARY_KEY,
    TransferCompletionReport,
    TransferInitiation,
    parse_transfer_ledger,
    record_completion_report,
    record_disposition,
    record_initiation,
    record_sme_signature,
    sign_completion,
    sign_primary,
    sign_secondary,
)

logger = logging.getLogger(__name__)

CREATE_ROLES = frozenset({REQUESTOR, DTA, ADMIN})

_REQUEST_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
_REQUEST_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class TransitionResult:
    request: AftRequest
    action: str
    previous_status: str | None
    new_status: str
    ledger: dict

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "previous_status": self.previous_status,
            "status": self.new_status,
            "ledger": self.ledger,
            "request": self.request.to_dict(),
        }


# ── Private helpers ──────────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_actor(actor: Actor | None) -> Actor:
    if actor is None:
        raise UnauthorizedError()
    return actor


def _require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _context(snapshot: RequestSnapshot, actor: Actor) -> tx.EligibilityContext:
    return tx.EligibilityContext(
        transfer_type=snapshot.transfer_type,
        is_owner=snapshot.requestor_id == actor.id,
    )


def _begin(operation: str, request_id: int, actor: Actor | None, payload: Any):
    """Steps 1–3: actor, snapshot, eligibility."""
    actor = _require_actor(actor)
    snapshot = gateway.load_request(request_id)
    tx.check_eligibility(operation, snapshot.status, actor.effective_role, _context(snapshot, actor))
    return actor, _require_payload(payload), snapshot


def _text(payload: dict, key: str, message: str, errors: dict) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        errors[key] = message
        return ""
    return value.strip()


def _optional_text(payload: dict, key: str, errors: dict) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return None
    return value.strip()


def _optional_int(payload: dict, key: str, errors: dict) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors[key] = "must be an integer"
        return None
    return value


def _raise_if(errors: dict) -> None:
    if errors:
        raise ValidationError("Validation failed", details=errors)


def _log_transition(result: TransitionResult, actor: Actor) -> None:
    logger.info(
        "AFT request %s: %s %s -> %s by %s",
        result.request.request_number, result.action,
        result.previous_status, result.new_status, actor.effective_role,
        extra={
            "aft_request_id": result.request.id,
            "actor_role": actor.effective_role,
            "event_type": "transition",
        },
    )


def _commit(
    snapshot: RequestSnapshot,
    actor: Actor,
    action: str,
    new_status: str,
    ledger: dict,
    *,
    notes: str = "",
    changes: dict | None = None,
    approval_data: str | None = None,
    transfer_data: str | None = None,
    **columns,
) -> TransitionResult:
    req = gateway.save_transition(
        snapshot,
        new_status,
        AuditEntry(
            actor_user_id=actor.id,
            actor_role=actor.effective_role,
            action=action,
            notes=notes,
            changes=changes,
        ),
        approval_data=approval_data,
        transfer_data=transfer_data,
        **columns,
    )
    result = TransitionResult(
        request=req,
        action=action,
        previous_status=snapshot.status,
        new_status=new_status,
        ledger=ledger,
    )
    _log_transition(result, actor)
    return result


def generate_request_number(now: datetime | None = None) -> str:
    """``AFT<yymmdd>-<4 base36 chars>``, e.g. ``AFT260105-7QX2``."""
    now = now or _now()
    suffix = "".join(secrets.choice(_REQUEST_NUMBER_ALPHABET) for _ in range(4))
    return f"AFT{now:%y%m%d}-{suffix}"


# ── Creation & submission ────────────────────────────────────────────────────


def create_request(actor: Actor | None, payload: Any) -> TransitionResult:
    """Create a draft request.

    The approval ledger is created here, so ``requiresDAOApproval`` is fixed
    from the transfer type at creation and never recomputed.

    Body: {transferType, classification, transferPurpose, dataDescription,
           dtaId?, smeId?, approverId?, mediaCustodianId?}
    """
    actor = _require_actor(actor)
    payload = _require_payload(payload)
    role = actor.effective_role
    if role not in CREATE_ROLES:
        raise ForbiddenError("create", role=role, reason="Insufficient permissions to create requests")

    errors: dict[str, str] = {}
    transfer_type = payload.get("transferType")
    if transfer_type not in TRANSFER_TYPES:
        errors["transferType"] = f"must be one of {', '.join(sorted(TRANSFER_TYPES))}"
    classification = _text(payload, "classification", "Classification is required", errors)
    purpose = _text(payload, "transferPurpose", "Transfer purpose is required", errors)
    description = _text(payload, "dataDescription", "Data description is required", errors)
    assignments = {
        column: _optional_int(payload, key, errors)
        for key, column in (
            ("dtaId", "dta_id"),
            ("smeId", "sme_id"),
            ("approverId", "approver_id"),
            ("mediaCustodianId", "media_custodian_id"),
        )
    }
    _raise_if(errors)

    ledger = ApprovalLedger.new(transfer_type)
    for _ in range(_REQUEST_NUMBER_ATTEMPTS):
        request_number = generate_request_number()
        if gateway.request_number_exists(request_number):
            continue
        try:
            req = gateway.insert_request(
                AuditEntry(
                    actor_user_id=actor.id,
                    actor_role=role,
                    action="created",
                    notes=f"Request {request_number} created",
                ),
                request_number=request_number,
                transfer_type=transfer_type,
                classification=classification,
                transfer_purpose=purpose,
                data_description=description,
                status=DRAFT,
                approval_data=ledger.to_json(),
                requestor_id=actor.id,
                **assignments,
            )
        except DuplicateRequestNumberError:
            logger.info("Request number %s taken concurrently; drawing another", request_number)
            continue
        break
    else:
        raise ConflictError("AFT request", reason="could not allocate a unique request number")

    result = TransitionResult(
        request=req, action="created", previous_status=None, new_status=DRAFT, ledger=ledger.to_dict(),
    )
    _log_transition(result, actor)
    return result


def submit(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Move a draft into its first approval stage.

    The target is the approval derivation over the (empty) ledger:
    ``pending_dao`` for high-to-low, ``pending_approver`` otherwise.

    Body: {signature, acknowledgeTerms: true}
    """
    actor, payload, snapshot = _begin(tx.SUBMIT, request_id, actor, payload)

    errors: dict[str, str] = {}
    signature = _text(payload, "signature", "Digital signature is required", errors)
    if payload.get("acknowledgeTerms") is not True:
        errors["acknowledgeTerms"] = "You must acknowledge the terms and conditions"
    _raise_if(errors)

    ledger = parse_approval_ledger(snapshot.approval_data, snapshot.transfer_type)
    next_status = next_approval_status(ledger)
    return _commit(
        snapshot, actor, "submitted", next_status, ledger.to_dict(),
        notes=f"Request submitted with digital signature: {signature}",
        approval_data=ledger.to_json(),
    )


# ── Approval phase ───────────────────────────────────────────────────────────


def approve(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Record an approval signature and advance to the next missing one.

    An admin signature fills the stage the ledger is waiting on and records
    which role it stood in for.

    Body: {signature, date}
    """
    actor, payload, snapshot = _begin(tx.APPROVE, request_id, actor, payload)

    errors: dict[str, str] = {}
    signature = _text(payload, "signature", "Digital signature is required", errors)
    date = _text(payload, "date", "Date is required", errors)
    _raise_if(errors)

    now = _now()
    role = actor.effective_role
    ledger = parse_approval_ledger(snapshot.approval_data, snapshot.transfer_type)
    if role == ADMIN:
        role_key = first_missing_role(ledger)
        if role_key is None:
            raise ConflictError(
                "AFT request", snapshot.id, reason="already holds every required approval signature",
            )
    else:
        role_key = role

    record = SignatureRecord.sign(
        actor, signature, date=date, now=now,
        on_behalf_of=role_key if role == ADMIN else None,
    )
    ledger, next_status = record_approval(ledger, role_key, record, now)
    return _commit(
        snapshot, actor, "approved", next_status, ledger.to_dict(),
        notes=f"{role_key.upper()} signature recorded",
        changes={"signatures": role_key},
        approval_data=ledger.to_json(),
    )


def reject(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Reject a request in an approval stage.  Body: {reason}"""
    actor, payload, snapshot = _begin(tx.REJECT, request_id, actor, payload)

    errors: dict[str, str] = {}
    reason = _text(payload, "reason", "Rejection reason is required", errors)
    _raise_if(errors)

    logger.info(
        "AFT request %s rejected by %s", snapshot.request_number, actor.effective_role,
        extra={"aft_request_id": snapshot.id, "event_type": "request_rejected"},
    )
    return _commit(
        snapshot, actor, "rejected", REJECTED, {},
        notes=f"Request rejected by {actor.display_name} ({actor.effective_role}): {reason}",
        rejection_reason=reason,
    )


def cancel(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Withdraw a request before transfer starts.  Body: {reason?}"""
    actor, payload, snapshot = _begin(tx.CANCEL, request_id, actor, payload)

    errors: dict[str, str] = {}
    reason = _optional_text(payload, "reason", errors)
    _raise_if(errors)

    notes = f"Request cancelled by {actor.display_name} ({actor.effective_role})"
    if reason:
        notes += f": {reason}"
    return _commit(snapshot, actor, "cancelled", CANCELLED, {}, notes=notes)


# ── Section IV path ──────────────────────────────────────────────────────────


def initiate_transfer(request_id: int, actor: Actor | None, payload: Any = None) -> TransitionResult:
    """Start a Section IV transfer: pending_dta → active_transfer."""
    actor, payload, snapshot = _begin(tx.INITIATE_TRANSFER, request_id, actor, payload)

    ledger = parse_transfer_ledger(snapshot.transfer_data)
    ledger, next_status = record_initiation(ledger, TransferInitiation.by(actor, _now()))
    return _commit(
        snapshot, actor, "transfer_initiated", next_status, ledger.to_dict(),
        notes="Transfer initiated",
        changes={"transferData": "transferInitiation"},
        transfer_data=ledger.to_json(),
    )


def transfer_complete(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Record the DTA's Section IV completion: active_transfer → pending_sme_signature.

    Body: {filesTransferred >= 1, dtaName, dtaSignature, transferDate,
           tpiMaintained: true, completedDate?}
    """
    actor, payload, snapshot = _begin(tx.TRANSFER_COMPLETE, request_id, actor, payload)

    report = TransferCompletionReport.from_payload(payload, actor, _now())
    ledger = parse_transfer_ledger(snapshot.transfer_data)
    ledger, next_status = record_completion_report(ledger, report)
    return _commit(
        snapshot, actor, "transfer_completed", next_status, ledger.to_dict(),
        notes=f"{report.files_transferred} file(s) transferred, TPI maintained",
        changes={"transferData": "transferCompletion"},
        transfer_data=ledger.to_json(),
    )


def sme_sign(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """SME sign-off after Section IV completion: pending_sme_signature → pending_media_custodian.

    Body: {signature, technicalValidation?, comments?, date?}
    """
    actor, payload, snapshot = _begin(tx.SME_SIGN, request_id, actor, payload)

    errors: dict[str, str] = {}
    signature = _text(payload, "signature", "Digital signature is required", errors)
    comments = _optional_text(payload, "comments", errors)
    date = _optional_text(payload, "date", errors)
    _raise_if(errors)
    validation = parse_technical_validation(payload.get("technicalValidation"))

    record = SignatureRecord.sign(actor, signature, date=date, now=_now(), technical_validation=validation)
    record = replace(record, extra={"comments": comments or ""})
    ledger = parse_transfer_ledger(snapshot.transfer_data)
    ledger, next_status = record_sme_signature(ledger, record)
    return _commit(
        snapshot, actor, "sme_signed", next_status, ledger.to_dict(),
        notes="SME signature recorded",
        changes={"transferData": "smeSignature"},
        transfer_data=ledger.to_json(),
    )


# ── transfer-sign path ───────────────────────────────────────────────────────

_LEG_REQUIREMENTS = {
    tx.PRIMARY: (
        "transferCompletion",
        "Either transfer completion data or technical validation data is required for DTA signature",
    ),
    tx.SECONDARY_DTA: (
        "transferCompletion",
        "Transfer completion data is required for secondary DTA signature",
    ),
    tx.SECONDARY_SME: (
        "technicalValidation",
        "Technical validation data is required for SME signature",
    ),
    tx.COMPLETION: (
        "transferCompletion",
        "Transfer completion data is required for DTA completion signature",
    ),
}

_LEG_SIGNER_ROLE = {
    tx.PRIMARY: "dta",
    tx.SECONDARY_DTA: "dta",
    tx.SECONDARY_SME: "sme",
    tx.COMPLETION: "dta",
}


def transfer_sign(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Accumulate the dual transfer signatures.

    Legs, chosen by current status and signer role:
        pending_dta             dta → primaryDta, then pending_sme
        pending_sme             dta/sme → secondarySigner, then pending_media_custodian
        pending_media_custodian dta → completion merged into primaryDta, then completed

    Body: {signature, technicalValidation?, transferCompletion?, date?}
    """
    actor, payload, snapshot = _begin(tx.TRANSFER_SIGN, request_id, actor, payload)
    role = actor.effective_role

    errors: dict[str, str] = {}
    signature = _text(payload, "signature", "Digital signature is required", errors)
    date = _optional_text(payload, "date", errors)
    _raise_if(errors)
    validation = parse_technical_validation(payload.get("technicalValidation"))
    completion = parse_transfer_completion(payload.get("transferCompletion"))

    leg = tx.transfer_sign_leg(snapshot.status, role, validation is not None)
    field_name, message = _LEG_REQUIREMENTS[leg]
    if leg == tx.PRIMARY:
        missing = validation is None and completion is None
    elif field_name == "technicalValidation":
        missing = validation is None
    else:
        missing = completion is None
    if missing:
        raise ValidationError(message, details={field_name: message})

    now = _now()
    record = SignatureRecord.sign(
        actor, signature, date=date, now=now,
        technical_validation=validation,
        transfer_completion=completion,
        on_behalf_of=_LEG_SIGNER_ROLE[leg] if role == ADMIN else None,
    )
    ledger = parse_transfer_ledger(snapshot.transfer_data)
    if leg == tx.PRIMARY:
        ledger, next_status = sign_primary(ledger, record)
        written = "primaryDta"
    elif leg in (tx.SECONDARY_DTA, tx.SECONDARY_SME):
        ledger, next_status = sign_secondary(ledger, record, _LEG_SIGNER_ROLE[leg])
        written = "secondarySigner" if next_status != PENDING_DTA else ORPHANED_SECONDARY_KEY
    else:
        ledger, next_status = sign_completion(ledger, record, now)
        written = "primaryDta.completion"

    return _commit(
        snapshot, actor, "transfer_signed", next_status, ledger.to_dict(),
        notes=f"Transfer signature recorded ({leg.replace('_', ' ')})",
        changes={"transferData": written},
        transfer_data=ledger.to_json(),
    )


# ── Media disposition ────────────────────────────────────────────────────────


def media_disposition(request_id: int, actor: Actor | None, payload: Any) -> TransitionResult:
    """Close the request from the custodian's media report: completed or disposed.

    Body (structured): {mediaDisposition: {opticalDestroyed, opticalRetained,
                        ssdSanitized, custodianName, custodianSignature, date},
                        processedAt?}
    Body (legacy):     {dispositionType, custodianName, date, dispositionMethod?,
                        comments?, mediaDetails?}
    """
    actor, payload, snapshot = _begin(tx.MEDIA_DISPOSITION, request_id, actor, payload)

    disposition = parse_disposition(payload, actor, _now())
    ledger = parse_transfer_ledger(snapshot.transfer_data)
    ledger, next_status = record_disposition(ledger, disposition.to_dict(), disposition.status)
    return _commit(
        snapshot, actor, "media_disposition", next_status, ledger.to_dict(),
        notes=f"Media disposition processed ({describe(disposition)} form)",
        changes={"transferData": "mediaDisposition"},
        transfer_data=ledger.to_json(),
    )


# ── Queries & retry ──────────────────────────────────────────────────────────


def available_actions(request_id: int, actor: Actor | None) -> dict:
    """Operations *actor* may run on the request right now."""
    actor = _require_actor(actor)
    snapshot = gateway.load_request(request_id)
    return {
        "request_id": snapshot.id,
        "status": snapshot.status,
        "role": actor.effective_role,
        "actions": tx.available_operations(snapshot.status, actor.effective_role, _context(snapshot, actor)),
    }


OPERATIONS: dict[str, Callable[[int, Actor | None, Any], TransitionResult]] = {
    tx.SUBMIT: submit,
    tx.APPROVE: approve,
    tx.REJECT: reject,
    tx.CANCEL: cancel,
    tx.INITIATE_TRANSFER: initiate_transfer,
    tx.TRANSFER_COMPLETE: transfer_complete,
    tx.TRANSFER_SIGN: transfer_sign,
    tx.SME_SIGN: sme_sign,
    tx.MEDIA_DISPOSITION: media_disposition,
}


def run_transition(
    operation: str,
    request_id: int,
    actor: Actor | None,
    payload: Any,
    *,
    retries: int = 0,
) -> TransitionResult:
    """Run *operation*, re-running it against fresh state after a lost write race.

    Each retry reloads the request and re-checks eligibility, so a signature
    that is no longer valid after the competing write fails with the error
    the fresh state calls for instead of being merged.
    """
    handler = OPERATIONS[operation]
    attempt = 0
    while True:
        try:
            return handler(request_id, actor, payload)
        except StaleStateError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.info(
                "Retrying %s on AFT request %s after lost write race (attempt %d/%d)",
                operation, request_id, attempt, retries,
                extra={"aft_request_id": request_id, "event_type": "stale_write_retry"},
            )
