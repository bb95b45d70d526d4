"""
Transfer ledger — execution-phase signatures and stage records.

Pure functions over the ledger value; the caller owns all I/O.

Two paths write to this ledger and they never share a status:

    transfer-sign   pending_dta → pending_sme → pending_media_custodian → completed
                    (primaryDta, secondarySigner, completion leg)
    Section IV      pending_dta → active_transfer → pending_sme_signature
                    → pending_media_custodian
                    (transferInitiation, transferCompletion, smeSignature)

Media disposition (``mediaDisposition``) is appended by the custodian at the
end of either path.

Persisted shape:

    {primaryDta?, secondarySigner?: SignatureRecord,
     secondarySignerType?: "dta" | "sme", completedAt?: str,
     transferInitiation?: {...}, transferCompletion?: {...},
     smeSignature?: SignatureRecord, mediaDisposition?: {...}}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from aft.core.exceptions import ConflictError, ValidationError
from aft.workflow.constants import (
    ACTIVE_TRANSFER,
    COMPLETED,
    PENDING_DTA,
    PENDING_MEDIA_CUSTODIAN,
    PENDING_SME,
    PENDING_SME_SIGNATURE,
)
from aft.workflow.signature import Actor, SignatureRecord

logger = logging.getLogger(__name__)

SECONDARY_SIGNER_TYPES = frozenset({"dta", "sme"})

# Secondary signatures that arrived before the primary DTA leg
ORPHANED_SECONDARY_KEY = "orphanedSecondarySigners"

_KNOWN_KEYS = frozenset({
    "primaryDta", "secondarySigner", "secondarySignerType", "completedAt",
    "transferInitiation", "transferCompletion", "smeSignature", "mediaDisposition",
})


# ── Section IV records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransferInitiation:
    initiated_by: int
    initiated_by_name: str
    initiated_by_email: str
    initiated_at: str

    @classmethod
    def by(cls, actor: Actor, now: datetime) -> TransferInitiation:
        return cls(
            initiated_by=actor.id,
            initiated_by_name=actor.display_name,
            initiated_by_email=actor.email,
            initiated_at=now.isoformat(),
        )

    def to_dict(self) -> dict:
        return {
            "initiatedBy": self.initiated_by,
            "initiatedByName": self.initiated_by_name,
            "initiatedByEmail": self.initiated_by_email,
            "initiatedAt": self.initiated_at,
        }


@dataclass(frozen=True)
class TransferCompletionReport:
    """DTA's Section IV completion statement (Two-Person Integrity attested)."""

    completed_by: int
    completed_by_name: str
    completed_by_email: str
    completed_at: str
    files_transferred: int
    transfer_date: str
    dta_name: str
    dta_signature: str
    tpi_maintained: bool
    procedures_followed: bool = True

    @classmethod
    def from_payload(cls, payload: dict, actor: Actor, now: datetime) -> TransferCompletionReport:
        """Validate a transfer-complete payload.

        Raises:
            ValidationError: with one entry per offending field.
        """
        errors = {}

        files = payload.get("filesTransferred")
        if isinstance(files, bool) or not isinstance(files, int):
            errors["filesTransferred"] = "must be an integer"
        elif files < 1:
            errors["filesTransferred"] = "must be at least 1"

        for key, label in (
            ("dtaName", "DTA name"),
            ("dtaSignature", "DTA signature"),
            ("transferDate", "Transfer date"),
        ):
            value = payload.get(key)
            if not isinstance(value, str) or not value.strip():
                errors[key] = f"{label} is required"

        if payload.get("tpiMaintained") is not True:
            errors["tpiMaintained"] = "Two-Person Integrity must be confirmed"

        completed_date = payload.get("completedDate")
        if completed_date is not None and not isinstance(completed_date, str):
            errors["completedDate"] = "must be a string"

        if errors:
            raise ValidationError("Validation failed", details=errors)

        return cls(
            completed_by=actor.id,
            completed_by_name=actor.display_name,
            completed_by_email=actor.email,
            completed_at=completed_date or now.isoformat(),
            files_transferred=files,
            transfer_date=payload["transferDate"].strip(),
            dta_name=payload["dtaName"].strip(),
            dta_signature=payload["dtaSignature"],
            tpi_maintained=True,
        )

    def to_dict(self) -> dict:
        return {
            "completedBy": self.completed_by,
            "completedByName": self.completed_by_name,
            "completedByEmail": self.completed_by_email,
            "completedAt": self.completed_at,
            "filesTransferred": self.files_transferred,
            "transferDate": self.transfer_date,
            "dtaName": self.dta_name,
            "dtaSignature": self.dta_signature,
            "tpiMaintained": self.tpi_maintained,
            "proceduresFollowed": self.procedures_followed,
        }


# ── Ledger value ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransferLedger:
    primary_dta: SignatureRecord | None = None
    secondary_signer: SignatureRecord | None = None
    secondary_signer_type: str | None = None
    completed_at: str | None = None
    transfer_initiation: dict | None = None
    transfer_completion: dict | None = None
    sme_signature: SignatureRecord | None = None
    media_disposition: dict | None = None
    extra: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        d = dict(self.extra)
        if self.primary_dta is not None:
            d["primaryDta"] = self.primary_dta.to_dict()
        if self.secondary_signer is not None:
            d["secondarySigner"] = self.secondary_signer.to_dict()
        if self.secondary_signer_type is not None:
            d["secondarySignerType"] = self.secondary_signer_type
        if self.completed_at is not None:
            d["completedAt"] = self.completed_at
        if self.transfer_initiation is not None:
            d["transferInitiation"] = self.transfer_initiation
        if self.transfer_completion is not None:
            d["transferCompletion"] = self.transfer_completion
        if self.sme_signature is not None:
            d["smeSignature"] = self.sme_signature.to_dict()
        if self.media_disposition is not None:
            d["mediaDisposition"] = self.media_disposition
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _dict_or_none(value: Any) -> dict | None:
    return value if isinstance(value, dict) else None


def _signature_or_none(value: Any) -> SignatureRecord | None:
    if value is None:
        return None
    return SignatureRecord.from_dict(value)


def parse_transfer_ledger(raw: str | None) -> TransferLedger:
    """Deserialize a persisted transfer ledger.

    Missing, blank, malformed or non-object JSON yields an empty ledger.
    """
    if raw is None or not str(raw).strip():
        return TransferLedger()
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning(
            "Malformed transfer ledger, starting fresh: %s", exc,
            extra={"event_type": "ledger_anomaly"},
        )
        return TransferLedger()
    if not isinstance(data, dict):
        logger.warning(
            "Transfer ledger is a %s, not an object; starting fresh", type(data).__name__,
            extra={"event_type": "ledger_anomaly"},
        )
        return TransferLedger()

    signer_type = data.get("secondarySignerType")
    signer_type = signer_type if signer_type in SECONDARY_SIGNER_TYPES else None
    completed_at = data.get("completedAt")
    primary = _signature_or_none(data.get("primaryDta"))
    secondary = _signature_or_none(data.get("secondarySigner"))
    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    if secondary is not None and primary is None:
        # Written by an earlier fallback; park it so the secondary leg reopens
        logger.warning(
            "Transfer ledger holds a secondary signature without a primary DTA; parking it",
            extra={"event_type": "ledger_anomaly"},
        )
        orphaned = extra.get(ORPHANED_SECONDARY_KEY)
        orphaned = list(orphaned) if isinstance(orphaned, list) else []
        orphaned.append({**secondary.to_dict(), "signerType": signer_type})
        extra[ORPHANED_SECONDARY_KEY] = orphaned
        secondary, signer_type = None, None

    return TransferLedger(
        primary_dta=primary,
        secondary_signer=secondary,
        secondary_signer_type=signer_type,
        completed_at=completed_at if isinstance(completed_at, str) and completed_at else None,
        transfer_initiation=_dict_or_none(data.get("transferInitiation")),
        transfer_completion=_dict_or_none(data.get("transferCompletion")),
        sme_signature=_signature_or_none(data.get("smeSignature")),
        media_disposition=_dict_or_none(data.get("mediaDisposition")),
        extra=extra,
    )


# ── transfer-sign legs ───────────────────────────────────────────────────────


def sign_primary(ledger: TransferLedger, signature: SignatureRecord) -> tuple[TransferLedger, str]:
    """Primary DTA leg: always hands over to the secondary signer."""
    if ledger.primary_dta is not None:
        raise ConflictError("Transfer ledger", reason="already holds a primary DTA signature")
    return replace(ledger, primary_dta=signature), PENDING_SME


def sign_secondary(
    ledger: TransferLedger,
    signature: SignatureRecord,
    signer_type: str,
) -> tuple[TransferLedger, str]:
    """Secondary leg (second DTA or SME).

    Without a primary signature on file the request goes back to
    ``pending_dta`` instead of forward; that shape should not occur and is
    logged as an anomaly. The early signature is parked under
    ``orphanedSecondarySigners`` so the secondary leg stays open once the
    primary DTA has signed.
    """
    if signer_type not in SECONDARY_SIGNER_TYPES:
        raise ValueError(f"Unknown secondary signer type: {signer_type!r}")
    if ledger.secondary_signer is not None:
        raise ConflictError("Transfer ledger", reason="already holds a secondary signature")

    if ledger.primary_dta is not None:
        updated = replace(ledger, secondary_signer=signature, secondary_signer_type=signer_type)
        return updated, PENDING_MEDIA_CUSTODIAN

    logger.warning(
        "Secondary %s signature recorded before primary DTA; returning to %s",
        signer_type, PENDING_DTA,
        extra={"event_type": "ledger_anomaly"},
    )
    orphaned = ledger.extra.get(ORPHANED_SECONDARY_KEY)
    orphaned = list(orphaned) if isinstance(orphaned, list) else []
    orphaned.append({**signature.to_dict(), "signerType": signer_type})
    return replace(ledger, extra={**ledger.extra, ORPHANED_SECONDARY_KEY: orphaned}), PENDING_DTA


def sign_completion(
    ledger: TransferLedger,
    signature: SignatureRecord,
    now: datetime | None = None,
) -> tuple[TransferLedger, str]:
    """Final DTA completion leg: merged into the primary DTA entry."""
    primary = ledger.primary_dta.merged_with(signature) if ledger.primary_dta else signature
    updated = replace(ledger, primary_dta=primary)
    if updated.completed_at is None:
        now = now or datetime.now(timezone.utc)
        updated = replace(updated, completed_at=now.isoformat())
    return updated, COMPLETED


# ── Section IV path ──────────────────────────────────────────────────────────


def record_initiation(ledger: TransferLedger, initiation: TransferInitiation) -> tuple[TransferLedger, str]:
    return replace(ledger, transfer_initiation=initiation.to_dict()), ACTIVE_TRANSFER


def record_completion_report(
    ledger: TransferLedger,
    report: TransferCompletionReport,
) -> tuple[TransferLedger, str]:
    if ledger.transfer_completion is not None:
        raise ConflictError("Transfer ledger", reason="already holds a transfer completion report")
    return replace(ledger, transfer_completion=report.to_dict()), PENDING_SME_SIGNATURE


def record_sme_signature(ledger: TransferLedger, signature: SignatureRecord) -> tuple[TransferLedger, str]:
    if ledger.sme_signature is not None:
        raise ConflictError("Transfer ledger", reason="already holds an SME signature")
    return replace(ledger, sme_signature=signature), PENDING_MEDIA_CUSTODIAN


def record_disposition(ledger: TransferLedger, disposition: dict, status: str) -> tuple[TransferLedger, str]:
    return replace(ledger, media_disposition=disposition), status
