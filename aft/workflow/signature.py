"""
Signature records embedded in the approval and transfer ledgers.

A SignatureRecord captures who signed, when, and the role-specific data that
came with the signature: ``technicalValidation`` for SME legs and
``transferCompletion`` for DTA legs.  The signature string itself is an
opaque token; nothing here verifies it.

Persisted shape (camelCase, matches the JSON already stored in the ledgers):

    {userId, name, email, role, date, signature, signedAt,
     technicalValidation?, transferCompletion?, onBehalfOf?}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from aft.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Actor:
    """The identity an operation runs as.

    ``role`` is the role the actor is acting in; ``primary_role`` wins over it
    when present, mirroring how accounts with several roles are resolved.
    """

    id: int
    role: str
    primary_role: str | None = None
    display_name: str = ""
    email: str = ""

    @property
    def effective_role(self) -> str:
        return self.primary_role or self.role


@dataclass(frozen=True)
class TechnicalValidation:
    """SME validation notes (antivirus, integrity and format checks)."""

    antivirus_results: str = ""
    integrity_check: str = ""
    format_validation: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> TechnicalValidation:
        return cls(
            antivirus_results=_text(data.get("antivirusResults")),
            integrity_check=_text(data.get("integrityCheck")),
            format_validation=_text(data.get("formatValidation")),
            notes=_text(data.get("notes")),
        )

    def to_dict(self) -> dict:
        return {
            "antivirusResults": self.antivirus_results,
            "integrityCheck": self.integrity_check,
            "formatValidation": self.format_validation,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class TransferCompletion:
    """DTA record of the actual transfer window, method and verification."""

    actual_start_date: str = ""
    actual_end_date: str = ""
    transfer_method: str = ""
    verification_results: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> TransferCompletion:
        return cls(
            actual_start_date=_text(data.get("actualStartDate")),
            actual_end_date=_text(data.get("actualEndDate")),
            transfer_method=_text(data.get("transferMethod")),
            verification_results=_text(data.get("verificationResults")),
            notes=_text(data.get("notes")),
        )

    def to_dict(self) -> dict:
        return {
            "actualStartDate": self.actual_start_date,
            "actualEndDate": self.actual_end_date,
            "transferMethod": self.transfer_method,
            "verificationResults": self.verification_results,
            "notes": self.notes,
        }


def parse_technical_validation(value: Any, field_name: str = "technicalValidation") -> TechnicalValidation | None:
    """Parse an inbound ``technicalValidation`` payload; ``None`` when absent."""
    if value is None or value == {}:
        return None
    if not isinstance(value, dict):
        raise ValidationError("Validation failed", details={field_name: "must be an object"})
    return TechnicalValidation.from_dict(value)


def parse_transfer_completion(value: Any, field_name: str = "transferCompletion") -> TransferCompletion | None:
    """Parse an inbound ``transferCompletion`` payload; ``None`` when absent."""
    if value is None or value == {}:
        return None
    if not isinstance(value, dict):
        raise ValidationError("Validation failed", details={field_name: "must be an object"})
    return TransferCompletion.from_dict(value)


@dataclass(frozen=True)
class SignatureRecord:
    user_id: int
    name: str
    email: str
    role: str
    date: str
    signature: str
    signed_at: str
    technical_validation: TechnicalValidation | None = None
    transfer_completion: TransferCompletion | None = None
    on_behalf_of: str | None = None
    # Keys written by older workflow revisions, carried through untouched.
    extra: dict = field(default_factory=dict, compare=False)

    _KNOWN_KEYS = frozenset({
        "userId", "name", "email", "role", "date", "signature", "signedAt",
        "technicalValidation", "transferCompletion", "onBehalfOf",
    })

    @classmethod
    def sign(
        cls,
        actor: Actor,
        signature: str,
        *,
        date: str | None = None,
        now: datetime | None = None,
        technical_validation: TechnicalValidation | None = None,
        transfer_completion: TransferCompletion | None = None,
        on_behalf_of: str | None = None,
    ) -> SignatureRecord:
        """Build a fresh record for *actor*; ``date`` defaults to today."""
        now = now or datetime.now(timezone.utc)
        return cls(
            user_id=actor.id,
            name=actor.display_name,
            email=actor.email,
            role=actor.effective_role,
            date=date or now.date().isoformat(),
            signature=signature,
            signed_at=now.isoformat(),
            technical_validation=technical_validation,
            transfer_completion=transfer_completion,
            on_behalf_of=on_behalf_of,
        )

    @classmethod
    def from_dict(cls, data: Any) -> SignatureRecord | None:
        """Read a persisted record; returns ``None`` for anything unusable."""
        if not isinstance(data, dict):
            logger.warning(
                "Discarding malformed signature record of type %s",
                type(data).__name__,
                extra={"event_type": "ledger_anomaly"},
            )
            return None
        tv = data.get("technicalValidation")
        tc = data.get("transferCompletion")
        try:
            user_id = int(data.get("userId"))
        except (TypeError, ValueError):
            user_id = 0
        return cls(
            user_id=user_id,
            name=_text(data.get("name")),
            email=_text(data.get("email")),
            role=_text(data.get("role")),
            date=_text(data.get("date")),
            signature=_text(data.get("signature")),
            signed_at=_text(data.get("signedAt")),
            technical_validation=TechnicalValidation.from_dict(tv) if isinstance(tv, dict) else None,
            transfer_completion=TransferCompletion.from_dict(tc) if isinstance(tc, dict) else None,
            on_behalf_of=data.get("onBehalfOf") or None,
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def to_dict(self) -> dict:
        d = dict(self.extra)
        d.update({
            "userId": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "date": self.date,
            "signature": self.signature,
            "signedAt": self.signed_at,
        })
        if self.technical_validation is not None:
            d["technicalValidation"] = self.technical_validation.to_dict()
        if self.transfer_completion is not None:
            d["transferCompletion"] = self.transfer_completion.to_dict()
        if self.on_behalf_of:
            d["onBehalfOf"] = self.on_behalf_of
        return d

    def merged_with(self, newer: SignatureRecord) -> SignatureRecord:
        """Overlay *newer* on this record, keeping attached data *newer* lacks."""
        return replace(
            newer,
            technical_validation=newer.technical_validation or self.technical_validation,
            transfer_completion=newer.transfer_completion or self.transfer_completion,
            extra={**self.extra, **newer.extra},
        )
