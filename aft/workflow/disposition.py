"""
Disposition resolver — final status from the custodian's media report.

Truth table (``na`` means the media type was not used):

    disposed   opticalDestroyed ∈ {yes, na}
               and opticalRetained ∈ {no, na}
               and ssdSanitized ∈ {yes, na}
               and (opticalDestroyed == yes or ssdSanitized == yes)
    completed  every other combination

Every ambiguous combination resolves to ``completed``: classifying media as
disposed when it was not is the outcome that cannot be undone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from aft.core.exceptions import ValidationError
from aft.workflow.constants import COMPLETED, DISPOSED
from aft.workflow.signature import Actor

YES = "yes"
NO = "no"
NA = "na"
TRI_STATE = (YES, NO, NA)

LEGACY_DISPOSITION_TYPES = frozenset({COMPLETED, DISPOSED})


def resolve_disposition(optical_destroyed: str, optical_retained: str, ssd_sanitized: str) -> str:
    """Map the three tri-state answers to ``completed`` or ``disposed``."""
    for value in (optical_destroyed, optical_retained, ssd_sanitized):
        if value not in TRI_STATE:
            raise ValueError(f"Disposition answers must be one of {TRI_STATE}, got {value!r}")

    all_cleared = (
        optical_destroyed in (YES, NA)
        and optical_retained in (NO, NA)
        and ssd_sanitized in (YES, NA)
    )
    if all_cleared and (optical_destroyed == YES or ssd_sanitized == YES):
        return DISPOSED
    return COMPLETED


def _required_text(data: dict, key: str, label: str, errors: dict, prefix: str = "") -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        errors[f"{prefix}{key}"] = f"{label} is required"
        return ""
    return value.strip()


def _optional_text(data: dict, key: str, errors: dict) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return None
    return value


@dataclass(frozen=True)
class MediaDisposition:
    """Structured (Section V) per-media-type disposition."""

    optical_destroyed: str
    optical_retained: str
    ssd_sanitized: str
    custodian_name: str
    custodian_signature: str
    date: str
    user_id: int
    processed_by: str
    processed_at: str

    @property
    def status(self) -> str:
        return resolve_disposition(self.optical_destroyed, self.optical_retained, self.ssd_sanitized)

    def to_dict(self) -> dict:
        return {
            "opticalDestroyed": self.optical_destroyed,
            "opticalRetained": self.optical_retained,
            "ssdSanitized": self.ssd_sanitized,
            "custodianName": self.custodian_name,
            "custodianSignature": self.custodian_signature,
            "date": self.date,
            "userId": self.user_id,
            "processedBy": self.processed_by,
            "processedAt": self.processed_at,
        }


@dataclass(frozen=True)
class LegacyDisposition:
    """Free-form disposition kept for clients that predate Section V."""

    disposition_type: str
    custodian_name: str
    date: str
    custodian_id: int
    custodian_email: str
    completed_at: str
    disposition_method: str | None = None
    comments: str | None = None
    media_details: str | None = None

    @property
    def status(self) -> str:
        return DISPOSED if self.disposition_type == DISPOSED else COMPLETED

    def to_dict(self) -> dict:
        return {
            "dispositionType": self.disposition_type,
            "custodianName": self.custodian_name,
            "dispositionMethod": self.disposition_method,
            "comments": self.comments,
            "mediaDetails": self.media_details,
            "date": self.date,
            "custodianId": self.custodian_id,
            "custodianEmail": self.custodian_email,
            "completedAt": self.completed_at,
        }


def parse_disposition(payload: dict, actor: Actor, now: datetime) -> MediaDisposition | LegacyDisposition:
    """Validate a disposition payload in either accepted form.

    A payload carrying ``mediaDisposition`` is the structured form; anything
    else is read as the legacy form.

    Raises:
        ValidationError: with one entry per offending field.
    """
    errors: dict[str, str] = {}

    if "mediaDisposition" in payload:
        md = payload.get("mediaDisposition")
        if not isinstance(md, dict):
            raise ValidationError("Validation failed", details={"mediaDisposition": "must be an object"})
        answers = {}
        for key in ("opticalDestroyed", "opticalRetained", "ssdSanitized"):
            value = md.get(key)
            if value not in TRI_STATE:
                errors[f"mediaDisposition.{key}"] = f"must be one of {', '.join(TRI_STATE)}"
            answers[key] = value
        name = _required_text(md, "custodianName", "Custodian name", errors, "mediaDisposition.")
        signature = _required_text(md, "custodianSignature", "Custodian signature", errors, "mediaDisposition.")
        date = _required_text(md, "date", "Date", errors, "mediaDisposition.")
        processed_at = _optional_text(payload, "processedAt", errors)
        if errors:
            raise ValidationError("Validation failed", details=errors)
        return MediaDisposition(
            optical_destroyed=answers["opticalDestroyed"],
            optical_retained=answers["opticalRetained"],
            ssd_sanitized=answers["ssdSanitized"],
            custodian_name=name,
            custodian_signature=signature,
            date=date,
            user_id=actor.id,
            processed_by=actor.display_name,
            processed_at=processed_at or now.isoformat(),
        )

    disposition_type = payload.get("dispositionType")
    if disposition_type not in LEGACY_DISPOSITION_TYPES:
        errors["dispositionType"] = "Valid disposition type is required"
    name = _required_text(payload, "custodianName", "Custodian name", errors)
    date = _required_text(payload, "date", "Date", errors)
    method = _optional_text(payload, "dispositionMethod", errors)
    comments = _optional_text(payload, "comments", errors)
    details = _optional_text(payload, "mediaDetails", errors)
    if errors:
        raise ValidationError(
            "Request must match either the structured media disposition format or the legacy format",
            details=errors,
        )
    return LegacyDisposition(
        disposition_type=disposition_type,
        custodian_name=name,
        date=date,
        custodian_id=actor.id,
        custodian_email=actor.email,
        completed_at=now.isoformat(),
        disposition_method=method,
        comments=comments,
        media_details=details,
    )


def describe(value: Any) -> str:
    return "structured" if isinstance(value, MediaDisposition) else "legacy"
