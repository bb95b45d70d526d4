"""
Eligibility table — which role may run which operation at which status.

    ELIGIBILITY[operation][status] → roles allowed to act

Cells whose answer depends on the request itself (transfer direction,
ownership) carry a guard in ``GUARDS``.  Nothing else in the codebase makes
role decisions; the lifecycle service asks ``check_eligibility`` and the
available-actions endpoint asks ``available_operations``.

``TRANSFER_SIGN_LEGS`` picks which ledger update ``transfer_sign`` applies.
The leg is chosen by the request's current status (and the signer's role),
never by the endpoint that was called.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from aft.core.exceptions import ForbiddenError
from aft.workflow.constants import (
    ACTIVE_TRANSFER,
    ADMIN,
    APPROVER,
    CPSO,
    DAO,
    DRAFT,
    DTA,
    MEDIA_CUSTODIAN,
    PENDING_APPROVER,
    PENDING_CPSO,
    PENDING_DAO,
    PENDING_DTA,
    PENDING_MEDIA_CUSTODIAN,
    PENDING_SME,
    PENDING_SME_SIGNATURE,
    PRE_TRANSFER_STATUSES,
    REQUESTOR,
    SME,
    SUBMITTED,
    requires_dao_approval,
)

# ── Operations ───────────────────────────────────────────────────────────────

SUBMIT = "submit"
APPROVE = "approve"
REJECT = "reject"
CANCEL = "cancel"
INITIATE_TRANSFER = "initiate_transfer"
TRANSFER_COMPLETE = "transfer_complete"
TRANSFER_SIGN = "transfer_sign"
SME_SIGN = "sme_sign"
MEDIA_DISPOSITION = "media_disposition"

_APPROVAL_CELLS = {
    SUBMITTED:        frozenset({DAO, APPROVER, ADMIN}),
    PENDING_DAO:      frozenset({DAO, ADMIN}),
    PENDING_APPROVER: frozenset({APPROVER, ADMIN}),
    PENDING_CPSO:     frozenset({CPSO, ADMIN}),
}

ELIGIBILITY: dict[str, dict[str, frozenset[str]]] = {
    SUBMIT: {
        DRAFT: frozenset({REQUESTOR, ADMIN}),
    },
    APPROVE: _APPROVAL_CELLS,
    REJECT: _APPROVAL_CELLS,
    CANCEL: {status: frozenset({REQUESTOR, ADMIN}) for status in PRE_TRANSFER_STATUSES},
    INITIATE_TRANSFER: {
        PENDING_DTA: frozenset({DTA, ADMIN}),
    },
    TRANSFER_COMPLETE: {
        ACTIVE_TRANSFER: frozenset({DTA, ADMIN}),
    },
    TRANSFER_SIGN: {
        PENDING_DTA:             frozenset({DTA, ADMIN}),
        PENDING_SME:             frozenset({DTA, SME, ADMIN}),
        PENDING_MEDIA_CUSTODIAN: frozenset({DTA, ADMIN}),
    },
    SME_SIGN: {
        PENDING_SME_SIGNATURE: frozenset({SME, ADMIN}),
    },
    MEDIA_DISPOSITION: {
        PENDING_MEDIA_CUSTODIAN: frozenset({MEDIA_CUSTODIAN, ADMIN}),
    },
}

OPERATIONS = tuple(ELIGIBILITY)


@dataclass(frozen=True)
class EligibilityContext:
    """Request facts that guarded cells look at."""

    transfer_type: str
    is_owner: bool = False


def _not_high_to_low(ctx: EligibilityContext) -> bool:
    return not requires_dao_approval(ctx.transfer_type)


def _owns_request(ctx: EligibilityContext) -> bool:
    return ctx.is_owner


GUARDS: dict[tuple[str, str, str], Callable[[EligibilityContext], bool]] = {
    (APPROVE, SUBMITTED, APPROVER): _not_high_to_low,
    (REJECT, SUBMITTED, APPROVER): _not_high_to_low,
    (SUBMIT, DRAFT, REQUESTOR): _owns_request,
    **{(CANCEL, status, REQUESTOR): _owns_request for status in PRE_TRANSFER_STATUSES},
}


def is_eligible(operation: str, status: str, role: str, ctx: EligibilityContext) -> bool:
    roles = ELIGIBILITY.get(operation, {}).get(status)
    if not roles or role not in roles:
        return False
    guard = GUARDS.get((operation, status, role))
    return guard(ctx) if guard else True


def check_eligibility(operation: str, status: str, role: str, ctx: EligibilityContext) -> None:
    """Raise ``ForbiddenError`` unless *role* may run *operation* now."""
    if operation not in ELIGIBILITY:
        raise ValueError(f"Unknown operation: {operation}")
    if not is_eligible(operation, status, role, ctx):
        raise ForbiddenError(operation, current_status=status, role=role)


def available_operations(status: str, role: str, ctx: EligibilityContext) -> list[str]:
    """Operations *role* may invoke on a request at *status*, in table order."""
    return [op for op in OPERATIONS if is_eligible(op, status, role, ctx)]


# ── transfer-sign legs ───────────────────────────────────────────────────────

PRIMARY = "primary"
SECONDARY_DTA = "secondary_dta"
SECONDARY_SME = "secondary_sme"
COMPLETION = "completion"

TRANSFER_SIGN_LEGS: dict[tuple[str, str], str] = {
    (PENDING_DTA, DTA): PRIMARY,
    (PENDING_SME, DTA): SECONDARY_DTA,
    (PENDING_SME, SME): SECONDARY_SME,
    (PENDING_MEDIA_CUSTODIAN, DTA): COMPLETION,
}


def transfer_sign_leg(status: str, role: str, has_technical_validation: bool = False) -> str:
    """Resolve the ledger leg for a transfer signature.

    An admin signs the leg the current status calls for; at ``pending_sme``
    the attached data decides between the SME and second-DTA leg.
    """
    signer = role
    if role == ADMIN:
        if status == PENDING_SME:
            return SECONDARY_SME if has_technical_validation else SECONDARY_DTA
        signer = DTA
    leg = TRANSFER_SIGN_LEGS.get((status, signer))
    if leg is None:
        raise ForbiddenError(TRANSFER_SIGN, current_status=status, role=role)
    return leg
