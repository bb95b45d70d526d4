"""
Status, role and transfer-type vocabularies for AFT requests.

Lifecycle:
    draft → pending_dao → pending_approver → pending_cpso → pending_dta      (high-to-low)
    draft → pending_approver → pending_cpso → pending_dta                    (all other types)

    pending_dta → pending_sme → pending_media_custodian → completed          (transfer-sign)
    pending_dta → active_transfer → pending_sme_signature
                → pending_media_custodian                                    (Section IV)
    pending_media_custodian → completed | disposed                           (disposition)

    rejected / cancelled are side exits from the pre-transfer statuses.
    ``submitted`` is accepted by the approval rules for rows created before
    submit started routing straight to the first approval stage.
"""

# ── Statuses ─────────────────────────────────────────────────────────────────

DRAFT = "draft"
SUBMITTED = "submitted"
PENDING_DAO = "pending_dao"
PENDING_APPROVER = "pending_approver"
PENDING_CPSO = "pending_cpso"
PENDING_DTA = "pending_dta"
ACTIVE_TRANSFER = "active_transfer"
PENDING_SME_SIGNATURE = "pending_sme_signature"
PENDING_SME = "pending_sme"
PENDING_MEDIA_CUSTODIAN = "pending_media_custodian"
COMPLETED = "completed"
DISPOSED = "disposed"
REJECTED = "rejected"
CANCELLED = "cancelled"

AFT_STATUSES = (
    DRAFT,
    SUBMITTED,
    PENDING_DAO,
    PENDING_APPROVER,
    PENDING_CPSO,
    PENDING_DTA,
    ACTIVE_TRANSFER,
    PENDING_SME_SIGNATURE,
    PENDING_SME,
    PENDING_MEDIA_CUSTODIAN,
    COMPLETED,
    DISPOSED,
    REJECTED,
    CANCELLED,
)

APPROVAL_STATUSES = frozenset({SUBMITTED, PENDING_DAO, PENDING_APPROVER, PENDING_CPSO})

PRE_TRANSFER_STATUSES = frozenset({DRAFT}) | APPROVAL_STATUSES

TERMINAL_STATUSES = frozenset({COMPLETED, DISPOSED, REJECTED, CANCELLED})

# ── Roles ────────────────────────────────────────────────────────────────────

ADMIN = "admin"
REQUESTOR = "requestor"
DAO = "dao"            # Designated Authorizing Official
APPROVER = "approver"  # Information System Security Manager
CPSO = "cpso"          # Contractor Program Security Officer
DTA = "dta"            # Data Transfer Agent
SME = "sme"            # Subject Matter Expert
MEDIA_CUSTODIAN = "media_custodian"

ROLES = frozenset({ADMIN, REQUESTOR, DAO, APPROVER, CPSO, DTA, SME, MEDIA_CUSTODIAN})

# Approval signatures are scanned in this order; dao only for high-to-low.
APPROVAL_ORDER = (DAO, APPROVER, CPSO)

# ── Transfer types ───────────────────────────────────────────────────────────

LOW_TO_LOW = "low-to-low"
LOW_TO_HIGH = "low-to-high"
HIGH_TO_LOW = "high-to-low"
HIGH_TO_HIGH = "high-to-high"

TRANSFER_TYPES = frozenset({LOW_TO_LOW, LOW_TO_HIGH, HIGH_TO_LOW, HIGH_TO_HIGH})


def requires_dao_approval(transfer_type: str) -> bool:
    """Only high-to-low transfers need a DAO signature."""
    return transfer_type == HIGH_TO_LOW
