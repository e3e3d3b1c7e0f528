from enum import Enum


class TransactionType(str, Enum):
    SALE = "sale"
    REFUND = "refund"
    CHARGEBACK = "chargeback"
    FEE = "fee"


class PartnerType(str, Enum):
    MARKETPLACE = "marketplace"
    PLATFORM = "platform"
    PAYMENT_PROCESSOR = "payment_processor"
    OTHER = "other"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    ACH = "ach"
    WIRE = "wire"
    CHECK = "check"


class SettlementRunStatus(str, Enum):
    DRAFT = "draft"
    CALCULATING = "calculating"
    PENDING_REVIEW = "pending_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PartnerSettlementStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class ApprovalType(str, Enum):
    RULE_CHANGE = "rule_change"
    EXCEPTION_RESOLUTION = "exception_resolution"
    SETTLEMENT_APPROVAL = "settlement_approval"
    GL_POSTING = "gl_posting"
    THRESHOLD_OVERRIDE = "threshold_override"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class HistoryAction(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REASSIGNED = "reassigned"
    CANCELLED = "cancelled"
    COMMENTED = "commented"
    # Settlement run lifecycle
    PARTNER_ADDED = "partner_added"
    CALCULATION_STARTED = "calculation_started"
    CALCULATED = "calculated"
    ADJUSTED = "adjusted"
    PROCESSING_STARTED = "processing_started"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EntityType(str, Enum):
    SETTLEMENT_RUN = "settlement_run"
    APPROVAL_REQUEST = "approval_request"


S = SettlementRunStatus

SETTLEMENT_RUN_TRANSITIONS: dict[SettlementRunStatus, frozenset[SettlementRunStatus]] = {
    S.DRAFT: frozenset({S.CALCULATING, S.FAILED}),
    S.CALCULATING: frozenset({S.PENDING_REVIEW, S.FAILED}),
    S.PENDING_REVIEW: frozenset({S.PENDING_APPROVAL, S.FAILED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.PENDING_REVIEW, S.FAILED}),
    S.APPROVED: frozenset({S.PROCESSING, S.FAILED}),
    S.PROCESSING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

A = ApprovalStatus

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    A.PENDING: frozenset({A.APPROVED, A.REJECTED, A.CANCELLED}),
    A.APPROVED: frozenset(),
    A.REJECTED: frozenset(),
    A.CANCELLED: frozenset(),
}

del S, A


def _check_table(table: dict, states: type[Enum]) -> None:
    missing = set(states) - set(table)
    if missing:
        raise RuntimeError(
            f"{states.__name__} transition table is missing {sorted(s.value for s in missing)}"
        )
    for source, targets in table.items():
        unknown = {t for t in targets if not isinstance(t, states)}
        if unknown:
            raise RuntimeError(f"{states.__name__}.{source.name} has foreign targets {unknown}")


_check_table(SETTLEMENT_RUN_TRANSITIONS, SettlementRunStatus)
_check_table(APPROVAL_TRANSITIONS, ApprovalStatus)


def is_terminal(status: SettlementRunStatus | ApprovalStatus) -> bool:
    if isinstance(status, SettlementRunStatus):
        return not SETTLEMENT_RUN_TRANSITIONS[status]
    return not APPROVAL_TRANSITIONS[status]
