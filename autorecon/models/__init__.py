from autorecon.models.audit import Actor, HistoryEntry, LogEntry, TransitionEvent, SYSTEM_ACTOR
from autorecon.models.transaction import SettlementTransaction, Transaction
from autorecon.models.settlement import (
    Partner,
    PartnerSettlement,
    PaymentDetails,
    SettlementRun,
    SettlementSummary,
)
from autorecon.models.approval import ApprovalMetadata, ApprovalRequest, ChangeDiff, ChangeSet

__all__ = [
    "Actor", "HistoryEntry", "LogEntry", "TransitionEvent", "SYSTEM_ACTOR",
    "SettlementTransaction", "Transaction",
    "Partner", "PartnerSettlement", "PaymentDetails", "SettlementRun", "SettlementSummary",
    "ApprovalMetadata", "ApprovalRequest", "ChangeDiff", "ChangeSet",
]
