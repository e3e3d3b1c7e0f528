from autorecon.schemas.common import (
    ActorSchema,
    ErrorResponse,
    HistoryEntryResponse,
    LogEntryResponse,
    TransitionEventListResponse,
    TransitionEventResponse,
    TransitionRequest,
)
from autorecon.schemas.transaction import TransactionCreate, TransactionResponse
from autorecon.schemas.settlement import (
    AddPartnerRequest,
    AdjustmentRequest,
    AttachTransactionsRequest,
    FailRunRequest,
    PartnerSchema,
    PartnerSettlementResponse,
    SettlementRunCreate,
    SettlementRunListResponse,
    SettlementRunResponse,
    SettlementStatsResponse,
    SettlementSummaryResponse,
    SubmitForApprovalRequest,
)
from autorecon.schemas.approval import (
    ApprovalCreate,
    ApprovalListResponse,
    ApprovalRequestResponse,
    ApprovalStatsResponse,
    DecisionRequest,
    ReassignRequest,
)

__all__ = [
    "ActorSchema", "ErrorResponse", "HistoryEntryResponse", "LogEntryResponse",
    "TransitionEventListResponse", "TransitionEventResponse", "TransitionRequest",
    "TransactionCreate", "TransactionResponse",
    "AddPartnerRequest", "AdjustmentRequest", "AttachTransactionsRequest", "FailRunRequest",
    "PartnerSchema", "PartnerSettlementResponse", "SettlementRunCreate", "SettlementRunListResponse",
    "SettlementRunResponse", "SettlementStatsResponse", "SettlementSummaryResponse",
    "SubmitForApprovalRequest",
    "ApprovalCreate", "ApprovalListResponse", "ApprovalRequestResponse", "ApprovalStatsResponse",
    "DecisionRequest", "ReassignRequest",
]
