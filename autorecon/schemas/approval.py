from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, Field, computed_field, field_serializer, field_validator

from autorecon.config import settings
from autorecon.models.approval import ApprovalMetadata, ChangeDiff, ChangeSet
from autorecon.models.enums import ApprovalStatus, ApprovalType, Priority
from autorecon.schemas.common import ActorSchema, HistoryEntryResponse, LogEntryResponse
from autorecon.services.audit import ordered_history, ordered_logs
from autorecon.utils.money import quantize_amount


class ChangeDiffSchema(BaseModel):
    path: str
    field: str
    old_value: Any = None
    new_value: Any = None
    change_type: str = Field(..., description="added | modified | removed")

    class Config:
        from_attributes = True

    @field_validator("change_type")
    @classmethod
    def validate_change_type(cls, v: str) -> str:
        allowed = {"added", "modified", "removed"}
        if v not in allowed:
            raise ValueError(f"change_type must be one of {allowed}")
        return v


class ChangeSetSchema(BaseModel):
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    diff: list[ChangeDiffSchema] = Field(default_factory=list)

    class Config:
        from_attributes = True

    def to_change_set(self) -> ChangeSet:
        return ChangeSet(
            before=dict(self.before),
            after=dict(self.after),
            diff=[ChangeDiff(**d.model_dump()) for d in self.diff],
        )


class ApprovalMetadataSchema(BaseModel):
    entity_type: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    risk_score: Optional[int] = Field(None, ge=0, le=100)

    class Config:
        from_attributes = True

    def to_metadata(self) -> ApprovalMetadata:
        return ApprovalMetadata(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            amount=self.amount,
            currency=self.currency.upper() if self.currency else None,
            risk_score=self.risk_score,
        )

    @field_serializer("amount")
    def present_amount(self, value: Optional[Decimal]) -> Optional[str]:
        if value is None:
            return None
        return str(quantize_amount(value, self.currency or settings.BASE_CURRENCY))


# === REQUESTS ===

class ApprovalCreate(BaseModel):
    type: ApprovalType
    title: str = Field(..., min_length=1)
    description: str = ""
    priority: Priority = Priority.MEDIUM
    requestor: ActorSchema
    payload: dict[str, Any] = Field(default_factory=dict)
    changes: Optional[ChangeSetSchema] = None
    metadata: ApprovalMetadataSchema
    comment: Optional[str] = None


class DecisionRequest(BaseModel):
    actor: ActorSchema
    comment: Optional[str] = None
    expected_version: Optional[int] = Field(None, ge=1)


class ReassignRequest(BaseModel):
    actor: ActorSchema
    assignee: ActorSchema
    comment: Optional[str] = None
    expected_version: Optional[int] = Field(None, ge=1)


# === RESPONSES ===

class ApprovalRequestResponse(BaseModel):
    id: str
    type: ApprovalType
    title: str
    description: str
    status: ApprovalStatus
    priority: Priority
    requestor: ActorSchema
    approver: Optional[ActorSchema] = None
    assignee: Optional[ActorSchema] = None
    payload: dict[str, Any]
    changes: Optional[ChangeSetSchema] = None
    metadata: ApprovalMetadataSchema = Field(validation_alias=AliasChoices("request_metadata", "metadata"))
    created_at: datetime
    updated_at: datetime
    due_date: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    decision_comment: Optional[str] = None
    version: int
    history: list[HistoryEntryResponse]
    logs: list[LogEntryResponse]

    class Config:
        from_attributes = True

    @computed_field
    @property
    def is_high_risk(self) -> bool:
        """Flag for the reviewer; the workflow itself never acts on the score."""
        score = self.metadata.risk_score
        return score is not None and score > settings.HIGH_RISK_SCORE_THRESHOLD

    @field_validator("history")
    @classmethod
    def order_history(cls, v: list[HistoryEntryResponse]) -> list[HistoryEntryResponse]:
        return ordered_history(v)

    @field_validator("logs")
    @classmethod
    def order_logs(cls, v: list[LogEntryResponse]) -> list[LogEntryResponse]:
        return ordered_logs(v)


class ApprovalListResponse(BaseModel):
    items: list[ApprovalRequestResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

    class Config:
        from_attributes = True


class ApprovalStatsResponse(BaseModel):
    total_pending: int
    total_approved: int
    total_rejected: int
    total_cancelled: int
    avg_approval_time_hours: float
    overdue_count: int
    by_type: dict[str, int]
    by_priority: dict[str, int]

    class Config:
        from_attributes = True
