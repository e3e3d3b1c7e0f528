from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_serializer, field_validator

from autorecon.models.enums import (
    PartnerSettlementStatus,
    PartnerType,
    PaymentMethod,
    Priority,
    SettlementRunStatus,
)
from autorecon.models.settlement import Partner
from autorecon.schemas.common import ActorSchema, HistoryEntryResponse, LogEntryResponse
from autorecon.schemas.transaction import TransactionCreate, TransactionResponse
from autorecon.services.audit import ordered_history, ordered_logs
from autorecon.utils.money import quantize_amount


class PartnerSchema(BaseModel):
    id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    name: str
    type: PartnerType = PartnerType.OTHER
    bank_account: Optional[str] = None

    class Config:
        from_attributes = True

    def to_partner(self) -> Partner:
        return Partner(
            id=self.id, code=self.code, name=self.name, type=self.type, bank_account=self.bank_account
        )


# === REQUESTS ===

class SettlementRunCreate(BaseModel):
    period_start: date
    period_end: date
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="Defaults to BASE_CURRENCY")
    partners: list[PartnerSchema] = Field(default_factory=list)
    created_by: ActorSchema
    notes: Optional[str] = None


class AddPartnerRequest(BaseModel):
    actor: ActorSchema
    partner: PartnerSchema
    expected_version: Optional[int] = Field(None, ge=1)


class AttachTransactionsRequest(BaseModel):
    actor: ActorSchema
    transactions: dict[str, list[TransactionCreate]] = Field(
        ..., description="Transactions keyed by partner ID"
    )
    expected_version: Optional[int] = Field(None, ge=1)


class AdjustmentRequest(BaseModel):
    actor: ActorSchema
    amount: Decimal = Field(..., description="Signed manual correction replacing the current adjustment")
    reason: str = Field("", description="Why the adjustment is made")
    expected_version: Optional[int] = Field(None, ge=1)


class SubmitForApprovalRequest(BaseModel):
    actor: ActorSchema
    priority: Priority = Priority.HIGH
    comment: Optional[str] = None
    risk_score: Optional[int] = Field(None, ge=0, le=100)
    expected_version: Optional[int] = Field(None, ge=1)


class FailRunRequest(BaseModel):
    actor: ActorSchema
    reason: str = Field("", description="Reason recorded in the run's audit trail")
    expected_version: Optional[int] = Field(None, ge=1)


# === RESPONSES ===

class PaymentDetailsResponse(BaseModel):
    method: PaymentMethod
    reference: str
    paid_at: datetime

    class Config:
        from_attributes = True


class PartnerSettlementResponse(BaseModel):
    id: str
    settlement_run_id: str
    partner: PartnerSchema
    currency: str
    gross_amount: Decimal
    fees: Decimal
    adjustments: Decimal
    net_amount: Decimal
    transaction_count: int
    status: PartnerSettlementStatus
    payment_details: Optional[PaymentDetailsResponse] = None
    transactions: list[TransactionResponse] = []

    class Config:
        from_attributes = True

    @field_serializer("gross_amount", "fees", "adjustments", "net_amount")
    def present_amount(self, value: Decimal) -> str:
        return str(quantize_amount(value, self.currency))


class GroupTotalsResponse(BaseModel):
    count: int
    gross_amount: Decimal
    net_amount: Decimal

    class Config:
        from_attributes = True


class PaymentMethodTotalsResponse(BaseModel):
    count: int
    amount: Decimal

    class Config:
        from_attributes = True


class SettlementSummaryResponse(BaseModel):
    currency: str
    total_gross_amount: Decimal
    total_fees: Decimal
    total_adjustments: Decimal
    total_net_amount: Decimal
    total_transactions: int
    partner_count: int
    by_partner_type: dict[str, GroupTotalsResponse]
    by_status: dict[str, int]
    by_payment_method: dict[str, PaymentMethodTotalsResponse]

    class Config:
        from_attributes = True

    @field_serializer("total_gross_amount", "total_fees", "total_adjustments", "total_net_amount")
    def present_amount(self, value: Decimal) -> str:
        return str(quantize_amount(value, self.currency))

    @field_serializer("by_partner_type")
    def present_groups(self, groups: dict[str, GroupTotalsResponse]) -> dict:
        return {
            key: {
                "count": g.count,
                "gross_amount": str(quantize_amount(g.gross_amount, self.currency)),
                "net_amount": str(quantize_amount(g.net_amount, self.currency)),
            }
            for key, g in groups.items()
        }

    @field_serializer("by_payment_method")
    def present_methods(self, methods: dict[str, PaymentMethodTotalsResponse]) -> dict:
        return {
            key: {"count": m.count, "amount": str(quantize_amount(m.amount, self.currency))}
            for key, m in methods.items()
        }


class SettlementRunResponse(BaseModel):
    id: str
    run_number: str
    run_date: datetime
    period_start: date
    period_end: date
    status: SettlementRunStatus
    currency: str
    payment_method: PaymentMethod
    total_amount: Decimal
    total_transactions: int
    partner_count: int
    created_by: ActorSchema
    approved_by: Optional[ActorSchema] = None
    approval_request_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None
    version: int
    breakdown: list[PartnerSettlementResponse]
    summary: SettlementSummaryResponse
    history: list[HistoryEntryResponse]
    logs: list[LogEntryResponse]

    class Config:
        from_attributes = True

    @field_validator("history")
    @classmethod
    def order_history(cls, v: list[HistoryEntryResponse]) -> list[HistoryEntryResponse]:
        return ordered_history(v)

    @field_validator("logs")
    @classmethod
    def order_logs(cls, v: list[LogEntryResponse]) -> list[LogEntryResponse]:
        return ordered_logs(v)

    @field_serializer("total_amount")
    def present_amount(self, value: Decimal) -> str:
        return str(quantize_amount(value, self.currency))


class SettlementRunListResponse(BaseModel):
    items: list[SettlementRunResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

    class Config:
        from_attributes = True


class SettlementStatsResponse(BaseModel):
    total_runs: int
    pending_count: int
    completed_count: int
    failed_count: int
    settled_by_currency: dict[str, Decimal]
    average_by_currency: dict[str, Decimal]
    total_partners: int
    recent_runs: list[SettlementRunResponse]

    class Config:
        from_attributes = True

    @field_serializer("settled_by_currency", "average_by_currency")
    def present_settled(self, amounts: dict[str, Decimal]) -> dict[str, str]:
        return {currency: str(quantize_amount(amount, currency)) for currency, amount in amounts.items()}
