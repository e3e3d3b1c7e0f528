from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autorecon.database import Base
from autorecon.models.audit import Actor, ActorType
from autorecon.models.enums import (
    PartnerSettlementStatus,
    PartnerType,
    PaymentMethod,
    SettlementRunStatus,
)
from autorecon.models.types import JSONValue, Money, UTCDateTime, enum_column
from autorecon.utils.money import ZERO


@dataclass(frozen=True)
class Partner:
    id: str
    code: str
    name: str
    type: PartnerType = PartnerType.OTHER
    bank_account: Optional[str] = None


@dataclass(frozen=True)
class PaymentDetails:
    method: PaymentMethod
    reference: str
    paid_at: datetime


class PaymentDetailsType(JSONValue):
    def dump(self, details: PaymentDetails) -> dict:
        return {
            "method": PaymentMethod(details.method).value,
            "reference": details.reference,
            "paid_at": details.paid_at.isoformat() if details.paid_at else None,
        }

    def load(self, data: dict) -> PaymentDetails:
        return PaymentDetails(
            method=PaymentMethod(data["method"]),
            reference=data["reference"],
            paid_at=datetime.fromisoformat(data["paid_at"]) if data.get("paid_at") else None,
        )


class PartnerSettlement(Base):
    __tablename__ = "partner_settlements"
    __table_args__ = (UniqueConstraint("settlement_run_id", "partner_id"),)

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    settlement_run_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("settlement_runs.id"),
        index=True
    )
    partner_id: Mapped[str] = mapped_column(String(50))
    partner_code: Mapped[str] = mapped_column(String(50))
    partner_name: Mapped[str] = mapped_column(String(200))
    partner_type: Mapped[PartnerType] = mapped_column(enum_column(PartnerType))
    bank_account: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    currency: Mapped[str] = mapped_column(String(3))
    gross_amount: Mapped[Decimal] = mapped_column(Money)
    fees: Mapped[Decimal] = mapped_column(Money)
    adjustments: Mapped[Decimal] = mapped_column(Money)
    transaction_count: Mapped[int] = mapped_column(Integer)
    status: Mapped[PartnerSettlementStatus] = mapped_column(enum_column(PartnerSettlementStatus))
    payment_details: Mapped[Optional[PaymentDetails]] = mapped_column(PaymentDetailsType, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    transactions = relationship(
        "SettlementTransaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SettlementTransaction.row_id",
    )

    @classmethod
    def for_partner(cls, run_id: str, partner: Partner, currency: str) -> "PartnerSettlement":
        return cls(
            id=f"PS-{run_id}-{partner.id}",
            settlement_run_id=run_id,
            partner_id=partner.id,
            partner_code=partner.code,
            partner_name=partner.name,
            partner_type=PartnerType(partner.type),
            bank_account=partner.bank_account,
            currency=currency,
            gross_amount=ZERO,
            fees=ZERO,
            adjustments=ZERO,
            transaction_count=0,
            status=PartnerSettlementStatus.PENDING,
            payment_details=None,
            transactions=[],
        )

    @property
    def partner(self) -> Partner:
        return Partner(
            id=self.partner_id,
            code=self.partner_code,
            name=self.partner_name,
            type=self.partner_type,
            bank_account=self.bank_account,
        )

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount - self.fees + self.adjustments


@dataclass
class GroupTotals:
    count: int = 0
    gross_amount: Decimal = ZERO
    net_amount: Decimal = ZERO


@dataclass
class PaymentMethodTotals:
    count: int = 0
    amount: Decimal = ZERO


@dataclass
class SettlementSummary:
    currency: str
    total_gross_amount: Decimal = ZERO
    total_fees: Decimal = ZERO
    total_adjustments: Decimal = ZERO
    total_net_amount: Decimal = ZERO
    total_transactions: int = 0
    partner_count: int = 0
    by_partner_type: dict[str, GroupTotals] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_payment_method: dict[str, PaymentMethodTotals] = field(default_factory=dict)


class SettlementRun(Base):
    __tablename__ = "settlement_runs"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, unique=True)
    run_number: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    run_date: Mapped[datetime] = mapped_column(UTCDateTime)
    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)
    status: Mapped[SettlementRunStatus] = mapped_column(enum_column(SettlementRunStatus), index=True)
    currency: Mapped[str] = mapped_column(String(3))
    payment_method: Mapped[PaymentMethod] = mapped_column(enum_column(PaymentMethod))
    created_by: Mapped[Actor] = mapped_column(ActorType)
    approved_by: Mapped[Optional[Actor]] = mapped_column(ActorType, nullable=True)
    approval_request_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    breakdown = relationship(
        "PartnerSettlement",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PartnerSettlement.partner_id",
    )
    history = relationship(
        "HistoryEntry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="HistoryEntry.id",
    )
    logs = relationship(
        "LogEntry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LogEntry.id",
    )

    @property
    def summary(self) -> SettlementSummary:
        """Run totals, always derived from the current breakdown."""
        from autorecon.services.aggregation import summarize

        return summarize(self.breakdown, self.currency, self.payment_method)

    @property
    def total_amount(self) -> Decimal:
        return self.summary.total_net_amount

    @property
    def total_transactions(self) -> int:
        return sum(ps.transaction_count for ps in self.breakdown)

    @property
    def partner_count(self) -> int:
        return len(self.breakdown)

    def partner_settlement(self, partner_id: str) -> Optional[PartnerSettlement]:
        for ps in self.breakdown:
            if ps.partner_id == partner_id:
                return ps
        return None
