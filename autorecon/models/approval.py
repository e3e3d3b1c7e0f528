from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autorecon.database import Base
from autorecon.models.audit import Actor, ActorType
from autorecon.models.enums import ApprovalStatus, ApprovalType, Priority
from autorecon.models.types import JSONValue, Money, UTCDateTime, enum_column


@dataclass(frozen=True)
class ChangeDiff:
    path: str
    field: str
    old_value: Any
    new_value: Any
    change_type: str  # added | modified | removed


@dataclass(frozen=True)
class ChangeSet:
    before: dict[str, Any]
    after: dict[str, Any]
    diff: list[ChangeDiff] = field(default_factory=list)


class ChangeSetType(JSONValue):
    def dump(self, changes: ChangeSet) -> dict:
        return {
            "before": changes.before,
            "after": changes.after,
            "diff": [asdict(d) for d in changes.diff],
        }

    def load(self, data: dict) -> ChangeSet:
        return ChangeSet(
            before=data.get("before", {}),
            after=data.get("after", {}),
            diff=[ChangeDiff(**d) for d in data.get("diff", [])],
        )


@dataclass(frozen=True)
class ApprovalMetadata:
    entity_type: str
    entity_id: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    risk_score: Optional[int] = None


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, unique=True)
    type: Mapped[ApprovalType] = mapped_column(enum_column(ApprovalType), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    priority: Mapped[Priority] = mapped_column(enum_column(Priority))
    status: Mapped[ApprovalStatus] = mapped_column(enum_column(ApprovalStatus), index=True)
    requestor: Mapped[Actor] = mapped_column(ActorType)
    approver: Mapped[Optional[Actor]] = mapped_column(ActorType, nullable=True)
    assignee: Mapped[Optional[Actor]] = mapped_column(ActorType, nullable=True)

    # Subject of the request
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[str] = mapped_column(String(50), index=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    risk_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0-100

    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    changes: Mapped[Optional[ChangeSet]] = mapped_column(ChangeSetType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    decision_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
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
    def request_metadata(self) -> ApprovalMetadata:
        return ApprovalMetadata(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            amount=self.amount,
            currency=self.currency,
            risk_score=self.risk_score,
        )
