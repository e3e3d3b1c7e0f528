from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from autorecon.database import Base
from autorecon.exceptions import ValidationError
from autorecon.models.enums import TransactionType
from autorecon.models.types import Money, enum_column
from autorecon.utils.money import to_decimal


@dataclass(frozen=True)
class Transaction:
    """A partner transaction supplied by ingestion. Never mutated."""

    id: str
    transaction_date: date
    type: TransactionType
    amount: Decimal
    fee: Decimal
    currency: str
    reference: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValidationError("transaction id is required")
        try:
            txn_type = TransactionType(self.type)
        except ValueError:
            raise ValidationError(
                f"transaction type must be one of {[t.value for t in TransactionType]}",
                {"transaction_id": self.id, "type": self.type},
            )
        if not self.currency or len(self.currency) != 3:
            raise ValidationError("currency must be a 3-letter ISO code", {"transaction_id": self.id})
        object.__setattr__(self, "type", txn_type)
        object.__setattr__(self, "amount", to_decimal(self.amount, "amount"))
        object.__setattr__(self, "fee", to_decimal(self.fee, "fee"))
        object.__setattr__(self, "currency", self.currency.upper())

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.fee


class SettlementTransaction(Base):
    """Stored copy of a transaction attached to a partner settlement."""

    __tablename__ = "settlement_transactions"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_settlement_id: Mapped[str] = mapped_column(
        String(80),
        ForeignKey("partner_settlements.id"),
        index=True
    )
    id: Mapped[str] = mapped_column(String(64))  # partner's transaction ID
    transaction_date: Mapped[date] = mapped_column(Date)
    type: Mapped[TransactionType] = mapped_column(enum_column(TransactionType))
    amount: Mapped[Decimal] = mapped_column(Money)
    fee: Mapped[Decimal] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(3))
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "SettlementTransaction":
        return cls(
            id=txn.id,
            transaction_date=txn.transaction_date,
            type=txn.type,
            amount=txn.amount,
            fee=txn.fee,
            currency=txn.currency,
            reference=txn.reference,
            description=txn.description,
        )

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            transaction_date=self.transaction_date,
            type=self.type,
            amount=self.amount,
            fee=self.fee,
            currency=self.currency,
            reference=self.reference,
            description=self.description,
        )

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.fee
