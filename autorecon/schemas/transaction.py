from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_serializer

from autorecon.models.enums import TransactionType
from autorecon.models.transaction import Transaction
from autorecon.utils.money import quantize_amount


class TransactionBase(BaseModel):
    id: str = Field(..., min_length=1, description="Partner transaction ID")
    transaction_date: date = Field(..., description="Date the transaction occurred")
    type: TransactionType = Field(..., description="sale | refund | chargeback | fee")
    amount: Decimal = Field(..., description="Signed transaction amount")
    fee: Decimal = Field(default=Decimal("0"), description="Fee charged on the transaction")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO currency code")
    reference: Optional[str] = Field(None, description="External reference")
    description: Optional[str] = None


class TransactionCreate(TransactionBase):
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


class TransactionResponse(TransactionBase):
    net_amount: Decimal

    class Config:
        from_attributes = True

    @field_serializer("amount", "fee", "net_amount")
    def present_amount(self, value: Decimal) -> str:
        return str(quantize_amount(value, self.currency))
