"""
Settlement aggregation engine.

Partner-level: gross = sum(amount), fees = sum(fee), net = gross - fees + adjustments.
Run-level: every summary field is a plain (or grouped) sum over the run's
partner settlements. All arithmetic is Decimal; nothing here rounds.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from autorecon.exceptions import CurrencyMismatch
from autorecon.models.enums import PartnerSettlementStatus, PaymentMethod
from autorecon.models.settlement import (
    GroupTotals,
    PartnerSettlement,
    PaymentMethodTotals,
    SettlementSummary,
)
from autorecon.models.transaction import Transaction
from autorecon.utils.money import sum_amounts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartnerTotals:
    partner_id: str
    gross_amount: Decimal
    fees: Decimal
    transaction_count: int


def aggregate_transactions(
    partner_id: str, transactions: Iterable[Transaction], currency: str
) -> PartnerTotals:
    """Aggregate one partner's transactions, refusing any foreign-currency row."""
    transactions = list(transactions)
    for txn in transactions:
        if txn.currency != currency:
            raise CurrencyMismatch(
                f"Transaction {txn.id} for partner {partner_id} is in {txn.currency}, "
                f"run currency is {currency}",
                {"partner_id": partner_id, "transaction_id": txn.id,
                 "transaction_currency": txn.currency, "run_currency": currency},
            )

    return PartnerTotals(
        partner_id=partner_id,
        gross_amount=sum_amounts(t.amount for t in transactions),
        fees=sum_amounts(t.fee for t in transactions),
        transaction_count=len(transactions),
    )


def aggregate_partners(
    transactions_by_partner: Mapping[str, list[Transaction]],
    currency: str,
    max_workers: int = 1,
) -> dict[str, PartnerTotals]:
    """Aggregate partners independently, returning only once every partner is done.

    Partners are fanned out to a thread pool; results are collected in input
    order so the first failing partner (in that order) is the one reported.
    No partial result escapes: either every partner aggregates or this raises.
    """
    if max_workers <= 1 or len(transactions_by_partner) <= 1:
        return {
            pid: aggregate_transactions(pid, txns, currency)
            for pid, txns in transactions_by_partner.items()
        }

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="aggregate") as pool:
        futures = {
            pid: pool.submit(aggregate_transactions, pid, txns, currency)
            for pid, txns in transactions_by_partner.items()
        }
        return {pid: future.result() for pid, future in futures.items()}


def apply_partner_totals(partner_settlement: PartnerSettlement, totals: PartnerTotals) -> None:
    partner_settlement.gross_amount = totals.gross_amount
    partner_settlement.fees = totals.fees
    partner_settlement.transaction_count = totals.transaction_count


def summarize(
    breakdown: list[PartnerSettlement],
    currency: str,
    payment_method: PaymentMethod,
) -> SettlementSummary:
    """Reduce partner settlements into a run summary. Group keys come out sorted."""
    by_partner_type: dict[str, GroupTotals] = {}
    by_status: dict[str, int] = {s.value: 0 for s in PartnerSettlementStatus}
    by_payment_method: dict[str, PaymentMethodTotals] = {}

    for ps in breakdown:
        group = by_partner_type.setdefault(ps.partner.type.value, GroupTotals())
        group.count += 1
        group.gross_amount += ps.gross_amount
        group.net_amount += ps.net_amount

        by_status[ps.status.value] += 1

        method = ps.payment_details.method if ps.payment_details else payment_method
        method_totals = by_payment_method.setdefault(method.value, PaymentMethodTotals())
        method_totals.count += 1
        method_totals.amount += ps.net_amount

    return SettlementSummary(
        currency=currency,
        total_gross_amount=sum_amounts(ps.gross_amount for ps in breakdown),
        total_fees=sum_amounts(ps.fees for ps in breakdown),
        total_adjustments=sum_amounts(ps.adjustments for ps in breakdown),
        total_net_amount=sum_amounts(ps.net_amount for ps in breakdown),
        total_transactions=sum(ps.transaction_count for ps in breakdown),
        partner_count=len(breakdown),
        by_partner_type=dict(sorted(by_partner_type.items())),
        by_status=dict(sorted(by_status.items())),
        by_payment_method=dict(sorted(by_payment_method.items())),
    )

