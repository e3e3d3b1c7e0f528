import pytest
from datetime import date
from decimal import Decimal

from autorecon.exceptions import CurrencyMismatch, ValidationError
from autorecon.models import Partner, PartnerSettlement, PaymentDetails
from autorecon.models.enums import (
    PartnerSettlementStatus,
    PartnerType,
    PaymentMethod,
    TransactionType,
)
from autorecon.services.aggregation import (
    aggregate_partners,
    aggregate_transactions,
    summarize,
)
from autorecon.utils.money import quantize_amount, sum_amounts, to_decimal


def _settlement(partner_id, partner_type, gross, fees, adjustments="0", status=PartnerSettlementStatus.PENDING):
    ps = PartnerSettlement.for_partner(
        "SR-000001", Partner(id=partner_id, code=partner_id, name=partner_id, type=partner_type), "USD"
    )
    ps.gross_amount = Decimal(gross)
    ps.fees = Decimal(fees)
    ps.adjustments = Decimal(adjustments)
    ps.transaction_count = 1
    ps.status = status
    return ps


class TestPartnerAggregation:
    def test_gross_fees_and_count(self, make_txn):
        totals = aggregate_transactions(
            "P001", [make_txn("1000.00", "30.00"), make_txn("500.00", "15.00")], "USD"
        )
        assert totals.gross_amount == Decimal("1500.00")
        assert totals.fees == Decimal("45.00")
        assert totals.transaction_count == 2

    def test_refunds_reduce_gross(self, make_txn):
        totals = aggregate_transactions(
            "P001",
            [make_txn("250.00", "7.25"), make_txn("-50.00", type=TransactionType.REFUND)],
            "USD",
        )
        assert totals.gross_amount == Decimal("200.00")
        assert totals.fees == Decimal("7.25")

    def test_no_transactions_is_zero(self):
        totals = aggregate_transactions("P001", [], "USD")
        assert totals.gross_amount == Decimal("0")
        assert totals.fees == Decimal("0")
        assert totals.transaction_count == 0

    def test_currency_mismatch(self, make_txn):
        with pytest.raises(CurrencyMismatch) as exc_info:
            aggregate_transactions("P001", [make_txn("10.00"), make_txn("10.00", currency="EUR", id="TXN-EUR")], "USD")
        assert exc_info.value.details["transaction_id"] == "TXN-EUR"
        assert exc_info.value.details["run_currency"] == "USD"

    def test_no_rounding_during_aggregation(self, make_txn):
        totals = aggregate_transactions("P001", [make_txn("0.005"), make_txn("0.005")], "USD")
        assert totals.gross_amount == Decimal("0.010")

    def test_aggregation_is_deterministic(self, make_txn):
        transactions = [make_txn("19.99", "0.58"), make_txn("5.01", "0.15"), make_txn("-3.00")]
        first = aggregate_transactions("P001", transactions, "USD")
        second = aggregate_transactions("P001", list(reversed(transactions)), "USD")
        assert first == second


class TestParallelAggregation:
    def test_thread_pool_matches_sequential(self, make_txn):
        inputs = {
            f"P{i:03d}": [make_txn(f"{i}00.00", f"{i}.50") for _ in range(i)]
            for i in range(1, 9)
        }
        sequential = aggregate_partners(inputs, "USD", max_workers=1)
        parallel = aggregate_partners(inputs, "USD", max_workers=4)
        assert parallel == sequential
        assert list(parallel) == list(inputs)

    def test_first_failing_partner_in_input_order_is_reported(self, make_txn):
        inputs = {
            "P001": [make_txn("10.00")],
            "P002": [make_txn("10.00", currency="EUR", id="TXN-P002")],
            "P003": [make_txn("10.00", currency="GBP", id="TXN-P003")],
        }
        with pytest.raises(CurrencyMismatch) as exc_info:
            aggregate_partners(inputs, "USD", max_workers=3)
        assert exc_info.value.details["partner_id"] == "P002"


class TestSummary:
    def test_totals_are_sums_of_partners(self):
        breakdown = [
            _settlement("P001", PartnerType.MARKETPLACE, "1500.00", "45.00"),
            _settlement("P002", PartnerType.PAYMENT_PROCESSOR, "200.00", "6.00", adjustments="-10.00"),
        ]
        summary = summarize(breakdown, "USD", PaymentMethod.WIRE)

        assert summary.total_gross_amount == Decimal("1700.00")
        assert summary.total_fees == Decimal("51.00")
        assert summary.total_adjustments == Decimal("-10.00")
        assert summary.total_net_amount == Decimal("1639.00")
        assert summary.total_net_amount == sum_amounts(ps.net_amount for ps in breakdown)
        assert summary.partner_count == 2
        assert summary.total_transactions == 2

    def test_net_amount_formula(self):
        ps = _settlement("P001", PartnerType.MARKETPLACE, "1500.00", "45.00", adjustments="25.00")
        assert ps.net_amount == ps.gross_amount - ps.fees + ps.adjustments == Decimal("1480.00")

    def test_group_keys_sorted_and_status_complete(self):
        breakdown = [
            _settlement("P002", PartnerType.PLATFORM, "10", "0"),
            _settlement("P001", PartnerType.MARKETPLACE, "20", "0"),
        ]
        summary = summarize(breakdown, "USD", PaymentMethod.ACH)

        assert list(summary.by_partner_type) == ["marketplace", "platform"]
        assert summary.by_status == {"paid": 0, "pending": 2}
        assert summary.by_payment_method["ach"].count == 2
        assert summary.by_payment_method["ach"].amount == Decimal("30")

    def test_paid_partners_grouped_by_actual_method(self):
        paid = _settlement("P001", PartnerType.MARKETPLACE, "100", "0", status=PartnerSettlementStatus.PAID)
        paid.payment_details = PaymentDetails(method=PaymentMethod.WIRE, reference="PAY-1", paid_at=None)
        pending = _settlement("P002", PartnerType.MARKETPLACE, "50", "0")

        summary = summarize([paid, pending], "USD", PaymentMethod.BANK_TRANSFER)

        assert summary.by_payment_method["wire"].amount == Decimal("100")
        assert summary.by_payment_method["bank_transfer"].amount == Decimal("50")
        assert summary.by_partner_type["marketplace"].count == 2

    def test_empty_breakdown(self):
        summary = summarize([], "USD", PaymentMethod.BANK_TRANSFER)
        assert summary.total_net_amount == Decimal("0")
        assert summary.partner_count == 0
        assert summary.by_partner_type == {}


class TestMoney:
    def test_to_decimal_refuses_floats(self):
        with pytest.raises(ValidationError):
            to_decimal(0.1)

    def test_to_decimal_refuses_non_finite(self):
        with pytest.raises(ValidationError):
            to_decimal("NaN")

    def test_to_decimal_accepts_strings_and_ints(self):
        assert to_decimal("12.34") == Decimal("12.34")
        assert to_decimal(5) == Decimal("5")

    def test_sum_beyond_default_precision_is_exact(self):
        # 32 significant digits; the default 28-digit context would round this
        amounts = [Decimal("123456789012345678901234567890.12"), Decimal("0.01")]
        assert sum_amounts(amounts) == Decimal("123456789012345678901234567890.13")

    def test_sum_that_cannot_be_exact_is_refused(self):
        with pytest.raises(ValidationError):
            sum_amounts([Decimal("1E+70"), Decimal("1")])

    def test_quantize_uses_bankers_rounding(self):
        assert quantize_amount(Decimal("2.675"), "USD") == Decimal("2.68")
        assert quantize_amount(Decimal("2.665"), "USD") == Decimal("2.66")

    def test_quantize_respects_minor_units(self):
        assert quantize_amount(Decimal("1234.5"), "JPY") == Decimal("1234")
        assert quantize_amount(Decimal("1.0005"), "BHD") == Decimal("1.000")

    def test_transaction_rejects_unknown_type(self):
        from autorecon.models import Transaction

        with pytest.raises(ValidationError):
            Transaction(
                id="TXN-1", transaction_date=date(2025, 1, 1), type="bonus",
                amount=Decimal("1"), fee=Decimal("0"), currency="USD",
            )

    def test_transaction_normalizes_currency(self, make_txn):
        assert make_txn("1.00", currency="usd").currency == "USD"
