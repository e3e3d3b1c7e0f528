import pytest
from datetime import date
from decimal import Decimal

from autorecon.exceptions import (
    ConcurrentModification,
    CurrencyMismatch,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from autorecon.models import SYSTEM_ACTOR, Partner
from autorecon.models.enums import (
    ApprovalStatus,
    ApprovalType,
    HistoryAction,
    LogLevel,
    PartnerSettlementStatus,
    PaymentMethod,
    SettlementRunStatus,
)
from autorecon.services import settlement_runs
from autorecon.services.settlement_runs import run_event

PERIOD_START = date(2025, 1, 1)
PERIOD_END = date(2025, 1, 31)


def _actions(run):
    return [entry.action for entry in run.history]


class TestCreateRun:
    def test_new_run_is_draft(self, draft_run, maker):
        assert draft_run.status == SettlementRunStatus.DRAFT
        assert draft_run.id == "SR-000001"
        assert draft_run.run_number.startswith("RUN-")
        assert draft_run.version == 1
        assert draft_run.partner_count == 2
        assert draft_run.total_amount == Decimal("0")
        assert [ps.id for ps in draft_run.breakdown] == ["PS-SR-000001-P001", "PS-SR-000001-P002"]
        assert _actions(draft_run) == [HistoryAction.CREATED]
        assert draft_run.history[0].actor == maker

    def test_period_must_be_ordered(self, run_service, maker, partners):
        with pytest.raises(ValidationError):
            run_service.create_run(
                period_start=date(2025, 2, 1),
                period_end=date(2025, 1, 1),
                payment_method=PaymentMethod.ACH,
                partners=partners,
                created_by=maker,
            )

    def test_duplicate_partners_rejected(self, run_service, maker, partners):
        with pytest.raises(ValidationError):
            run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.ACH, partners + partners[:1], maker)

    def test_currency_defaults_to_base_currency(self, run_service, maker, partners):
        run = run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.WIRE, partners, maker)
        assert run.currency == "USD"

    def test_add_partner_in_draft(self, run_service, draft_run, maker):
        partner = Partner(id="P003", code="SHOP", name="Shopify Stores")
        run = run_service.add_partner(draft_run.id, partner, maker)
        assert run.partner_count == 3
        assert _actions(run)[-1] == HistoryAction.PARTNER_ADDED

    def test_add_existing_partner_rejected(self, run_service, draft_run, maker, partners):
        with pytest.raises(ValidationError):
            run_service.add_partner(draft_run.id, partners[0], maker)


class TestAttachTransactions:
    def test_moves_run_to_calculating(self, run_service, draft_run, standard_transactions, maker):
        run = run_service.attach_transactions(draft_run.id, standard_transactions, maker)
        assert run.status == SettlementRunStatus.CALCULATING
        assert len(run.partner_settlement("P001").transactions) == 2
        assert _actions(run)[-1] == HistoryAction.CALCULATION_STARTED

    def test_transaction_outside_period_rejected(self, run_service, draft_run, make_txn, maker):
        late = make_txn("10.00", transaction_date=date(2025, 2, 1))
        with pytest.raises(ValidationError):
            run_service.attach_transactions(draft_run.id, {"P001": [late]}, maker)
        assert run_service.get_run(draft_run.id).status == SettlementRunStatus.DRAFT

    def test_unknown_partner_rejected(self, run_service, draft_run, make_txn, maker):
        with pytest.raises(ValidationError):
            run_service.attach_transactions(draft_run.id, {"P999": [make_txn()]}, maker)

    def test_duplicate_transaction_ids_rejected(self, run_service, draft_run, make_txn, maker):
        txn = make_txn(id="TXN-DUP")
        with pytest.raises(ValidationError):
            run_service.attach_transactions(draft_run.id, {"P001": [txn], "P002": [txn]}, maker)

    def test_run_without_partners_cannot_calculate(self, run_service, maker):
        run = run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.ACH, [], maker)
        with pytest.raises(ValidationError):
            run_service.attach_transactions(run.id, {}, maker)


class TestCalculate:
    def test_partner_and_run_totals(self, reviewed_run):
        ps = reviewed_run.partner_settlement("P001")
        assert ps.gross_amount == Decimal("1500.00")
        assert ps.fees == Decimal("45.00")
        assert ps.net_amount == Decimal("1455.00")
        assert ps.transaction_count == 2

        assert reviewed_run.status == SettlementRunStatus.PENDING_REVIEW
        assert reviewed_run.summary.total_gross_amount == Decimal("1700.00")
        assert reviewed_run.summary.total_fees == Decimal("51.00")
        assert reviewed_run.total_amount == Decimal("1649.00")
        assert reviewed_run.total_transactions == 3

    def test_two_partner_run(self, run_service, draft_run, make_txn, maker):
        run_service.attach_transactions(
            draft_run.id, {"P001": [make_txn("1000.00", "30.00")], "P002": [make_txn("500.00", "15.00")]}, maker
        )
        run = run_service.calculate(draft_run.id)

        assert run.partner_settlement("P001").net_amount == Decimal("970.00")
        assert run.partner_settlement("P002").net_amount == Decimal("485.00")
        assert run.summary.total_gross_amount == Decimal("1500.00")
        assert run.summary.total_fees == Decimal("45.00")
        assert run.summary.total_net_amount == Decimal("1455.00")
        assert run.total_amount == Decimal("1455.00")

    def test_history_grows_by_one_per_transition(self, reviewed_run):
        assert _actions(reviewed_run) == [
            HistoryAction.CREATED,
            HistoryAction.CALCULATION_STARTED,
            HistoryAction.CALCULATED,
        ]
        assert [e.id for e in reviewed_run.history] == [1, 2, 3]

    def test_calculate_requires_calculating(self, run_service, draft_run):
        with pytest.raises(InvalidTransition):
            run_service.calculate(draft_run.id)

    def test_parallel_calculation_matches_sequential(self, db, events, draft_run, standard_transactions, maker):
        parallel = settlement_runs.SettlementRunService(db, events, max_workers=4)
        parallel.attach_transactions(draft_run.id, standard_transactions, maker)
        run = parallel.calculate(draft_run.id)
        assert run.total_amount == Decimal("1649.00")

    def test_currency_mismatch_fails_run(self, run_service, draft_run, make_txn, maker):
        run_service.attach_transactions(
            draft_run.id, {"P001": [make_txn("10.00"), make_txn("10.00", currency="EUR", id="TXN-EUR")]}, maker
        )
        with pytest.raises(CurrencyMismatch):
            run_service.calculate(draft_run.id)

        run = run_service.get_run(draft_run.id)
        assert run.status == SettlementRunStatus.FAILED
        assert run.failure_reason
        failure = run.history[-1]
        assert failure.action == HistoryAction.FAILED
        assert failure.actor == SYSTEM_ACTOR
        assert failure.entry_metadata["system"] is True
        assert failure.entry_metadata["transaction_id"] == "TXN-EUR"
        assert run.logs[-1].level == LogLevel.ERROR
        assert run.total_amount == Decimal("0")

    def test_fail_during_calculation_discards_totals(
        self, run_service, draft_run, standard_transactions, maker, operator, monkeypatch
    ):
        run_service.attach_transactions(draft_run.id, standard_transactions, maker)
        real_aggregate = settlement_runs.aggregate_partners

        def interrupted(*args, **kwargs):
            run_service.fail_run(draft_run.id, operator, "Bank file withdrawn")
            return real_aggregate(*args, **kwargs)

        monkeypatch.setattr(settlement_runs, "aggregate_partners", interrupted)

        with pytest.raises(ConcurrentModification):
            run_service.calculate(draft_run.id)

        run = run_service.get_run(draft_run.id)
        assert run.status == SettlementRunStatus.FAILED
        assert run.failure_reason == "Bank file withdrawn"
        assert run.total_amount == Decimal("0")
        assert HistoryAction.CALCULATED not in _actions(run)


class TestAdjustments:
    def test_adjustment_recomputes_totals(self, run_service, reviewed_run, maker):
        run = run_service.set_adjustment(reviewed_run.id, "P001", "-55.00", maker, "Disputed chargeback")
        assert run.partner_settlement("P001").net_amount == Decimal("1400.00")
        assert run.summary.total_adjustments == Decimal("-55.00")
        assert run.total_amount == Decimal("1594.00")
        assert run.history[-1].action == HistoryAction.ADJUSTED
        assert run.history[-1].comment == "Disputed chargeback"

    def test_adjustment_replaces_previous_value(self, run_service, reviewed_run, maker):
        run_service.set_adjustment(reviewed_run.id, "P001", "10", maker, "First pass")
        run = run_service.set_adjustment(reviewed_run.id, "P001", "5", maker, "Corrected")
        assert run.partner_settlement("P001").adjustments == Decimal("5")

    def test_adjustment_requires_reason(self, run_service, reviewed_run, maker):
        with pytest.raises(ValidationError):
            run_service.set_adjustment(reviewed_run.id, "P001", "10", maker, "  ")

    def test_float_adjustment_refused(self, run_service, reviewed_run, maker):
        with pytest.raises(ValidationError):
            run_service.set_adjustment(reviewed_run.id, "P001", 10.5, maker, "Float")

    def test_no_adjustment_once_submitted(self, run_service, submitted_run, maker):
        with pytest.raises(InvalidTransition):
            run_service.set_adjustment(submitted_run.id, "P001", "10", maker, "Too late")

    def test_unknown_partner(self, run_service, reviewed_run, maker):
        with pytest.raises(NotFoundError):
            run_service.set_adjustment(reviewed_run.id, "P999", "10", maker, "Missing")


class TestApprovalLink:
    def test_submit_creates_settlement_approval(self, run_service, approval_service, submitted_run, maker):
        assert submitted_run.status == SettlementRunStatus.PENDING_APPROVAL
        request = approval_service.get_request(submitted_run.approval_request_id)
        assert request.type == ApprovalType.SETTLEMENT_APPROVAL
        assert request.status == ApprovalStatus.PENDING
        assert request.requestor == maker
        assert request.entity_id == submitted_run.id
        assert request.amount == Decimal("1649.00")

    def test_approval_moves_run_to_approved(self, run_service, approval_service, submitted_run, checker):
        approval_service.approve(submitted_run.approval_request_id, checker, "Looks good")
        run = run_service.get_run(submitted_run.id)
        assert run.status == SettlementRunStatus.APPROVED
        assert run.approved_by == checker
        assert run.history[-1].action == HistoryAction.APPROVED
        assert run.history[-1].comment == "Looks good"

    def test_rejection_returns_run_to_review(self, run_service, approval_service, submitted_run, checker):
        approval_service.reject(submitted_run.approval_request_id, checker, "Fees look wrong for P002")
        run = run_service.get_run(submitted_run.id)
        assert run.status == SettlementRunStatus.PENDING_REVIEW
        assert run.history[-1].action == HistoryAction.REJECTED
        assert run.history[-1].comment == "Fees look wrong for P002"
        assert run.approved_by is None

    def test_resubmit_after_rejection(self, run_service, approval_service, submitted_run, maker, checker):
        first_request = submitted_run.approval_request_id
        approval_service.reject(first_request, checker, "Adjust P001")
        run_service.set_adjustment(submitted_run.id, "P001", "-5", maker, "Per review")
        run = run_service.submit_for_approval(submitted_run.id, maker)
        assert run.approval_request_id != first_request

        approval_service.approve(run.approval_request_id, checker)
        assert run_service.get_run(run.id).status == SettlementRunStatus.APPROVED

    def test_cancelled_request_returns_run_to_review(self, run_service, approval_service, submitted_run, maker):
        approval_service.cancel(submitted_run.approval_request_id, maker)
        run = run_service.get_run(submitted_run.id)
        assert run.status == SettlementRunStatus.PENDING_REVIEW
        assert run.history[-1].action == HistoryAction.CANCELLED

    def test_decision_on_failed_run_is_ignored(self, run_service, approval_service, submitted_run, operator, checker):
        run_service.fail_run(submitted_run.id, operator, "Partner dispute")
        approval_service.approve(submitted_run.approval_request_id, checker)
        run = run_service.get_run(submitted_run.id)
        assert run.status == SettlementRunStatus.FAILED
        assert run.approved_by is None

    def test_submit_requires_pending_review(self, run_service, draft_run, maker):
        with pytest.raises(InvalidTransition):
            run_service.submit_for_approval(draft_run.id, maker)


class TestCompletion:
    @pytest.fixture
    def processing_run(self, run_service, approval_service, submitted_run, checker, operator):
        approval_service.approve(submitted_run.approval_request_id, checker)
        return run_service.start_processing(submitted_run.id, operator)

    def test_full_lifecycle(self, run_service, processing_run, operator):
        assert processing_run.status == SettlementRunStatus.PROCESSING
        run = run_service.mark_completed(processing_run.id, operator)

        assert run.status == SettlementRunStatus.COMPLETED
        assert run.completed_at is not None
        for ps in run.breakdown:
            assert ps.status == PartnerSettlementStatus.PAID
            assert ps.payment_details.method == PaymentMethod.BANK_TRANSFER
            assert ps.payment_details.reference == f"PAY-{run.run_number}-{ps.partner.id}"
        assert run.summary.by_status == {"paid": 2, "pending": 0}
        assert _actions(run) == [
            HistoryAction.CREATED,
            HistoryAction.CALCULATION_STARTED,
            HistoryAction.CALCULATED,
            HistoryAction.SUBMITTED,
            HistoryAction.APPROVED,
            HistoryAction.PROCESSING_STARTED,
            HistoryAction.COMPLETED,
        ]

    def test_mark_completed_is_idempotent(self, run_service, processing_run, operator):
        first = run_service.mark_completed(processing_run.id, operator)
        version, history, completed_at = first.version, len(first.history), first.completed_at
        second = run_service.mark_completed(processing_run.id, operator)
        assert second.version == version
        assert len(second.history) == history
        assert second.completed_at == completed_at

    def test_completion_requires_processing(self, run_service, reviewed_run, operator):
        with pytest.raises(InvalidTransition):
            run_service.mark_completed(reviewed_run.id, operator)

    def test_completed_run_cannot_fail(self, run_service, processing_run, operator):
        run_service.mark_completed(processing_run.id, operator)
        with pytest.raises(InvalidTransition):
            run_service.fail_run(processing_run.id, operator, "Too late")

    def test_partners_are_pending_until_completion(self, run_service, processing_run):
        assert all(ps.status == PartnerSettlementStatus.PENDING for ps in processing_run.breakdown)
        assert all(ps.payment_details is None for ps in processing_run.breakdown)


class TestFailRun:
    def test_force_fail_from_draft(self, run_service, draft_run, operator):
        run = run_service.fail_run(draft_run.id, operator, "Duplicate run")
        assert run.status == SettlementRunStatus.FAILED
        assert run.failure_reason == "Duplicate run"
        assert run.history[-1].entry_metadata == {"forced": True}

    def test_fail_requires_reason(self, run_service, draft_run, operator):
        with pytest.raises(ValidationError):
            run_service.fail_run(draft_run.id, operator, "")

    def test_failed_run_refuses_everything(self, run_service, reviewed_run, operator, maker):
        run_service.fail_run(reviewed_run.id, operator, "Stop")
        with pytest.raises(InvalidTransition):
            run_service.submit_for_approval(reviewed_run.id, maker)
        with pytest.raises(InvalidTransition):
            run_service.fail_run(reviewed_run.id, operator, "Again")
        with pytest.raises(InvalidTransition):
            run_service.set_adjustment(reviewed_run.id, "P001", "1", maker, "Late")


class TestConcurrency:
    def test_stale_version_rejected(self, run_service, draft_run, standard_transactions, maker):
        run_service.attach_transactions(draft_run.id, standard_transactions, maker, expected_version=1)
        with pytest.raises(ConcurrentModification):
            run_service.calculate(draft_run.id, expected_version=1)

    def test_failed_operation_leaves_state_untouched(self, run_service, draft_run, operator):
        before = run_service.get_run(draft_run.id)
        version, history, logs = before.version, len(before.history), len(before.logs)
        with pytest.raises(InvalidTransition):
            run_service.start_processing(draft_run.id, operator)
        after = run_service.get_run(draft_run.id)
        assert after.version == version
        assert len(after.history) == history
        assert len(after.logs) == logs

    def test_concurrent_commit_refuses_stale_write(
        self, run_service, session_factory, events, reviewed_run, maker, operator
    ):
        real_clock = run_service.audit.clock
        interrupted = []

        def clock():
            # Another writer commits while the adjustment is still being applied
            if not interrupted:
                interrupted.append(True)
                with session_factory() as other:
                    settlement_runs.SettlementRunService(other, events).fail_run(
                        reviewed_run.id, operator, "Bank file withdrawn"
                    )
            return real_clock()

        run_service.audit.clock = clock
        with pytest.raises(ConcurrentModification):
            run_service.set_adjustment(reviewed_run.id, "P001", "-5", maker, "Late dispute")

        run = run_service.get_run(reviewed_run.id)
        assert interrupted
        assert run.status == SettlementRunStatus.FAILED
        assert run.partner_settlement("P001").adjustments == Decimal("0")
        assert HistoryAction.ADJUSTED not in _actions(run)

    def test_reads_discard_uncommitted_edits(self, run_service, draft_run):
        loaded = run_service.get_run(draft_run.id)
        loaded.status = SettlementRunStatus.COMPLETED
        assert run_service.get_run(draft_run.id).status == SettlementRunStatus.DRAFT


class TestQueries:
    def test_partner_settlement_lookup(self, run_service, reviewed_run):
        ps = run_service.get_partner_settlement(reviewed_run.id, "P002")
        assert ps.net_amount == Decimal("194.00")
        with pytest.raises(NotFoundError):
            run_service.get_partner_settlement(reviewed_run.id, "P999")

    def test_unknown_run(self, run_service):
        with pytest.raises(NotFoundError):
            run_service.get_run("SR-999999")

    def test_list_filters_by_status(self, run_service, draft_run, maker, partners):
        run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.ACH, partners, maker)
        run_service.fail_run(draft_run.id, maker, "Superseded")

        page = run_service.list_runs(status=SettlementRunStatus.DRAFT)
        assert page.total == 1
        assert page.items[0].id == "SR-000002"
        assert run_service.list_runs().total == 2

    def test_stats(self, run_service, approval_service, submitted_run, checker, operator, maker, partners):
        approval_service.approve(submitted_run.approval_request_id, checker)
        run_service.start_processing(submitted_run.id, operator)
        run_service.mark_completed(submitted_run.id, operator)
        other = run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.ACH, partners, maker)
        run_service.fail_run(other.id, operator, "Duplicate")
        run_service.create_run(PERIOD_START, PERIOD_END, PaymentMethod.ACH, partners, maker)

        stats = run_service.get_stats()
        assert stats.total_runs == 3
        assert stats.completed_count == 1
        assert stats.failed_count == 1
        assert stats.pending_count == 1
        assert stats.settled_by_currency == {"USD": Decimal("1649.00")}
        assert stats.average_by_currency == {"USD": Decimal("1649.00")}
        assert stats.total_partners == 2

    def test_transition_events_published_after_commit(self, events, reviewed_run):
        published = events.published(entity_id=reviewed_run.id)
        assert [e.event_type for e in published] == [
            run_event("created"),
            run_event("calculating"),
            run_event("pending_review"),
        ]
        assert published[-1].from_status == "calculating"
        assert published[-1].to_status == "pending_review"
