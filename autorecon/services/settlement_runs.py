"""
Settlement run lifecycle.

draft -> calculating -> pending_review -> pending_approval -> approved
      -> processing -> completed, with failed reachable from every
non-terminal state. Approval is delegated to a linked settlement_approval
request; the run follows that request through its transition events.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from autorecon.config import settings
from autorecon.database import next_sequence, unit_of_work
from autorecon.exceptions import (
    ConcurrentModification,
    CurrencyMismatch,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from autorecon.models.approval import ApprovalMetadata, ApprovalRequest
from autorecon.models.audit import SYSTEM_ACTOR, Actor, TransitionEvent
from autorecon.models.enums import (
    SETTLEMENT_RUN_TRANSITIONS,
    ApprovalStatus,
    ApprovalType,
    EntityType,
    HistoryAction,
    LogLevel,
    PartnerSettlementStatus,
    PaymentMethod,
    Priority,
    SettlementRunStatus,
)
from autorecon.models.settlement import (
    Partner,
    PartnerSettlement,
    PaymentDetails,
    SettlementRun,
)
from autorecon.models.transaction import SettlementTransaction, Transaction
from autorecon.services.aggregation import aggregate_partners, apply_partner_totals
from autorecon.services.approvals import ApprovalService, approval_event
from autorecon.services.audit import AuditTrail
from autorecon.services.events import EventBus
from autorecon.services.pagination import Page, paginate
from autorecon.utils.date_utils import within_period
from autorecon.utils.money import sum_amounts, to_decimal

logger = logging.getLogger(__name__)

EVENT_PREFIX = EntityType.SETTLEMENT_RUN.value
ADJUSTABLE_STATUSES = frozenset({SettlementRunStatus.DRAFT, SettlementRunStatus.PENDING_REVIEW})


def run_event(name: str) -> str:
    return f"{EVENT_PREFIX}.{name}"


def follow_approvals(events: EventBus, session_factory: Callable[[], Session]) -> None:
    """Keep runs in step with their linked approval requests.

    Each decision is applied in a session of its own, after the request's
    decision has committed.
    """

    def on_decision(event: TransitionEvent) -> None:
        with session_factory() as db:
            SettlementRunService(db, events).on_approval_event(event)

    for name in ("approved", "rejected", "cancelled"):
        events.subscribe(on_decision, approval_event(name))


@dataclass
class SettlementStats:
    total_runs: int
    pending_count: int
    completed_count: int
    failed_count: int
    settled_by_currency: dict[str, Decimal]
    average_by_currency: dict[str, Decimal]
    total_partners: int
    recent_runs: list[SettlementRun] = field(default_factory=list)


@dataclass
class _Outcome:
    actor: Actor
    event: Optional[str] = None
    from_status: Optional[SettlementRunStatus] = None
    payload: dict[str, Any] = field(default_factory=dict)


class SettlementRunService:
    """Service owning every mutation of settlement runs and their partner settlements."""

    def __init__(
        self,
        db: Session,
        events: EventBus,
        audit: Optional[AuditTrail] = None,
        approvals: Optional[ApprovalService] = None,
        max_workers: Optional[int] = None,
    ):
        self.db = db
        self.events = events
        self.audit = audit or AuditTrail()
        self.approvals = approvals or ApprovalService(db, events, self.audit)
        self.max_workers = max_workers or settings.AGGREGATION_MAX_WORKERS

    # === CREATION ===

    def create_run(
        self,
        period_start: date,
        period_end: date,
        payment_method: PaymentMethod,
        partners: list[Partner],
        created_by: Actor,
        currency: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementRun:
        currency = (currency or settings.BASE_CURRENCY).upper()
        if len(currency) != 3:
            raise ValidationError("currency must be a 3-letter ISO code", {"currency": currency})
        if period_end < period_start:
            raise ValidationError(
                "period_end must not be before period_start",
                {"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
            )
        partner_ids = [p.id for p in partners]
        duplicates = sorted({pid for pid in partner_ids if partner_ids.count(pid) > 1})
        if duplicates:
            raise ValidationError("Partners must be unique within a run", {"duplicates": duplicates})

        payment_method = PaymentMethod(payment_method)
        seq = next_sequence(self.db, SettlementRun.sequence)
        now = self.audit.now()
        run_id = f"SR-{seq:06d}"
        run = SettlementRun(
            id=run_id,
            sequence=seq,
            run_number=f"RUN-{now.year}-{seq:04d}",
            run_date=now,
            period_start=period_start,
            period_end=period_end,
            status=SettlementRunStatus.DRAFT,
            currency=currency,
            payment_method=payment_method,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            notes=notes,
            breakdown=[PartnerSettlement.for_partner(run_id, p, currency) for p in partners],
            history=[],
            logs=[],
        )
        self.audit.record(run, HistoryAction.CREATED, created_by, comment=notes, at=now)
        self.audit.log(
            run, LogLevel.INFO, "Settlement run created",
            {"partner_count": len(partners), "currency": currency}, at=now,
        )
        with unit_of_work(self.db, "Settlement run", run_id):
            self.db.add(run)
        logger.info("Settlement run %s created by %s with %d partners", run.id, created_by.id, len(partners))

        self.events.emit(
            EntityType.SETTLEMENT_RUN, run.id, run_event("created"),
            from_status=None, to_status=run.status.value, actor_id=created_by.id,
            payload={"run_number": run.run_number},
        )
        return run

    def add_partner(
        self,
        run_id: str,
        partner: Partner,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        def apply(run: SettlementRun) -> _Outcome:
            if run.status != SettlementRunStatus.DRAFT:
                raise InvalidTransition(
                    f"Partners can only be added to a draft run; {run.id} is {run.status.value}",
                    {"run_id": run.id, "status": run.status.value},
                )
            if run.partner_settlement(partner.id):
                raise ValidationError(
                    f"Partner {partner.id} is already part of run {run.id}", {"partner_id": partner.id}
                )
            run.breakdown.append(PartnerSettlement.for_partner(run.id, partner, run.currency))
            self.audit.record(run, HistoryAction.PARTNER_ADDED, actor, metadata={"partner_id": partner.id})
            self.audit.log(run, LogLevel.INFO, "Partner added", {"partner_id": partner.id})
            return _Outcome(actor)

        return self._mutate(run_id, expected_version, apply)

    # === CALCULATION ===

    def attach_transactions(
        self,
        run_id: str,
        transactions_by_partner: Mapping[str, list[Transaction]],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Attach the period's transactions and move the run into calculating."""

        def apply(run: SettlementRun) -> _Outcome:
            self._ensure_transition(run, SettlementRunStatus.CALCULATING)
            if not run.breakdown:
                raise ValidationError(f"Run {run.id} has no partners to settle", {"run_id": run.id})

            unknown = sorted(pid for pid in transactions_by_partner if run.partner_settlement(pid) is None)
            if unknown:
                raise ValidationError(
                    f"Transactions reference partners outside run {run.id}", {"partner_ids": unknown}
                )

            seen: set[str] = set()
            for partner_id, transactions in transactions_by_partner.items():
                for txn in transactions:
                    if txn.id in seen:
                        raise ValidationError(
                            f"Transaction {txn.id} is attached more than once", {"transaction_id": txn.id}
                        )
                    seen.add(txn.id)
                    if not within_period(txn.transaction_date, run.period_start, run.period_end):
                        raise ValidationError(
                            f"Transaction {txn.id} is dated outside the run period",
                            {"transaction_id": txn.id, "transaction_date": txn.transaction_date.isoformat(),
                             "period_start": run.period_start.isoformat(),
                             "period_end": run.period_end.isoformat()},
                        )

            for ps in run.breakdown:
                ps.transactions = [
                    SettlementTransaction.from_transaction(txn)
                    for txn in transactions_by_partner.get(ps.partner_id, [])
                ]

            return self._move(
                run, SettlementRunStatus.CALCULATING, HistoryAction.CALCULATION_STARTED, actor,
                metadata={"transaction_count": len(seen)},
                message="Transactions attached; calculation started",
            )

        return self._mutate(run_id, expected_version, apply)

    def calculate(
        self,
        run_id: str,
        actor: Actor = SYSTEM_ACTOR,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Aggregate every partner and move the run to pending_review.

        Aggregation runs on plain transaction values, outside any database
        transaction. The totals are committed only if the run still carries
        the version it was read at; if an operator failed it meanwhile the
        commit is refused with ConcurrentModification and the totals are
        dropped. A currency mismatch fails the run and is re-raised.
        """
        run = self._load(run_id)
        self._check_expected(run, expected_version)
        self._ensure_transition(run, SettlementRunStatus.PENDING_REVIEW)
        read_version = run.version
        currency = run.currency
        inputs = {
            ps.partner_id: [txn.to_transaction() for txn in ps.transactions]
            for ps in run.breakdown
        }
        self.db.rollback()

        try:
            totals = aggregate_partners(inputs, currency, self.max_workers)
        except CurrencyMismatch as exc:
            logger.warning("Aggregation of run %s failed: %s", run_id, exc)
            self._fail_on_currency_mismatch(run_id, read_version, exc)
            raise

        def apply(run: SettlementRun) -> _Outcome:
            self._ensure_transition(run, SettlementRunStatus.PENDING_REVIEW)
            for ps in run.breakdown:
                apply_partner_totals(ps, totals[ps.partner_id])
            summary = run.summary
            return self._move(
                run, SettlementRunStatus.PENDING_REVIEW, HistoryAction.CALCULATED, actor,
                metadata={"total_net_amount": str(summary.total_net_amount),
                          "total_transactions": summary.total_transactions},
                message="Settlement calculated",
            )

        return self._mutate(run_id, read_version, apply)

    def set_adjustment(
        self,
        run_id: str,
        partner_id: str,
        amount,
        actor: Actor,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Replace a partner's manual adjustment; run totals follow from the breakdown."""
        amount = to_decimal(amount, "adjustments")

        def apply(run: SettlementRun) -> _Outcome:
            if run.status not in ADJUSTABLE_STATUSES:
                raise InvalidTransition(
                    f"Adjustments are not allowed while run {run.id} is {run.status.value}",
                    {"run_id": run.id, "status": run.status.value},
                )
            if not reason or not reason.strip():
                raise ValidationError("An adjustment reason is required", {"partner_id": partner_id})
            ps = self._require_partner(run, partner_id)

            previous = ps.adjustments
            ps.adjustments = amount
            details = {"partner_id": partner_id, "previous": str(previous), "adjustments": str(amount)}
            self.audit.record(run, HistoryAction.ADJUSTED, actor, comment=reason.strip(), metadata=details)
            self.audit.log(run, LogLevel.INFO, "Partner adjustment updated", details)
            return _Outcome(actor)

        return self._mutate(run_id, expected_version, apply)

    # === APPROVAL ===

    def submit_for_approval(
        self,
        run_id: str,
        actor: Actor,
        priority: Priority = Priority.HIGH,
        comment: Optional[str] = None,
        risk_score: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Open a settlement_approval request for the run; the submitter is its maker.

        The request and the run's link to it commit together.
        """
        opened: list[ApprovalRequest] = []

        def apply(run: SettlementRun) -> _Outcome:
            self._ensure_transition(run, SettlementRunStatus.PENDING_APPROVAL)
            request = self.approvals.open_request(
                type=ApprovalType.SETTLEMENT_APPROVAL,
                title=f"Settlement Run Approval - {run.run_number}",
                description="Settlement run ready for approval before processing payments to partners.",
                requestor=actor,
                priority=priority,
                metadata=ApprovalMetadata(
                    entity_type=EVENT_PREFIX,
                    entity_id=run.id,
                    amount=run.total_amount,
                    currency=run.currency,
                    risk_score=risk_score,
                ),
                payload={
                    "run_number": run.run_number,
                    "period_start": run.period_start.isoformat(),
                    "period_end": run.period_end.isoformat(),
                    "partner_count": run.partner_count,
                    "total_transactions": run.total_transactions,
                },
                comment=comment,
            )
            opened.append(request)
            run.approval_request_id = request.id
            return self._move(
                run, SettlementRunStatus.PENDING_APPROVAL, HistoryAction.SUBMITTED, actor,
                comment=comment, metadata={"approval_request_id": request.id},
                message="Submitted for approval",
            )

        run = self._mutate(run_id, expected_version, apply)
        self.approvals.publish_created(opened[0])
        return run

    def on_approval_event(self, event: TransitionEvent) -> None:
        """Follow a linked settlement_approval request into approved or back to review."""
        payload = event.payload
        if payload.get("type") != ApprovalType.SETTLEMENT_APPROVAL.value:
            return
        if payload.get("entity_type") != EVENT_PREFIX:
            return

        run_id = payload["entity_id"]
        if self.db.get(SettlementRun, run_id) is None:
            logger.warning("Ignoring decision on %s: settlement run %s does not exist", event.entity_id, run_id)
            return
        if event.event_type == approval_event("approved"):
            self._apply_approval(run_id, event.entity_id)
        else:
            self._return_to_review(run_id, event.entity_id)

    def _apply_approval(self, run_id: str, request_id: str) -> SettlementRun:
        def apply(run: SettlementRun) -> Optional[_Outcome]:
            if not self._follows_request(run, request_id):
                return None
            request = self.approvals.get_request(request_id)
            if request.status != ApprovalStatus.APPROVED:
                raise InvalidTransition(
                    f"Run {run.id} cannot be approved: request {request_id} is {request.status.value}",
                    {"run_id": run.id, "request_id": request_id},
                )
            run.approved_by = request.approver
            return self._move(
                run, SettlementRunStatus.APPROVED, HistoryAction.APPROVED, request.approver,
                comment=request.decision_comment, metadata={"approval_request_id": request_id},
                message="Approval request approved",
            )

        return self._mutate(run_id, None, apply)

    def _return_to_review(self, run_id: str, request_id: str) -> SettlementRun:
        def apply(run: SettlementRun) -> Optional[_Outcome]:
            if not self._follows_request(run, request_id):
                return None
            request = self.approvals.get_request(request_id)
            if request.status == ApprovalStatus.REJECTED:
                action, actor, level = HistoryAction.REJECTED, request.approver, LogLevel.WARNING
            elif request.status == ApprovalStatus.CANCELLED:
                action, actor, level = HistoryAction.CANCELLED, request.requestor, LogLevel.INFO
            else:
                raise InvalidTransition(
                    f"Run {run.id} cannot return to review: request {request_id} is {request.status.value}",
                    {"run_id": run.id, "request_id": request_id},
                )
            return self._move(
                run, SettlementRunStatus.PENDING_REVIEW, action, actor,
                comment=request.decision_comment,
                metadata={"approval_request_id": request_id},
                message=f"Approval request {request.status.value}; run returned to review",
                level=level,
            )

        return self._mutate(run_id, None, apply)

    def _follows_request(self, run: SettlementRun, request_id: str) -> bool:
        if run.approval_request_id != request_id:
            logger.warning(
                "Ignoring decision on %s: run %s is linked to %s",
                request_id, run.id, run.approval_request_id,
            )
            return False
        if run.status != SettlementRunStatus.PENDING_APPROVAL:
            logger.warning(
                "Ignoring decision on %s: run %s is %s, not pending_approval",
                request_id, run.id, run.status.value,
            )
            return False
        return True

    # === PAYMENT ===

    def start_processing(
        self,
        run_id: str,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        def apply(run: SettlementRun) -> _Outcome:
            return self._move(
                run, SettlementRunStatus.PROCESSING, HistoryAction.PROCESSING_STARTED, actor,
                message="Disbursement started",
            )

        return self._mutate(run_id, expected_version, apply)

    def mark_completed(
        self,
        run_id: str,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Pay every partner settlement and complete the run.

        This is the only path that sets a partner settlement to paid. Calling
        it again on a completed run returns the run untouched.
        """

        def apply(run: SettlementRun) -> Optional[_Outcome]:
            if run.status == SettlementRunStatus.COMPLETED:
                return None
            self._ensure_transition(run, SettlementRunStatus.COMPLETED)

            now = self.audit.now()
            for ps in run.breakdown:
                ps.status = PartnerSettlementStatus.PAID
                ps.payment_details = PaymentDetails(
                    method=run.payment_method,
                    reference=self._payment_reference(run, ps),
                    paid_at=now,
                )
            run.completed_at = now
            return self._move(
                run, SettlementRunStatus.COMPLETED, HistoryAction.COMPLETED, actor,
                metadata={"paid_partners": len(run.breakdown),
                          "total_net_amount": str(run.total_amount)},
                message="All partner settlements paid",
            )

        return self._mutate(run_id, expected_version, apply)

    def fail_run(
        self,
        run_id: str,
        actor: Actor,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> SettlementRun:
        """Operator force-fail from any non-terminal state."""
        if not reason or not reason.strip():
            raise ValidationError("A failure reason is required", {"run_id": run_id})

        def apply(run: SettlementRun) -> _Outcome:
            self._ensure_transition(run, SettlementRunStatus.FAILED)
            run.failure_reason = reason.strip()
            return self._move(
                run, SettlementRunStatus.FAILED, HistoryAction.FAILED, actor,
                comment=run.failure_reason, metadata={"forced": True},
                message="Run failed by operator", level=LogLevel.ERROR,
            )

        return self._mutate(run_id, expected_version, apply)

    def _fail_on_currency_mismatch(self, run_id: str, read_version: int, exc: CurrencyMismatch) -> None:
        def apply(run: SettlementRun) -> _Outcome:
            self._ensure_transition(run, SettlementRunStatus.FAILED)
            run.failure_reason = exc.message
            return self._move(
                run, SettlementRunStatus.FAILED, HistoryAction.FAILED, SYSTEM_ACTOR,
                comment=exc.message,
                metadata={"system": True, "error": type(exc).__name__, **exc.details},
                message="Aggregation failed: currency mismatch", level=LogLevel.ERROR,
            )

        self._mutate(run_id, read_version, apply)

    # === QUERIES ===

    def get_run(self, run_id: str) -> SettlementRun:
        return self._load(run_id)

    def get_partner_settlement(self, run_id: str, partner_id: str) -> PartnerSettlement:
        return self._require_partner(self._load(run_id), partner_id)

    def list_runs(
        self,
        status: Optional[SettlementRunStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Page[SettlementRun]:
        query = select(SettlementRun)
        if status:
            query = query.where(SettlementRun.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(SettlementRun.run_number.ilike(pattern), SettlementRun.id.ilike(pattern)))
        query = query.order_by(SettlementRun.created_at.desc(), SettlementRun.sequence.desc())
        return paginate(self.db, query, page, page_size)

    def get_stats(self) -> SettlementStats:
        runs = self.db.scalars(
            select(SettlementRun)
            .order_by(SettlementRun.created_at.desc(), SettlementRun.sequence.desc())
            .execution_options(populate_existing=True)
        ).all()
        completed = [r for r in runs if r.status == SettlementRunStatus.COMPLETED]
        failed = [r for r in runs if r.status == SettlementRunStatus.FAILED]

        settled: dict[str, Decimal] = {}
        average: dict[str, Decimal] = {}
        for currency in sorted({r.currency for r in completed}):
            amounts = [r.total_amount for r in completed if r.currency == currency]
            settled[currency] = sum_amounts(amounts)
            average[currency] = settled[currency] / len(amounts)

        return SettlementStats(
            total_runs=len(runs),
            pending_count=len(runs) - len(completed) - len(failed),
            completed_count=len(completed),
            failed_count=len(failed),
            settled_by_currency=settled,
            average_by_currency=average,
            total_partners=len({ps.partner_id for r in runs for ps in r.breakdown}),
            recent_runs=list(runs[:5]),
        )

    # === INTERNALS ===

    def _mutate(
        self,
        run_id: str,
        expected_version: Optional[int],
        apply: Callable[[SettlementRun], Optional[_Outcome]],
    ) -> SettlementRun:
        with unit_of_work(self.db, "Settlement run", run_id):
            run = self._load(run_id)
            self._check_expected(run, expected_version)
            outcome = apply(run)
            if outcome is not None:
                run.updated_at = self.audit.now()

        if outcome is not None and outcome.event:
            self.events.emit(
                EntityType.SETTLEMENT_RUN, run.id, run_event(outcome.event),
                from_status=outcome.from_status.value if outcome.from_status else None,
                to_status=run.status.value, actor_id=outcome.actor.id,
                payload={"run_number": run.run_number, **outcome.payload},
            )
        return run

    def _load(self, run_id: str) -> SettlementRun:
        run = self.db.get(SettlementRun, run_id, populate_existing=True)
        if run is None:
            raise NotFoundError(f"Settlement run {run_id} not found", {"run_id": run_id})
        return run

    def _move(
        self,
        run: SettlementRun,
        target: SettlementRunStatus,
        action: HistoryAction,
        actor: Actor,
        comment: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        message: str = "",
        level: LogLevel = LogLevel.INFO,
    ) -> _Outcome:
        self._ensure_transition(run, target)
        previous = run.status
        run.status = target
        now = self.audit.now()
        self.audit.record(run, action, actor, comment=comment, metadata=metadata, at=now)
        self.audit.log(
            run, level, message or f"Status changed to {target.value}",
            {"from": previous.value, "to": target.value}, at=now,
        )
        logger.info("Settlement run %s: %s -> %s (%s)", run.id, previous.value, target.value, actor.id)
        return _Outcome(actor, event=target.value, from_status=previous, payload=metadata or {})

    @staticmethod
    def _ensure_transition(run: SettlementRun, target: SettlementRunStatus) -> None:
        if target not in SETTLEMENT_RUN_TRANSITIONS[run.status]:
            raise InvalidTransition(
                f"Settlement run {run.id} is {run.status.value} and cannot become {target.value}",
                {"run_id": run.id, "status": run.status.value, "target": target.value},
            )

    @staticmethod
    def _check_expected(run: SettlementRun, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != run.version:
            raise ConcurrentModification(
                f"Settlement run {run.id} was modified concurrently; reload and retry",
                {"expected_version": expected_version, "current_version": run.version},
            )

    @staticmethod
    def _require_partner(run: SettlementRun, partner_id: str) -> PartnerSettlement:
        ps = run.partner_settlement(partner_id)
        if ps is None:
            raise NotFoundError(
                f"Partner {partner_id} not found in settlement run {run.id}",
                {"run_id": run.id, "partner_id": partner_id},
            )
        return ps

    @staticmethod
    def _payment_reference(run: SettlementRun, ps: PartnerSettlement) -> str:
        return f"{settings.PAYMENT_REFERENCE_PREFIX}-{run.run_number}-{ps.partner_id}"
