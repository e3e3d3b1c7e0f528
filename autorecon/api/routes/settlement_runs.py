from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from autorecon.database import get_db
from autorecon.dependencies import get_events
from autorecon.models.enums import SettlementRunStatus
from autorecon.schemas.common import TransitionRequest
from autorecon.schemas.settlement import (
    AddPartnerRequest,
    AdjustmentRequest,
    AttachTransactionsRequest,
    FailRunRequest,
    PartnerSettlementResponse,
    SettlementRunCreate,
    SettlementRunListResponse,
    SettlementRunResponse,
    SettlementStatsResponse,
    SubmitForApprovalRequest,
)
from autorecon.services.events import EventBus
from autorecon.services.settlement_runs import SettlementRunService

router = APIRouter()


@router.get("", response_model=SettlementRunListResponse)
def list_settlement_runs(
    status: Optional[SettlementRunStatus] = Query(None, description="Filter by run status"),
    search: Optional[str] = Query(None, description="Match run number or ID"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """List settlement runs, newest first."""
    service = SettlementRunService(db, events)
    result = service.list_runs(status=status, search=search, page=page, page_size=page_size)
    return SettlementRunListResponse.model_validate(result)


@router.post("", response_model=SettlementRunResponse, status_code=201)
def create_settlement_run(
    data: SettlementRunCreate,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Create a draft settlement run for the given partners and period."""
    service = SettlementRunService(db, events)
    run = service.create_run(
        period_start=data.period_start,
        period_end=data.period_end,
        payment_method=data.payment_method,
        partners=[p.to_partner() for p in data.partners],
        created_by=data.created_by.to_actor(),
        currency=data.currency,
        notes=data.notes,
    )
    return SettlementRunResponse.model_validate(run)


@router.get("/stats", response_model=SettlementStatsResponse)
def get_settlement_stats(
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Headline numbers for the settlement dashboard."""
    service = SettlementRunService(db, events)
    return SettlementStatsResponse.model_validate(service.get_stats())


@router.get("/{run_id}", response_model=SettlementRunResponse)
def get_settlement_run(
    run_id: str,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = SettlementRunService(db, events)
    return SettlementRunResponse.model_validate(service.get_run(run_id))


@router.get("/{run_id}/partners/{partner_id}", response_model=PartnerSettlementResponse)
def get_partner_settlement(
    run_id: str,
    partner_id: str,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = SettlementRunService(db, events)
    return PartnerSettlementResponse.model_validate(service.get_partner_settlement(run_id, partner_id))


@router.post("/{run_id}/partners", response_model=SettlementRunResponse)
def add_partner(
    run_id: str,
    data: AddPartnerRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Add a partner to a draft run."""
    service = SettlementRunService(db, events)
    run = service.add_partner(
        run_id, data.partner.to_partner(), data.actor.to_actor(), expected_version=data.expected_version
    )
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/transactions", response_model=SettlementRunResponse)
def attach_transactions(
    run_id: str,
    data: AttachTransactionsRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Attach the period's transactions; the run moves to calculating."""
    service = SettlementRunService(db, events)
    transactions = {
        partner_id: [txn.to_transaction() for txn in txns]
        for partner_id, txns in data.transactions.items()
    }
    run = service.attach_transactions(
        run_id, transactions, data.actor.to_actor(), expected_version=data.expected_version
    )
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/calculate", response_model=SettlementRunResponse)
def calculate_settlement_run(
    run_id: str,
    data: TransitionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Aggregate every partner; the run moves to pending_review."""
    service = SettlementRunService(db, events)
    run = service.calculate(run_id, data.actor.to_actor(), expected_version=data.expected_version)
    return SettlementRunResponse.model_validate(run)


@router.put("/{run_id}/partners/{partner_id}/adjustment", response_model=SettlementRunResponse)
def set_partner_adjustment(
    run_id: str,
    partner_id: str,
    data: AdjustmentRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Replace a partner's manual adjustment."""
    service = SettlementRunService(db, events)
    run = service.set_adjustment(
        run_id, partner_id, data.amount, data.actor.to_actor(), data.reason,
        expected_version=data.expected_version,
    )
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/submit", response_model=SettlementRunResponse)
def submit_for_approval(
    run_id: str,
    data: SubmitForApprovalRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Open the settlement approval request; the run moves to pending_approval."""
    service = SettlementRunService(db, events)
    run = service.submit_for_approval(
        run_id,
        data.actor.to_actor(),
        priority=data.priority,
        comment=data.comment,
        risk_score=data.risk_score,
        expected_version=data.expected_version,
    )
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/process", response_model=SettlementRunResponse)
def start_processing(
    run_id: str,
    data: TransitionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = SettlementRunService(db, events)
    run = service.start_processing(run_id, data.actor.to_actor(), expected_version=data.expected_version)
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/complete", response_model=SettlementRunResponse)
def mark_completed(
    run_id: str,
    data: TransitionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Pay every partner settlement and complete the run."""
    service = SettlementRunService(db, events)
    run = service.mark_completed(run_id, data.actor.to_actor(), expected_version=data.expected_version)
    return SettlementRunResponse.model_validate(run)


@router.post("/{run_id}/fail", response_model=SettlementRunResponse)
def fail_settlement_run(
    run_id: str,
    data: FailRunRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Force a non-terminal run into failed."""
    service = SettlementRunService(db, events)
    run = service.fail_run(
        run_id, data.actor.to_actor(), data.reason, expected_version=data.expected_version
    )
    return SettlementRunResponse.model_validate(run)
