from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from autorecon.database import get_db
from autorecon.dependencies import get_events
from autorecon.models.enums import ApprovalStatus, ApprovalType, Priority
from autorecon.schemas.approval import (
    ApprovalCreate,
    ApprovalListResponse,
    ApprovalRequestResponse,
    ApprovalStatsResponse,
    DecisionRequest,
    ReassignRequest,
)
from autorecon.services.approvals import ApprovalService
from autorecon.services.events import EventBus

router = APIRouter()


@router.get("", response_model=ApprovalListResponse)
def list_approvals(
    status: Optional[ApprovalStatus] = Query(None, description="Filter by status"),
    type: Optional[ApprovalType] = Query(None, description="Filter by request type"),
    priority: Optional[Priority] = Query(None, description="Filter by priority"),
    search: Optional[str] = Query(None, description="Match title, description or ID"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Approval inbox, newest first."""
    service = ApprovalService(db, events)
    result = service.list_requests(
        status=status, type=type, priority=priority, search=search, page=page, page_size=page_size
    )
    return ApprovalListResponse.model_validate(result)


@router.post("", response_model=ApprovalRequestResponse, status_code=201)
def create_approval(
    data: ApprovalCreate,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    request = service.create_request(
        type=data.type,
        title=data.title,
        description=data.description,
        priority=data.priority,
        requestor=data.requestor.to_actor(),
        payload=data.payload,
        changes=data.changes.to_change_set() if data.changes else None,
        metadata=data.metadata.to_metadata(),
        comment=data.comment,
    )
    return ApprovalRequestResponse.model_validate(request)


@router.get("/stats", response_model=ApprovalStatsResponse)
def get_approval_stats(
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    return ApprovalStatsResponse.model_validate(service.get_stats())


@router.get("/{request_id}", response_model=ApprovalRequestResponse)
def get_approval(
    request_id: str,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    return ApprovalRequestResponse.model_validate(service.get_request(request_id))


@router.post("/{request_id}/approve", response_model=ApprovalRequestResponse)
def approve_request(
    request_id: str,
    data: DecisionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Checker approval. The requestor may not approve their own request."""
    service = ApprovalService(db, events)
    request = service.approve(
        request_id, data.actor.to_actor(), comment=data.comment, expected_version=data.expected_version
    )
    return ApprovalRequestResponse.model_validate(request)


@router.post("/{request_id}/reject", response_model=ApprovalRequestResponse)
def reject_request(
    request_id: str,
    data: DecisionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    """Checker rejection. A reason is required."""
    service = ApprovalService(db, events)
    request = service.reject(
        request_id, data.actor.to_actor(), data.comment or "", expected_version=data.expected_version
    )
    return ApprovalRequestResponse.model_validate(request)


@router.post("/{request_id}/cancel", response_model=ApprovalRequestResponse)
def cancel_request(
    request_id: str,
    data: DecisionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    request = service.cancel(
        request_id, data.actor.to_actor(), comment=data.comment, expected_version=data.expected_version
    )
    return ApprovalRequestResponse.model_validate(request)


@router.post("/{request_id}/comments", response_model=ApprovalRequestResponse)
def comment_on_request(
    request_id: str,
    data: DecisionRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    request = service.add_comment(
        request_id, data.actor.to_actor(), data.comment or "", expected_version=data.expected_version
    )
    return ApprovalRequestResponse.model_validate(request)


@router.post("/{request_id}/reassign", response_model=ApprovalRequestResponse)
def reassign_request(
    request_id: str,
    data: ReassignRequest,
    db: Session = Depends(get_db),
    events: EventBus = Depends(get_events),
):
    service = ApprovalService(db, events)
    request = service.reassign(
        request_id,
        data.actor.to_actor(),
        data.assignee.to_actor(),
        comment=data.comment,
        expected_version=data.expected_version,
    )
    return ApprovalRequestResponse.model_validate(request)
