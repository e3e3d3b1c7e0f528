"""
Generic maker-checker approval workflow.

pending -> approved | rejected | cancelled. Every terminal state refuses any
further operation with InvalidTransition. Each operation appends exactly one
history entry and at least one log entry, then publishes a transition event
once the change is committed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from autorecon.config import APPROVAL_DUE_DAYS, settings
from autorecon.database import next_sequence, unit_of_work
from autorecon.exceptions import (
    AuthorizationError,
    ConcurrentModification,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from autorecon.models.approval import ApprovalMetadata, ApprovalRequest, ChangeSet
from autorecon.models.audit import Actor
from autorecon.models.enums import (
    APPROVAL_TRANSITIONS,
    ApprovalStatus,
    ApprovalType,
    EntityType,
    HistoryAction,
    LogLevel,
    Priority,
)
from autorecon.models.settlement import SettlementRun
from autorecon.services.audit import AuditTrail
from autorecon.services.events import EventBus
from autorecon.services.pagination import Page, paginate
from autorecon.utils.date_utils import hours_between

logger = logging.getLogger(__name__)

EVENT_PREFIX = EntityType.APPROVAL_REQUEST.value


def approval_event(name: str) -> str:
    return f"{EVENT_PREFIX}.{name}"


@dataclass
class ApprovalStats:
    total_pending: int
    total_approved: int
    total_rejected: int
    total_cancelled: int
    avg_approval_time_hours: float
    overdue_count: int
    by_type: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)


@dataclass
class _Outcome:
    event: str
    from_status: ApprovalStatus
    actor: Actor
    payload: dict[str, Any] = field(default_factory=dict)


class ApprovalService:
    """Service owning every mutation of approval requests."""

    def __init__(self, db: Session, events: EventBus, audit: Optional[AuditTrail] = None):
        self.db = db
        self.events = events
        self.audit = audit or AuditTrail()

    # === CREATION & QUERIES ===

    def create_request(
        self,
        type: ApprovalType,
        title: str,
        requestor: Actor,
        metadata: ApprovalMetadata,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
        payload: Optional[dict[str, Any]] = None,
        changes: Optional[ChangeSet] = None,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        """Open a new pending request on behalf of its maker.

        A settlement_approval must name a settlement run that already links
        back to it, which in practice means it is opened by submitting the run.
        """
        request = self.open_request(
            type=type, title=title, requestor=requestor, metadata=metadata, description=description,
            priority=priority, payload=payload, changes=changes, comment=comment,
        )
        with unit_of_work(self.db, "Approval request", request.id):
            if request.type == ApprovalType.SETTLEMENT_APPROVAL:
                self._ensure_linked_run(request)
        self.publish_created(request)
        return request

    def open_request(
        self,
        type: ApprovalType,
        title: str,
        requestor: Actor,
        metadata: ApprovalMetadata,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
        payload: Optional[dict[str, Any]] = None,
        changes: Optional[ChangeSet] = None,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        """Validate and stage a request in the session; the caller commits it."""
        if not title or not title.strip():
            raise ValidationError("title is required")
        if not requestor.id:
            raise ValidationError("requestor id is required")
        if not metadata.entity_type or not metadata.entity_id:
            raise ValidationError("metadata.entity_type and metadata.entity_id are required")
        if metadata.risk_score is not None and not 0 <= metadata.risk_score <= 100:
            raise ValidationError("risk_score must be between 0 and 100", {"risk_score": metadata.risk_score})

        type = ApprovalType(type)
        priority = Priority(priority)
        now = self.audit.now()
        seq = next_sequence(self.db, ApprovalRequest.sequence)
        request = ApprovalRequest(
            id=f"APR-{seq:06d}",
            sequence=seq,
            type=type,
            title=title.strip(),
            description=description,
            priority=priority,
            status=ApprovalStatus.PENDING,
            requestor=requestor,
            entity_type=metadata.entity_type,
            entity_id=metadata.entity_id,
            amount=metadata.amount,
            currency=metadata.currency,
            risk_score=metadata.risk_score,
            payload=dict(payload or {}),
            changes=changes,
            created_at=now,
            updated_at=now,
            due_date=now + timedelta(days=APPROVAL_DUE_DAYS[priority.value]),
            history=[],
            logs=[],
        )
        self.audit.record(
            request, HistoryAction.CREATED, requestor,
            comment=comment or "Approval request created", at=now,
        )
        self.audit.log(
            request, LogLevel.INFO, "Approval request created",
            {"type": type.value, "priority": priority.value}, at=now,
        )
        self.db.add(request)
        return request

    def publish_created(self, request: ApprovalRequest) -> None:
        logger.info("Approval request %s (%s) created by %s", request.id, request.type.value, request.requestor.id)
        self.events.emit(
            EntityType.APPROVAL_REQUEST, request.id, approval_event("created"),
            from_status=None, to_status=request.status.value, actor_id=request.requestor.id,
            payload=self._event_payload(request),
        )

    def get_request(self, request_id: str) -> ApprovalRequest:
        return self._load(request_id)

    def list_requests(
        self,
        status: Optional[ApprovalStatus] = None,
        type: Optional[ApprovalType] = None,
        priority: Optional[Priority] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Page[ApprovalRequest]:
        query = select(ApprovalRequest)
        if status:
            query = query.where(ApprovalRequest.status == status)
        if type:
            query = query.where(ApprovalRequest.type == type)
        if priority:
            query = query.where(ApprovalRequest.priority == priority)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    ApprovalRequest.title.ilike(pattern),
                    ApprovalRequest.description.ilike(pattern),
                    ApprovalRequest.id.ilike(pattern),
                )
            )
        query = query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.sequence.desc())
        return paginate(self.db, query, page, page_size)

    def get_stats(self, now: Optional[datetime] = None) -> ApprovalStats:
        now = now or self.audit.now()
        requests = self.db.scalars(
            select(ApprovalRequest).execution_options(populate_existing=True)
        ).all()
        pending = [r for r in requests if r.status == ApprovalStatus.PENDING]
        decided = [r for r in requests if r.approved_at or r.rejected_at]

        decision_hours = [hours_between(r.created_at, r.approved_at or r.rejected_at) for r in decided]
        by_type: dict[str, int] = {}
        by_priority: dict[str, int] = {}
        for r in pending:
            by_type[r.type.value] = by_type.get(r.type.value, 0) + 1
            by_priority[r.priority.value] = by_priority.get(r.priority.value, 0) + 1

        return ApprovalStats(
            total_pending=len(pending),
            total_approved=sum(1 for r in requests if r.status == ApprovalStatus.APPROVED),
            total_rejected=sum(1 for r in requests if r.status == ApprovalStatus.REJECTED),
            total_cancelled=sum(1 for r in requests if r.status == ApprovalStatus.CANCELLED),
            avg_approval_time_hours=sum(decision_hours) / len(decision_hours) if decision_hours else 0.0,
            overdue_count=sum(1 for r in pending if r.due_date < now),
            by_type=dict(sorted(by_type.items())),
            by_priority=dict(sorted(by_priority.items())),
        )

    # === DECISIONS ===

    def approve(
        self,
        request_id: str,
        approver: Actor,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """Checker approves. The requestor can never approve their own request."""

        def apply(request: ApprovalRequest) -> _Outcome:
            self._ensure_transition(request, ApprovalStatus.APPROVED)
            self._ensure_checker(request, approver, "approve")
            decision = comment.strip() if comment and comment.strip() else "Approved"
            now = self.audit.now()

            previous = request.status
            request.status = ApprovalStatus.APPROVED
            request.approver = approver
            request.approved_at = now
            request.decision_comment = decision
            request.updated_at = now

            self.audit.record(request, HistoryAction.APPROVED, approver, comment=decision, at=now)
            self.audit.log(request, LogLevel.INFO, "Request approved", {"approver": approver.name}, at=now)
            risk = request.risk_score
            if risk is not None and risk > settings.HIGH_RISK_SCORE_THRESHOLD:
                self.audit.log(
                    request, LogLevel.WARNING, "High-risk request approved",
                    {"risk_score": risk, "threshold": settings.HIGH_RISK_SCORE_THRESHOLD}, at=now,
                )
            return _Outcome("approved", previous, approver, {"comment": decision})

        return self._mutate(request_id, expected_version, apply)

    def reject(
        self,
        request_id: str,
        approver: Actor,
        comment: str,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """Checker rejects. A non-empty reason is mandatory."""

        def apply(request: ApprovalRequest) -> _Outcome:
            self._ensure_transition(request, ApprovalStatus.REJECTED)
            if not comment or not comment.strip():
                raise ValidationError(
                    "A rejection reason is required", {"request_id": request.id}
                )
            self._ensure_checker(request, approver, "reject")
            reason = comment.strip()
            now = self.audit.now()

            previous = request.status
            request.status = ApprovalStatus.REJECTED
            request.approver = approver
            request.rejected_at = now
            request.decision_comment = reason
            request.updated_at = now

            self.audit.record(request, HistoryAction.REJECTED, approver, comment=reason, at=now)
            self.audit.log(
                request, LogLevel.WARNING, "Request rejected",
                {"approver": approver.name, "reason": reason}, at=now,
            )
            return _Outcome("rejected", previous, approver, {"comment": reason})

        return self._mutate(request_id, expected_version, apply)

    def cancel(
        self,
        request_id: str,
        actor: Actor,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """Maker withdraws a pending request. Only the requestor may cancel."""

        def apply(request: ApprovalRequest) -> _Outcome:
            self._ensure_transition(request, ApprovalStatus.CANCELLED)
            if actor.id != request.requestor.id:
                raise AuthorizationError(
                    "Only the requestor can cancel an approval request",
                    {"request_id": request.id, "actor_id": actor.id},
                )
            note = comment.strip() if comment and comment.strip() else "Cancelled by requestor"
            now = self.audit.now()

            previous = request.status
            request.status = ApprovalStatus.CANCELLED
            request.cancelled_at = now
            request.updated_at = now

            self.audit.record(request, HistoryAction.CANCELLED, actor, comment=note, at=now)
            self.audit.log(request, LogLevel.INFO, "Request cancelled", {"actor": actor.name}, at=now)
            return _Outcome("cancelled", previous, actor, {"comment": note})

        return self._mutate(request_id, expected_version, apply)

    def add_comment(
        self,
        request_id: str,
        actor: Actor,
        comment: str,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        def apply(request: ApprovalRequest) -> Optional[_Outcome]:
            self._ensure_pending(request, "comment on")
            if not comment or not comment.strip():
                raise ValidationError("comment must not be empty", {"request_id": request.id})
            now = self.audit.now()
            request.updated_at = now
            self.audit.record(request, HistoryAction.COMMENTED, actor, comment=comment.strip(), at=now)
            self.audit.log(request, LogLevel.INFO, "Comment added", {"actor": actor.name}, at=now)
            return None

        return self._mutate(request_id, expected_version, apply)

    def reassign(
        self,
        request_id: str,
        actor: Actor,
        assignee: Actor,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalRequest:
        """Route a pending request to a specific checker."""

        def apply(request: ApprovalRequest) -> _Outcome:
            self._ensure_pending(request, "reassign")
            if assignee.id == request.requestor.id:
                raise AuthorizationError(
                    "A request cannot be assigned to its own requestor",
                    {"request_id": request.id, "assignee_id": assignee.id},
                )
            now = self.audit.now()
            previous_assignee = request.assignee.id if request.assignee else None
            request.assignee = assignee
            request.updated_at = now

            self.audit.record(
                request, HistoryAction.REASSIGNED, actor, comment=comment,
                metadata={"from": previous_assignee, "to": assignee.id}, at=now,
            )
            self.audit.log(
                request, LogLevel.INFO, "Request reassigned",
                {"from": previous_assignee, "to": assignee.id}, at=now,
            )
            return _Outcome("reassigned", request.status, actor, {"assignee_id": assignee.id})

        return self._mutate(request_id, expected_version, apply)

    # === INTERNALS ===

    def _mutate(
        self,
        request_id: str,
        expected_version: Optional[int],
        apply: Callable[[ApprovalRequest], Optional[_Outcome]],
    ) -> ApprovalRequest:
        with unit_of_work(self.db, "Approval request", request_id):
            request = self._load(request_id)
            if expected_version is not None and expected_version != request.version:
                raise ConcurrentModification(
                    f"Approval request {request_id} was modified concurrently; reload and retry",
                    {"expected_version": expected_version, "current_version": request.version},
                )
            outcome = apply(request)

        if outcome is not None:
            logger.info(
                "Approval request %s %s by %s", request.id, outcome.event, outcome.actor.id
            )
            self.events.emit(
                EntityType.APPROVAL_REQUEST, request.id, approval_event(outcome.event),
                from_status=outcome.from_status.value, to_status=request.status.value,
                actor_id=outcome.actor.id,
                payload={**self._event_payload(request), **outcome.payload},
            )
        return request

    def _load(self, request_id: str) -> ApprovalRequest:
        request = self.db.get(ApprovalRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError(f"Approval request {request_id} not found", {"request_id": request_id})
        return request

    def _ensure_linked_run(self, request: ApprovalRequest) -> None:
        run = self.db.get(SettlementRun, request.entity_id)
        if request.entity_type != EntityType.SETTLEMENT_RUN.value or run is None:
            raise ValidationError(
                f"settlement_approval requests must name an existing settlement run, not "
                f"{request.entity_type} {request.entity_id}",
                {"entity_type": request.entity_type, "entity_id": request.entity_id},
            )
        if run.approval_request_id != request.id:
            raise ValidationError(
                f"Settlement run {run.id} is not linked to this request; submit the run for approval instead",
                {"run_id": run.id, "linked_request_id": run.approval_request_id},
            )

    @staticmethod
    def _ensure_transition(request: ApprovalRequest, target: ApprovalStatus) -> None:
        if target not in APPROVAL_TRANSITIONS[request.status]:
            raise InvalidTransition(
                f"Approval request {request.id} is {request.status.value} and cannot become {target.value}",
                {"request_id": request.id, "status": request.status.value, "target": target.value},
            )

    @staticmethod
    def _ensure_pending(request: ApprovalRequest, operation: str) -> None:
        if request.status != ApprovalStatus.PENDING:
            raise InvalidTransition(
                f"Cannot {operation} approval request {request.id}: it is {request.status.value}",
                {"request_id": request.id, "status": request.status.value},
            )

    @staticmethod
    def _ensure_checker(request: ApprovalRequest, approver: Actor, decision: str) -> None:
        if approver.id == request.requestor.id:
            raise AuthorizationError(
                f"The requestor cannot {decision} their own request",
                {"request_id": request.id, "actor_id": approver.id},
            )
        if request.assignee and approver.id != request.assignee.id:
            raise AuthorizationError(
                f"Request {request.id} is assigned to {request.assignee.id}",
                {"request_id": request.id, "actor_id": approver.id},
            )

    @staticmethod
    def _event_payload(request: ApprovalRequest) -> dict[str, Any]:
        return {
            "type": request.type.value,
            "priority": request.priority.value,
            "entity_type": request.entity_type,
            "entity_id": request.entity_id,
            "requestor_id": request.requestor.id,
        }
