from autorecon.services.approvals import ApprovalService
from autorecon.services.audit import AuditTrail
from autorecon.services.events import EventBus
from autorecon.services.settlement_runs import SettlementRunService

__all__ = ["ApprovalService", "AuditTrail", "EventBus", "SettlementRunService"]
