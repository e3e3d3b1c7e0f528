from autorecon.config import settings
from autorecon.database import SessionLocal
from autorecon.services.events import EventBus
from autorecon.services.settlement_runs import follow_approvals

# Process-wide bus; runs follow their approval requests through it
event_bus = EventBus(max_events=settings.EVENT_RETENTION)
follow_approvals(event_bus, SessionLocal)


def get_events() -> EventBus:
    return event_bus
