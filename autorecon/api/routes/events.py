from typing import Optional

from fastapi import APIRouter, Depends, Query

from autorecon.dependencies import get_events
from autorecon.schemas.common import TransitionEventListResponse, TransitionEventResponse
from autorecon.services.events import EventBus

router = APIRouter()


@router.get("", response_model=TransitionEventListResponse)
def list_events(
    entity_id: Optional[str] = Query(None, description="Only events for this run or request"),
    event_type: Optional[str] = Query(None, description="e.g. approval_request.rejected"),
    since_id: int = Query(0, ge=0, description="Return events after this ID"),
    events: EventBus = Depends(get_events),
):
    """Transition event feed consumed by the notification collaborator."""
    published = events.published(entity_id=entity_id, event_type=event_type, since_id=since_id)
    return TransitionEventListResponse(
        events=[TransitionEventResponse.model_validate(e) for e in published],
        total=len(published),
    )
