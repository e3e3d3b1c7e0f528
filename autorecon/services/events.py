"""In-process transition event bus.

Events are plain records published after a transition commits. Subscribers
(the settlement run machine, the notification collaborator) react to them; the
bus itself never sends anything anywhere. Only the most recent
``EVENT_RETENTION`` events stay readable through ``published``.
"""
import itertools
import logging
import threading
from collections import deque
from typing import Any, Callable, Optional

from autorecon.config import settings
from autorecon.models.audit import TransitionEvent
from autorecon.models.enums import EntityType
from autorecon.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[TransitionEvent], None]


class EventBus:
    def __init__(self, max_events: Optional[int] = None):
        self._handlers: list[tuple[Optional[str], Handler]] = []
        self._published: deque[TransitionEvent] = deque(maxlen=max_events or settings.EVENT_RETENTION)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler, event_type: Optional[str] = None) -> None:
        """Register a handler for one event type, or for every event when None."""
        self._handlers.append((event_type, handler))

    def emit(
        self,
        entity_type: EntityType,
        entity_id: str,
        event_type: str,
        from_status: Optional[str],
        to_status: str,
        actor_id: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> TransitionEvent:
        """Publish a committed transition.

        The emitting transition is already committed, so a failing handler is
        logged and never turns that commit into an error for the caller.
        """
        with self._lock:
            event = TransitionEvent(
                id=next(self._ids),
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                from_status=from_status,
                to_status=to_status,
                actor_id=actor_id,
                occurred_at=utc_now(),
                payload=payload or {},
            )
            self._published.append(event)

        logger.info(
            "event %s %s %s: %s -> %s",
            event.id, event.event_type, event.entity_id, event.from_status, event.to_status,
        )
        for wanted, handler in list(self._handlers):
            if wanted is None or wanted == event_type:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Handler %s failed on event %s (%s %s)",
                        getattr(handler, "__qualname__", handler), event.id, event.event_type, event.entity_id,
                    )
        return event

    def published(
        self,
        entity_id: Optional[str] = None,
        event_type: Optional[str] = None,
        since_id: int = 0,
    ) -> list[TransitionEvent]:
        with self._lock:
            events = list(self._published)
        return [
            e for e in events
            if e.id > since_id
            and (entity_id is None or e.entity_id == entity_id)
            and (event_type is None or e.event_type == event_type)
        ]
