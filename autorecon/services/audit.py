"""Append-only history and log trail shared by settlement runs and approval requests."""
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from autorecon.models.audit import Actor, HistoryEntry, LogEntry
from autorecon.models.enums import HistoryAction, LogLevel
from autorecon.utils.date_utils import utc_now


class Audited(Protocol):
    history: list[HistoryEntry]
    logs: list[LogEntry]


class AuditTrail:
    """Builds history and log entries for one entity at a time.

    Entry ids are a per-entity sequence: the next id is one past the highest id
    already on the entity, so ids only ever increase. Timestamps always come from
    the server clock at the moment of the call.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    def record(
        self,
        entity: Audited,
        action: HistoryAction,
        actor: Actor,
        comment: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=_next_id(entity.history),
            timestamp=at or self.clock(),
            action=action,
            actor=actor,
            comment=comment,
            entry_metadata=metadata,
        )
        entity.history.append(entry)
        return entry

    def log(
        self,
        entity: Audited,
        level: LogLevel,
        message: str,
        details: Optional[dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> LogEntry:
        entry = LogEntry(
            id=_next_id(entity.logs),
            timestamp=at or self.clock(),
            level=level,
            message=message,
            details=details,
        )
        entity.logs.append(entry)
        return entry


def _next_id(entries: list) -> int:
    return max((e.id for e in entries), default=0) + 1


def ordered_history(entries: list[HistoryEntry]) -> list[HistoryEntry]:
    """Canonical display order: ascending timestamp, ties broken by id."""
    return sorted(entries, key=lambda e: (e.timestamp, e.id))


def ordered_logs(entries: list[LogEntry]) -> list[LogEntry]:
    return sorted(entries, key=lambda e: (e.timestamp, e.id))
