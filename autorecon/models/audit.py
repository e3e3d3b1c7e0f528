from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from autorecon.database import Base
from autorecon.models.enums import EntityType, HistoryAction, LogLevel
from autorecon.models.types import JSONValue, UTCDateTime, enum_column


@dataclass(frozen=True)
class Actor:
    id: str
    name: str
    email: Optional[str] = None


SYSTEM_ACTOR = Actor(id="system", name="Settlement Engine")


class ActorType(JSONValue):
    def dump(self, actor: Actor) -> dict:
        return {"id": actor.id, "name": actor.name, "email": actor.email}

    def load(self, data: dict) -> Actor:
        return Actor(**data)


class HistoryEntry(Base):
    """One audit entry on a settlement run or an approval request. Never updated."""

    __tablename__ = "history_entries"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    settlement_run_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        ForeignKey("settlement_runs.id"),
        nullable=True,
        index=True
    )
    approval_request_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        ForeignKey("approval_requests.id"),
        nullable=True,
        index=True
    )
    id: Mapped[int] = mapped_column(Integer)  # per-entity sequence
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime)
    action: Mapped[HistoryAction] = mapped_column(enum_column(HistoryAction))
    actor: Mapped[Actor] = mapped_column(ActorType)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entry_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)


class LogEntry(Base):
    __tablename__ = "log_entries"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    settlement_run_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        ForeignKey("settlement_runs.id"),
        nullable=True,
        index=True
    )
    approval_request_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        ForeignKey("approval_requests.id"),
        nullable=True,
        index=True
    )
    id: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime)
    level: Mapped[LogLevel] = mapped_column(enum_column(LogLevel))
    message: Mapped[str] = mapped_column(Text)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


@dataclass(frozen=True)
class TransitionEvent:
    """Immutable record of a committed status change, published after commit."""

    id: int
    entity_type: EntityType
    entity_id: str
    event_type: str
    from_status: Optional[str]
    to_status: str
    actor_id: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
