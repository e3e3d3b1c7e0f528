from datetime import datetime
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, Field

from autorecon.models.audit import Actor
from autorecon.models.enums import EntityType, HistoryAction, LogLevel


class ActorSchema(BaseModel):
    id: str = Field(..., min_length=1, description="User identifier")
    name: str = Field(..., description="Display name")
    email: Optional[str] = Field(None, description="Contact email")

    class Config:
        from_attributes = True

    def to_actor(self) -> Actor:
        return Actor(id=self.id, name=self.name, email=self.email)


class HistoryEntryResponse(BaseModel):
    id: int
    timestamp: datetime
    action: HistoryAction
    actor: ActorSchema
    comment: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias=AliasChoices("entry_metadata", "metadata"))

    class Config:
        from_attributes = True


class LogEntryResponse(BaseModel):
    id: int
    timestamp: datetime
    level: LogLevel
    message: str
    details: Optional[dict[str, Any]] = None

    class Config:
        from_attributes = True


class TransitionEventResponse(BaseModel):
    id: int
    entity_type: EntityType
    entity_id: str
    event_type: str
    from_status: Optional[str]
    to_status: str
    actor_id: str
    occurred_at: datetime
    payload: dict[str, Any]

    class Config:
        from_attributes = True


class TransitionEventListResponse(BaseModel):
    events: list[TransitionEventResponse]
    total: int


class TransitionRequest(BaseModel):
    actor: ActorSchema
    comment: Optional[str] = Field(None, description="Optional note recorded in the audit trail")
    expected_version: Optional[int] = Field(None, ge=1, description="Version the caller last read")


class ErrorResponse(BaseModel):
    error: str
    detail: str
    context: dict[str, Any] = {}
