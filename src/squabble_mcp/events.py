"""Activity event models shared by the agent session, broker and recorder."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _ActivityEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str | None = None


class SessionStartEvent(_ActivityEventBase):
    type: Literal["session_start"] = "session_start"
    tools: list[str] = Field(default_factory=list)


class ToolUseEvent(_ActivityEventBase):
    type: Literal["tool_use"] = "tool_use"
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class ToolResultEvent(_ActivityEventBase):
    type: Literal["tool_result"] = "tool_result"
    result_summary: str
    correlates_to_id: str | None = None


class AgentMessageEvent(_ActivityEventBase):
    type: Literal["agent_message"] = "agent_message"
    text: str


class SessionEndEvent(_ActivityEventBase):
    type: Literal["session_end"] = "session_end"
    exit_reason: str
    exit_code: int | None = None


class ErrorEvent(_ActivityEventBase):
    type: Literal["error"] = "error"
    message: str


ActivityEvent = Annotated[
    Union[
        SessionStartEvent,
        ToolUseEvent,
        ToolResultEvent,
        AgentMessageEvent,
        SessionEndEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

ActivityEventAdapter: TypeAdapter[ActivityEvent] = TypeAdapter(ActivityEvent)


class SessionMetadata(BaseModel):
    """Book-keeping for one consultation, keyed by the id the agent process issued."""

    id: str
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    engineer_id: str = "unknown"
    task_id: str | None = None
    process_id: int | None = None
    status: Literal["active", "completed"] = "active"

    def mark_completed(self) -> None:
        if self.status != "completed":
            self.status = "completed"
            self.ended_at = utcnow()


class EnhancedEvent(BaseModel):
    """An activity event tagged with its global sequence number and session snapshot.

    On disk the event is flattened into a single JSON object: the event's own
    fields plus ``sequence_number`` and ``session``. :meth:`from_record` is the
    exact inverse of :meth:`to_record`.
    """

    event: ActivityEvent
    sequence_number: int | None = None
    session: SessionMetadata | None = None

    @property
    def type(self) -> str:
        return self.event.type

    @property
    def session_id(self) -> str | None:
        return self.event.session_id

    def to_record(self) -> dict[str, Any]:
        record = self.event.model_dump(mode="json")
        record["sequence_number"] = self.sequence_number
        record["session"] = self.session.model_dump(mode="json") if self.session else None
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "EnhancedEvent":
        payload = dict(record)
        sequence_number = payload.pop("sequence_number", None)
        session = payload.pop("session", None)
        return cls(
            event=ActivityEventAdapter.validate_python(payload),
            sequence_number=sequence_number,
            session=SessionMetadata.model_validate(session) if session else None,
        )


__all__ = [
    "ActivityEvent",
    "ActivityEventAdapter",
    "AgentMessageEvent",
    "EnhancedEvent",
    "ErrorEvent",
    "SessionEndEvent",
    "SessionMetadata",
    "SessionStartEvent",
    "ToolResultEvent",
    "ToolUseEvent",
    "utcnow",
]
