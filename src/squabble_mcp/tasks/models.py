"""Task records and the modifications that can be applied to them."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Iterable, Literal, Mapping, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from ..events import utcnow
from ..roles import Role

TaskStatus = Literal["pending", "in-progress", "review", "done"]
TaskPriority = Literal["low", "medium", "high", "critical"]

STATUS_ORDER: dict[str, int] = {"pending": 0, "in-progress": 1, "review": 2, "done": 3}
PRIORITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class HistoryEntry(BaseModel):
    """One line of a task's modification history."""

    type: str = Field(..., description="Modification kind, or STATUS for workflow transitions.")
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    details: dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    id: str
    title: str
    description: str | None = None
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    dependencies: list[str] = Field(default_factory=list)
    blocked_by: str | None = None
    requires_plan: bool = False
    modification_history: list[HistoryEntry] = Field(default_factory=list)

    @field_validator("dependencies")
    @classmethod
    def _unique_dependencies(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "blocked_by": self.blocked_by,
            "requires_plan": self.requires_plan,
        }


class _ModificationBase(BaseModel):
    reason: str = ""
    proposed_by: Role = "engineer"

    def details(self) -> dict[str, Any]:
        return self.model_dump(exclude={"type", "reason", "proposed_by"}, exclude_none=True)


class AddTask(_ModificationBase):
    type: Literal["ADD"] = "ADD"
    title: str = Field(..., min_length=1)
    priority: TaskPriority = "medium"
    description: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    requires_plan: bool | None = None

    def resolved_requires_plan(self) -> bool:
        if self.requires_plan is not None:
            return self.requires_plan
        return self.priority in {"high", "critical"}


class DeleteTask(_ModificationBase):
    type: Literal["DELETE"] = "DELETE"
    task_id: str


class ModifyTask(_ModificationBase):
    type: Literal["MODIFY"] = "MODIFY"
    task_id: str
    title: str | None = None
    description: str | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    requires_plan: bool | None = None


class BlockTask(_ModificationBase):
    """Set ``blocked_by`` on a task; ``None`` clears an existing block."""

    type: Literal["BLOCK"] = "BLOCK"
    task_id: str
    blocked_by: str | None = None


class SplitTask(_ModificationBase):
    type: Literal["SPLIT"] = "SPLIT"
    task_id: str
    subtasks: list[str] = Field(..., min_length=1)


class MergeTasks(_ModificationBase):
    type: Literal["MERGE"] = "MERGE"
    task_ids: list[str] = Field(default_factory=list)


TaskModification = Annotated[
    Union[AddTask, DeleteTask, ModifyTask, BlockTask, SplitTask, MergeTasks],
    Field(discriminator="type"),
]

_MODIFICATION_LIST: TypeAdapter[list[TaskModification]] = TypeAdapter(list[TaskModification])
TASK_LIST: TypeAdapter[list[Task]] = TypeAdapter(list[Task])


def parse_modifications(payload: Iterable[Mapping[str, Any] | BaseModel]) -> list[TaskModification]:
    """Validate raw tool input into typed modifications.

    Raises :class:`pydantic.ValidationError` when any item is malformed.
    """

    items = [
        item.model_dump() if isinstance(item, BaseModel) else dict(item)
        for item in payload
    ]
    return _MODIFICATION_LIST.validate_python(items)


__all__ = [
    "AddTask",
    "BlockTask",
    "DeleteTask",
    "HistoryEntry",
    "MergeTasks",
    "ModifyTask",
    "PRIORITY_ORDER",
    "STATUS_ORDER",
    "SplitTask",
    "TASK_LIST",
    "Task",
    "TaskModification",
    "TaskPriority",
    "TaskStatus",
    "parse_modifications",
]
