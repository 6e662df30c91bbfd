"""Task graph persistence and workflow rules."""

from .engine import TaskNotFoundError, TaskValidationError, TaskWorkflowEngine, is_valid_transition
from .models import (
    AddTask,
    BlockTask,
    DeleteTask,
    HistoryEntry,
    MergeTasks,
    ModifyTask,
    SplitTask,
    Task,
    TaskModification,
    TaskPriority,
    TaskStatus,
    parse_modifications,
)
from .store import TaskStore, TaskStoreError

__all__ = [
    "AddTask",
    "BlockTask",
    "DeleteTask",
    "HistoryEntry",
    "MergeTasks",
    "ModifyTask",
    "SplitTask",
    "Task",
    "TaskModification",
    "TaskNotFoundError",
    "TaskPriority",
    "TaskStatus",
    "TaskStore",
    "TaskStoreError",
    "TaskValidationError",
    "TaskWorkflowEngine",
    "is_valid_transition",
    "parse_modifications",
]
