"""File-backed task persistence."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from ..workspace import atomic_write_text
from .models import TASK_LIST, Task

logger = logging.getLogger(__name__)


class TaskStoreError(RuntimeError):
    """Raised when the task file or counter cannot be read."""


class TaskStore:
    """Single-writer JSON store: every save rewrites the whole task file."""

    def __init__(self, tasks_path: Path, counter_path: Path) -> None:
        self.tasks_path = Path(tasks_path)
        self.counter_path = Path(counter_path)

    def load(self) -> list[Task]:
        try:
            raw = self.tasks_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise TaskStoreError(f"Unable to read task file {self.tasks_path}: {exc}") from exc

        if not raw.strip():
            return []
        try:
            return TASK_LIST.validate_json(raw)
        except ValidationError as exc:
            raise TaskStoreError(f"Task file {self.tasks_path} is malformed: {exc}") from exc

    def save(self, tasks: Sequence[Task]) -> None:
        payload = json.dumps([task.model_dump(mode="json") for task in tasks], indent=2)
        atomic_write_text(self.tasks_path, payload + "\n")
        logger.debug("Persisted tasks", extra={"count": len(tasks), "path": str(self.tasks_path)})

    def current_sequence(self) -> int:
        try:
            value = json.loads(self.counter_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0
        except (OSError, json.JSONDecodeError) as exc:
            raise TaskStoreError(f"Unable to read task counter {self.counter_path}: {exc}") from exc
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise TaskStoreError(f"Task counter {self.counter_path} must hold a non-negative integer")
        return value

    def allocate_sequence(self) -> int:
        """Increment and persist the id counter, returning the new value."""

        value = self.current_sequence() + 1
        atomic_write_text(self.counter_path, json.dumps(value))
        return value


__all__ = ["TaskStore", "TaskStoreError"]
