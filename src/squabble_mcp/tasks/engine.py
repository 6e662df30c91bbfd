"""Task graph rules: batch modifications, eligibility and the claim state machine."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from ..events import utcnow
from .models import (
    PRIORITY_ORDER,
    STATUS_ORDER,
    AddTask,
    BlockTask,
    DeleteTask,
    HistoryEntry,
    MergeTasks,
    ModifyTask,
    SplitTask,
    Task,
    TaskModification,
    TaskStatus,
)
from .store import TaskStore

logger = logging.getLogger(__name__)


class TaskValidationError(ValueError):
    """A task precondition failed. ``hint`` names the next valid action."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(f"{message} Next step: {hint}" if hint else message)


class TaskNotFoundError(TaskValidationError):
    """Raised when a task id does not exist."""


def is_valid_transition(current: str, target: str) -> bool:
    """Status only moves forward, except the review -> in-progress regression."""

    if current == "review" and target == "in-progress":
        return True
    return STATUS_ORDER[target] >= STATUS_ORDER[current]


class TaskWorkflowEngine:
    def __init__(
        self,
        store: TaskStore,
        *,
        id_prefix: str = "SQBL",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._prefix = id_prefix
        self._clock = clock or utcnow

    @property
    def store(self) -> TaskStore:
        return self._store

    def list_tasks(self) -> list[Task]:
        return self._store.load()

    def get_task(self, task_id: str) -> Task:
        return self._find(self._store.load(), task_id)

    def _find(self, tasks: Sequence[Task], task_id: str) -> Task:
        for task in tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(
            f"Task {task_id} not found.",
            hint="Call get_next_task to see the available tasks.",
        )

    def _entry(self, kind: str, reason: str, details: dict[str, Any] | None = None) -> HistoryEntry:
        return HistoryEntry(type=kind, reason=reason, timestamp=self._clock(), details=details or {})

    def _next_id(self, tasks: Sequence[Task]) -> str:
        existing = {task.id for task in tasks}
        while True:
            candidate = f"{self._prefix}-{self._store.allocate_sequence()}"
            if candidate not in existing:
                return candidate

    # ------------------------------------------------------------------
    # Batch modifications
    # ------------------------------------------------------------------

    def apply_modifications(self, batch: Iterable[TaskModification]) -> list[Task]:
        """Apply ``batch`` in order to an in-memory copy and persist once.

        Items whose target task is missing are skipped. A MODIFY that would
        move a status backwards raises :class:`TaskValidationError` and
        nothing from the batch is persisted.
        """

        tasks = [task.model_copy(deep=True) for task in self._store.load()]

        for modification in batch:
            if isinstance(modification, AddTask):
                self._apply_add(tasks, modification)
            elif isinstance(modification, DeleteTask):
                self._apply_delete(tasks, modification)
            elif isinstance(modification, ModifyTask):
                self._apply_modify(tasks, modification)
            elif isinstance(modification, BlockTask):
                self._apply_block(tasks, modification)
            elif isinstance(modification, SplitTask):
                self._apply_split(tasks, modification)
            elif isinstance(modification, MergeTasks):
                logger.info("MERGE is not supported; ignoring", extra={"task_ids": modification.task_ids})

        self._store.save(tasks)
        return tasks

    def _lookup(self, tasks: list[Task], task_id: str, kind: str) -> Task | None:
        for task in tasks:
            if task.id == task_id:
                return task
        logger.debug("Modification target missing; skipping", extra={"type": kind, "task_id": task_id})
        return None

    def _apply_add(self, tasks: list[Task], modification: AddTask) -> None:
        task = Task(
            id=self._next_id(tasks),
            title=modification.title,
            description=modification.description,
            priority=modification.priority,
            dependencies=list(modification.dependencies),
            requires_plan=modification.resolved_requires_plan(),
            modification_history=[
                self._entry("ADD", modification.reason or "Task created", modification.details())
            ],
        )
        tasks.append(task)

    def _apply_delete(self, tasks: list[Task], modification: DeleteTask) -> None:
        target = self._lookup(tasks, modification.task_id, "DELETE")
        if target is None:
            return
        tasks.remove(target)
        for task in tasks:
            depends = target.id in task.dependencies
            blocked = task.blocked_by == target.id
            if not (depends or blocked):
                continue
            task.dependencies = [dep for dep in task.dependencies if dep != target.id]
            if blocked:
                task.blocked_by = None
            task.modification_history.append(
                self._entry(
                    "DELETE",
                    f"Dependency {target.id} was deleted",
                    {"deleted_task_id": target.id, "reason": modification.reason},
                )
            )

    def _apply_modify(self, tasks: list[Task], modification: ModifyTask) -> None:
        task = self._lookup(tasks, modification.task_id, "MODIFY")
        if task is None:
            return
        if modification.status is not None and not is_valid_transition(task.status, modification.status):
            raise TaskValidationError(
                f"Cannot move task {task.id} from {task.status} to {modification.status}.",
                hint="Statuses only move forward, except review back to in-progress.",
            )
        for field in ("title", "description", "priority", "status", "requires_plan"):
            value = getattr(modification, field)
            if value is not None:
                setattr(task, field, value)
        task.modification_history.append(
            self._entry("MODIFY", modification.reason or "Task modified", modification.details())
        )

    def _apply_block(self, tasks: list[Task], modification: BlockTask) -> None:
        task = self._lookup(tasks, modification.task_id, "BLOCK")
        if task is None:
            return
        task.blocked_by = modification.blocked_by
        default_reason = (
            f"Blocked by {modification.blocked_by}" if modification.blocked_by else "Block cleared"
        )
        task.modification_history.append(
            self._entry("BLOCK", modification.reason or default_reason, modification.details())
        )

    def _apply_split(self, tasks: list[Task], modification: SplitTask) -> None:
        original = self._lookup(tasks, modification.task_id, "SPLIT")
        if original is None:
            return

        index = tasks.index(original)
        reason = modification.reason or f"Split from {original.id}"
        subtasks: list[Task] = []
        for position, title in enumerate(modification.subtasks, start=1):
            dependencies = (
                list(original.dependencies) if position == 1 else [subtasks[-1].id]
            )
            subtasks.append(
                Task(
                    id=f"{original.id}.{position}",
                    title=title,
                    description=f"Part {position} of {original.id}: {original.title}",
                    priority=original.priority,
                    dependencies=dependencies,
                    blocked_by=original.blocked_by,
                    requires_plan=original.requires_plan,
                    modification_history=[
                        self._entry("SPLIT", reason, {"parent_task_id": original.id, "position": position})
                    ],
                )
            )

        tasks[index : index + 1] = subtasks
        last_id = subtasks[-1].id
        for task in self.dependents_of(original.id, tasks):
            task.dependencies = list(
                dict.fromkeys(last_id if dep == original.id else dep for dep in task.dependencies)
            )
            task.modification_history.append(
                self._entry(
                    "SPLIT",
                    f"Dependency {original.id} was split; now depends on {last_id}",
                    {"split_task_id": original.id, "replacement": last_id},
                )
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def unmet_dependencies(self, task: Task, tasks: Sequence[Task] | None = None) -> list[str]:
        tasks = self._store.load() if tasks is None else tasks
        status_by_id = {item.id: item.status for item in tasks}
        return [dep for dep in task.dependencies if status_by_id.get(dep) != "done"]

    def dependents_of(self, task_id: str, tasks: Sequence[Task] | None = None) -> list[Task]:
        tasks = self._store.load() if tasks is None else tasks
        return [task for task in tasks if task_id in task.dependencies]

    def get_next_eligible(self, count: int = 3, tasks: Sequence[Task] | None = None) -> list[Task]:
        """Pending, unblocked tasks whose dependencies are all done, best first."""

        tasks = self._store.load() if tasks is None else list(tasks)
        dependents = Counter(dep for task in tasks for dep in task.dependencies)
        eligible = [
            task
            for task in tasks
            if task.status == "pending"
            and not task.blocked_by
            and not self.unmet_dependencies(task, tasks)
        ]
        eligible.sort(key=lambda task: (PRIORITY_ORDER[task.priority], -dependents[task.id]))
        return eligible[: max(count, 0)]

    def status_counts(self, tasks: Sequence[Task] | None = None) -> dict[str, int]:
        tasks = self._store.load() if tasks is None else tasks
        counts = {status: 0 for status in STATUS_ORDER}
        for task in tasks:
            counts[task.status] += 1
        return counts

    def blocked_report(self, tasks: Sequence[Task] | None = None) -> dict[str, int]:
        """Explain why no task is eligible."""

        tasks = self._store.load() if tasks is None else tasks
        pending = [task for task in tasks if task.status == "pending"]
        return {
            "total": len(tasks),
            "in_progress": sum(1 for task in tasks if task.status == "in-progress"),
            "in_review": sum(1 for task in tasks if task.status == "review"),
            "done": sum(1 for task in tasks if task.status == "done"),
            "blocked": sum(1 for task in pending if task.blocked_by),
            "unmet_dependencies": sum(
                1 for task in pending if not task.blocked_by and self.unmet_dependencies(task, tasks)
            ),
        }

    # ------------------------------------------------------------------
    # Claim protocol
    # ------------------------------------------------------------------

    def _transition(
        self,
        tasks: list[Task],
        task: Task,
        status: TaskStatus,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> Task:
        previous = task.status
        task.status = status
        task.modification_history.append(
            self._entry("STATUS", reason, {"from": previous, "to": status, **(details or {})})
        )
        self._store.save(tasks)
        logger.info(
            "Task status changed",
            extra={"task_id": task.id, "from": previous, "to": status},
        )
        return task

    def _check_claimable(self, tasks: Sequence[Task], task: Task) -> None:
        if task.status != "pending":
            hints = {
                "in-progress": "Keep working on it and call submit_for_review when done.",
                "review": "Wait for the reviewer's decision on the current submission.",
                "done": "Call get_next_task to pick another task.",
            }
            raise TaskValidationError(
                f"Task {task.id} is {task.status}; only pending tasks can be claimed.",
                hint=hints[task.status],
            )
        if task.blocked_by:
            raise TaskValidationError(
                f"Task {task.id} is blocked by {task.blocked_by}.",
                hint=f"Finish {task.blocked_by} or ask the reviewer to clear the block.",
            )
        unmet = self.unmet_dependencies(task, tasks)
        if unmet:
            raise TaskValidationError(
                f"Task {task.id} has unmet dependencies: {', '.join(unmet)}.",
                hint="Complete those tasks first, or call get_next_task for an eligible one.",
            )

    def ensure_claimable(self, task_id: str) -> Task:
        """Check every claim precondition except plan approval."""

        tasks = self._store.load()
        task = self._find(tasks, task_id)
        self._check_claimable(tasks, task)
        return task

    def claim(self, task_id: str, *, notes: str | None = None, plan_approved: bool = False) -> Task:
        tasks = self._store.load()
        task = self._find(tasks, task_id)
        self._check_claimable(tasks, task)
        if task.requires_plan and not plan_approved:
            raise TaskValidationError(
                f"Task {task.id} requires an approved implementation plan.",
                hint="Write the plan and call claim_task again to request plan review.",
            )

        return self._transition(
            tasks, task, "in-progress", "Claimed", {"notes": notes} if notes else None
        )

    def begin_review(self, task_id: str) -> Task:
        tasks = self._store.load()
        task = self._find(tasks, task_id)
        if task.status != "in-progress":
            hints = {
                "pending": "Claim the task with claim_task before submitting it.",
                "review": "A review is already running; wait for its outcome.",
                "done": "The task is already done; call get_next_task.",
            }
            raise TaskValidationError(
                f"Task {task.id} is {task.status}; only in-progress tasks can be submitted.",
                hint=hints[task.status],
            )
        return self._transition(tasks, task, "review", "Submitted for review")

    def complete_review(self, task_id: str, *, approved: bool, reason: str = "") -> Task:
        tasks = self._store.load()
        task = self._find(tasks, task_id)
        if task.status != "review":
            raise TaskValidationError(
                f"Task {task.id} is {task.status}, not under review.",
                hint="Call submit_for_review to start a review.",
            )
        if approved:
            return self._transition(tasks, task, "done", reason or "Approved by reviewer")
        return self._transition(tasks, task, "in-progress", reason or "Changes requested by reviewer")

    def restore_status(self, task_id: str, status: TaskStatus, reason: str) -> Task:
        """Force ``status`` regardless of ordering; used to roll back failed flows."""

        tasks = self._store.load()
        task = self._find(tasks, task_id)
        return self._transition(tasks, task, status, reason, {"rollback": True})


__all__ = [
    "TaskNotFoundError",
    "TaskValidationError",
    "TaskWorkflowEngine",
    "is_valid_transition",
]
