"""Filesystem layout of a Squabble workspace."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SUBDIRECTORIES = ("tasks", "context", "plans", "reviews", "prompts")

PLAN_SKELETON = """# Implementation Plan: {title}

Task: {task_id}
Priority: {priority}

## Approach

Describe how the task will be implemented.

## Files to change

-

## Risks and open questions

-

## Test strategy

-
"""


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` next to ``path`` and atomically move it into place."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    try:
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _timestamp_slug(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.isoformat().replace(":", "-").replace(".", "-")


class Workspace:
    """Paths and small JSON documents kept under ``<root>/workspace``.

    The activity logs and the reviewer MCP config live directly under
    ``root``; tasks, context documents, plans and review logs live under
    ``root/workspace``.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def workspace_dir(self) -> Path:
        return self.root / "workspace"

    @property
    def tasks_dir(self) -> Path:
        return self.workspace_dir / "tasks"

    @property
    def context_dir(self) -> Path:
        return self.workspace_dir / "context"

    @property
    def plans_dir(self) -> Path:
        return self.workspace_dir / "plans"

    @property
    def reviews_dir(self) -> Path:
        return self.workspace_dir / "reviews"

    @property
    def tasks_path(self) -> Path:
        return self.tasks_dir / "tasks.json"

    @property
    def counter_path(self) -> Path:
        return self.context_dir / "task-counter.json"

    @property
    def mcp_config_path(self) -> Path:
        return self.root / "mcp-config-pm.json"

    @property
    def custom_prompt_path(self) -> Path:
        return self.workspace_dir / "prompts" / "pm.md"

    def initialize(self) -> None:
        for name in _SUBDIRECTORIES:
            (self.workspace_dir / name).mkdir(parents=True, exist_ok=True)

    def save_context(self, key: str, data: Any) -> Path:
        path = self.context_dir / f"{key}.json"
        atomic_write_text(path, json.dumps(data, indent=2, default=str))
        return path

    def get_context(self, key: str) -> Any | None:
        path = self.context_dir / f"{key}.json"
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            logger.warning(
                "Ignoring unreadable context document",
                extra={"key": key, "path": str(path), "error": str(exc)},
            )
            return None

    def reviewer_session(self) -> str | None:
        """Return the resume token of the last reviewer consultation, if any."""

        document = self.get_context("pm-session")
        if isinstance(document, dict):
            session_id = document.get("session_id")
            return str(session_id) if session_id else None
        return None

    def record_reviewer_session(self, session_id: str) -> None:
        self.save_context(
            "pm-session",
            {
                "session_id": session_id,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    def plan_path(self, task_id: str) -> Path:
        return self.plans_dir / task_id / "implementation-plan.md"

    def approval_path(self, task_id: str) -> Path:
        return self.plans_dir / task_id / "approval.json"

    def write_plan_skeleton(self, task_id: str, title: str, priority: str) -> Path:
        path = self.plan_path(task_id)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                PLAN_SKELETON.format(title=title, task_id=task_id, priority=priority),
                encoding="utf-8",
            )
        return path

    def write_plan_approval(self, task_id: str, *, session_id: str, summary: str) -> Path:
        path = self.approval_path(task_id)
        atomic_write_text(
            path,
            json.dumps(
                {
                    "task_id": task_id,
                    "approved_at": datetime.now(timezone.utc).isoformat(),
                    "session_id": session_id,
                    "summary": summary,
                },
                indent=2,
            ),
        )
        return path

    def write_plan_feedback(self, task_id: str, title: str, feedback: str) -> Path:
        now = datetime.now(timezone.utc)
        path = self.plans_dir / task_id / f"review-{_timestamp_slug(now)}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"# Plan Review Feedback\n\nTask: {title}\nReviewed: {now.isoformat()}\n\n"
            f"## Reviewer Feedback\n\n{feedback}\n",
            encoding="utf-8",
        )
        return path

    def write_review_log(self, task_id: str, text: str) -> Path:
        """Append one review round to ``reviews/<task>/review.log``."""

        path = self.reviews_dir / task_id / "review.log"
        path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"=== Review {stamp} ===\n{text.rstrip()}\n\n")
        return path

    def read_custom_prompt(self) -> str | None:
        try:
            return self.custom_prompt_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None


__all__ = ["PLAN_SKELETON", "Workspace", "atomic_write_text"]
