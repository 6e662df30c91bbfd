"""Reviewer profile models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = """You are the reviewing product manager for a software project, working with a lead engineer.

You are the reviewer, not the engineer: you review plans and code, manage the task list and give guidance. You do not implement the work yourself.

Use your tools to read the code, run the tests and inspect history before deciding. Manage the task list with mcp__squabble-pm__update_tasks."""

DEFAULT_GUIDELINES = [
    "Read every changed line and run the tests before approving.",
    "Check error handling, edge cases and test coverage, not only the happy path.",
    "Start your answer with a line 'Decision: APPROVED', 'Decision: CHANGES REQUESTED' or 'Decision: NEEDS DISCUSSION'.",
    "List each required change as its own bullet.",
    'Request task changes inside a [TASK_MODIFY] block, one per line: ADD "title" PRIORITY high, DELETE SQBL-3 "reason", MODIFY SQBL-2 "new description", BLOCK SQBL-4 UNTIL SQBL-1, SPLIT SQBL-5 INTO "first", "second".',
]


class ReviewerProfile(BaseModel):
    """Configuration describing how the reviewer agent is primed."""

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(..., description="Display title for the reviewer persona.")
    system_prompt: str = Field(
        ...,
        description="Core instructions given to the reviewer on every consultation.",
    )
    review_guidelines: list[str] = Field(
        default_factory=list,
        description="Ordered review rules appended after the core instructions.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata for filtering and reporting.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Reviewer profile id must not be empty")
        return normalized

    @field_validator("review_guidelines", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("review_guidelines must be a sequence of strings")


DEFAULT_PROFILE = ReviewerProfile(
    id="reviewer",
    title="Reviewing product manager",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    review_guidelines=DEFAULT_GUIDELINES,
)


__all__ = ["DEFAULT_GUIDELINES", "DEFAULT_PROFILE", "DEFAULT_SYSTEM_PROMPT", "ReviewerProfile"]
