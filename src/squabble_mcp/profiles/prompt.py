"""System prompt assembly and validation of workspace custom prompts."""

from __future__ import annotations

import logging
import re

from ..workspace import Workspace
from .models import ReviewerProfile

logger = logging.getLogger(__name__)

MAX_CUSTOM_PROMPT_CHARS = 10_000

_INJECTION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"ignore.*previous.*instructions?",
        r"disregard.*above",
        r"forget.*everything",
        r"you.*are.*now",
        r"jailbreak",
        r"bypass.*restrictions?",
        r"act.*as.*if",
        r"pretend.*you",
        r"system.*prompt",
        r"reveal.*instructions?",
        r"show.*me.*your.*prompt",
        r"what.*are.*your.*instructions?",
        r"override.*security",
        r"disable.*safety",
    )
]


def validate_custom_prompt(text: str) -> bool:
    """Return False for prompts that are too long or try to override the core instructions."""

    if len(text) > MAX_CUSTOM_PROMPT_CHARS:
        return False
    return not any(pattern.search(text) for pattern in _INJECTION_PATTERNS)


def load_custom_prompt(workspace: Workspace) -> str | None:
    text = workspace.read_custom_prompt()
    if text is None or not text.strip():
        return None
    if not validate_custom_prompt(text):
        logger.warning(
            "Custom reviewer prompt failed validation; using profile guidelines",
            extra={"path": str(workspace.custom_prompt_path)},
        )
        return None
    return text


def build_system_prompt(profile: ReviewerProfile, custom: str | None = None) -> str:
    """Core instructions first, then either the custom section or the profile's guidelines."""

    sections = [profile.system_prompt.strip()]
    if custom is not None and validate_custom_prompt(custom):
        sections.append("Project-specific instructions:\n" + custom.strip())
    elif profile.review_guidelines:
        sections.append(
            "Review guidelines:\n" + "\n".join(f"- {rule}" for rule in profile.review_guidelines)
        )
    return "\n\n".join(sections)


__all__ = [
    "MAX_CUSTOM_PROMPT_CHARS",
    "build_system_prompt",
    "load_custom_prompt",
    "validate_custom_prompt",
]
