"""Reviewer profile models, loader and prompt assembly."""

from .loader import ProfileLoadError, ProfileLoader
from .models import DEFAULT_PROFILE, ReviewerProfile
from .prompt import build_system_prompt, load_custom_prompt, validate_custom_prompt

__all__ = [
    "DEFAULT_PROFILE",
    "ProfileLoadError",
    "ProfileLoader",
    "ReviewerProfile",
    "build_system_prompt",
    "load_custom_prompt",
    "validate_custom_prompt",
]
