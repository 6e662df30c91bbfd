"""Configuration management for Squabble MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_REVIEWER_TOOLS = (
    "mcp__squabble-pm__update_tasks,Read,Write,Edit,MultiEdit,Bash,Grep,Glob,LS,WebFetch,Task"
)


class SquabbleSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    workspace_root: Path = Field(default=Path("./.squabble"), validation_alias="SQUABBLE_WORKSPACE")
    role: str = Field(default="engineer", validation_alias="SQUABBLE_MODE")
    environment: str = Field(default="development", validation_alias="SQUABBLE_ENV")
    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    reviewer_package: str = Field(default="squabble-mcp", validation_alias="SQUABBLE_REVIEWER_PACKAGE")
    reviewer_allowed_tools: str = Field(
        default=DEFAULT_REVIEWER_TOOLS, validation_alias="SQUABBLE_REVIEWER_TOOLS"
    )
    log_level: str = Field(default="INFO", validation_alias="SQUABBLE_LOG_LEVEL")
    task_id_prefix: str = Field(default="SQBL", validation_alias="SQUABBLE_TASK_PREFIX")
    session_id_timeout_seconds: float = Field(
        default=10.0, validation_alias="SQUABBLE_SESSION_ID_TIMEOUT"
    )
    consultation_timeout_seconds: float = Field(
        default=120.0, validation_alias="SQUABBLE_CONSULT_TIMEOUT"
    )
    review_timeout_seconds: float | None = Field(
        default=None, validation_alias="SQUABBLE_REVIEW_TIMEOUT"
    )
    activity_log_max_bytes: int = Field(
        default=10 * 1024 * 1024, validation_alias="SQUABBLE_ACTIVITY_MAX_BYTES"
    )
    activity_log_keep_sessions: int = Field(
        default=5, validation_alias="SQUABBLE_ACTIVITY_KEEP_SESSIONS"
    )
    recent_event_capacity: int = Field(default=500, validation_alias="SQUABBLE_RECENT_EVENTS")
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="SQUABBLE_PROFILE_PATHS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SQUABBLE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("role")
    @classmethod
    def _normalize_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"engineer", "pm", "specialist"}:
            raise ValueError("SQUABBLE_MODE must be one of engineer, pm, specialist")
        return normalized

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        normalized = (value or "development").strip().lower()
        if normalized in {"dev", "development"}:
            return "development"
        if normalized in {"prod", "production"}:
            return "production"
        raise ValueError("SQUABBLE_ENV must be development or production")

    @field_validator("task_id_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or "." in normalized:
            raise ValueError("SQUABBLE_TASK_PREFIX must be non-empty and must not contain '.'")
        return normalized

    @field_validator(
        "session_id_timeout_seconds",
        "consultation_timeout_seconds",
        "activity_log_max_bytes",
        "activity_log_keep_sessions",
        "recent_event_capacity",
    )
    @classmethod
    def _validate_positive(cls, value):
        if value <= 0:
            raise ValueError("Timeouts, log limits and buffer capacities must be > 0")
        return value

    @field_validator("review_timeout_seconds")
    @classmethod
    def _validate_review_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("SQUABBLE_REVIEW_TIMEOUT must be > 0 when set")
        return value

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("SQUABBLE_PROFILE_PATHS must be a list of paths or a path-separated string")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache(maxsize=1)
def get_settings() -> SquabbleSettings:
    """Return cached settings instance."""

    settings = SquabbleSettings()
    settings.workspace_root = settings.workspace_root.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["DEFAULT_REVIEWER_TOOLS", "SquabbleSettings", "get_settings"]
