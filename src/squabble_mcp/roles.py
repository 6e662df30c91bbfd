"""Role capability table consulted at the tool boundary."""

from __future__ import annotations

from typing import Literal, Mapping

Role = Literal["engineer", "pm", "specialist"]

ALL_TOOLS = frozenset(
    {
        "get_next_task",
        "claim_task",
        "submit_for_review",
        "propose_modification",
        "update_tasks",
        "consult_reviewer",
        "recent_activity",
        "stop_session",
    }
)

ROLE_CAPABILITIES: Mapping[str, frozenset[str]] = {
    "engineer": ALL_TOOLS - {"update_tasks"},
    "pm": ALL_TOOLS,
    "specialist": frozenset({"get_next_task", "consult_reviewer", "recent_activity"}),
}


class PermissionDeniedError(PermissionError):
    """Raised when a role invokes a tool outside its capability set."""

    def __init__(self, role: str, tool: str, message: str) -> None:
        super().__init__(message)
        self.role = role
        self.tool = tool


def capabilities_for(role: str) -> frozenset[str]:
    try:
        return ROLE_CAPABILITIES[role]
    except KeyError as exc:
        raise ValueError(f"Unknown role '{role}'") from exc


def can_use(role: str, tool: str) -> bool:
    return tool in capabilities_for(role)


def require_capability(role: str, tool: str) -> None:
    """Raise :class:`PermissionDeniedError` unless ``role`` may call ``tool``."""

    if can_use(role, tool):
        return

    if role == "engineer" and tool == "update_tasks":
        message = (
            "Engineers cannot update tasks directly. "
            "Use propose_modification to ask the reviewer for the change."
        )
    elif role == "specialist":
        message = (
            "Specialists have read-only access. "
            "Ask the engineer or the reviewer to make modifications."
        )
    else:
        message = f"Permission denied: the {role} role cannot use {tool}."
    raise PermissionDeniedError(role, tool, message)


__all__ = [
    "ALL_TOOLS",
    "PermissionDeniedError",
    "ROLE_CAPABILITIES",
    "Role",
    "can_use",
    "capabilities_for",
    "require_capability",
]
