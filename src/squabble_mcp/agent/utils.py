"""Process environment helpers for the reviewer agent."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping

from ..config import SquabbleSettings

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

REVIEWER_SERVER_NAME = "squabble-pm"


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def build_reviewer_mcp_config(settings: SquabbleSettings) -> dict[str, Any]:
    """Describe how the reviewer process should launch its own Squabble server.

    Development runs the server from the local checkout with the current
    interpreter; production pulls the published package.
    """

    if settings.is_development:
        command = sys.executable
        args = ["-m", "squabble_mcp.server", "--role", "pm"]
    else:
        command = "uvx"
        args = [settings.reviewer_package, "--role", "pm"]

    return {
        "mcpServers": {
            REVIEWER_SERVER_NAME: {
                "command": command,
                "args": args,
                "env": {
                    "SQUABBLE_WORKSPACE": str(settings.workspace_root),
                    "SQUABBLE_ENV": settings.environment,
                },
            }
        }
    }


def write_mcp_config(path: Path, config: Mapping[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


__all__ = [
    "REVIEWER_SERVER_NAME",
    "build_reviewer_mcp_config",
    "sanitize_environment",
    "write_mcp_config",
]
