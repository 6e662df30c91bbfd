from __future__ import annotations

import pytest

from squabble_mcp.roles import (
    ALL_TOOLS,
    PermissionDeniedError,
    can_use,
    capabilities_for,
    require_capability,
)


def test_capability_table() -> None:
    assert capabilities_for("pm") == ALL_TOOLS
    assert "update_tasks" not in capabilities_for("engineer")
    assert "propose_modification" in capabilities_for("engineer")
    assert capabilities_for("specialist") == {"get_next_task", "consult_reviewer", "recent_activity"}


def test_engineer_is_pointed_at_proposals() -> None:
    with pytest.raises(PermissionDeniedError) as excinfo:
        require_capability("engineer", "update_tasks")

    assert excinfo.value.role == "engineer"
    assert excinfo.value.tool == "update_tasks"
    assert "propose_modification" in str(excinfo.value)


def test_specialist_is_read_only() -> None:
    assert can_use("specialist", "consult_reviewer")
    with pytest.raises(PermissionDeniedError) as excinfo:
        require_capability("specialist", "claim_task")
    assert "read-only" in str(excinfo.value)


def test_unknown_role() -> None:
    with pytest.raises(ValueError):
        capabilities_for("admin")
