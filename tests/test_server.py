from __future__ import annotations

import asyncio
import json
from pathlib import Path

from squabble_mcp.agent import AgentNotFoundError, FakeAgentSession
from squabble_mcp.config import SquabbleSettings
from squabble_mcp.server import create_server, parse_args


def make_settings(tmp_path: Path, **overrides) -> SquabbleSettings:
    return SquabbleSettings(
        workspace_root=tmp_path,
        profile_paths=(tmp_path / "profiles",),
        **overrides,
    )


def reviewer_factory(records=None):
    def factory() -> FakeAgentSession:
        return FakeAgentSession(records or [])

    return factory


def test_create_server_prepares_workspace(tmp_path: Path) -> None:
    server = create_server(make_settings(tmp_path), session_factory=reviewer_factory())

    assert (tmp_path / "workspace" / "tasks").is_dir()
    config = json.loads((tmp_path / "mcp-config-pm.json").read_text(encoding="utf-8"))
    assert config["mcpServers"]["squabble-pm"]["args"][-2:] == ["--role", "pm"]

    payload = getattr(server, "status_payload")("req-1")
    assert payload["role"] == "engineer"
    assert "update_tasks" not in payload["tools"]
    assert payload["agent"]["available"] is True
    assert payload["profiles"]["ids"] == ["reviewer"]
    assert payload["tasks"]["status_counts"] == {"pending": 0, "in-progress": 0, "review": 0, "done": 0}
    assert payload["sessions"]["active"] == []
    assert payload["request_id"] == "req-1"
    json.dumps(payload)


def test_create_server_reports_missing_agent(tmp_path: Path) -> None:
    def missing_factory():
        raise AgentNotFoundError("claude CLI executable not found on PATH")

    server = create_server(make_settings(tmp_path), session_factory=missing_factory)

    metadata = getattr(server, "agent_metadata")
    assert metadata["available"] is False
    assert "not found" in metadata["error"]


def test_create_server_role_controls_tools(tmp_path: Path) -> None:
    pm = create_server(make_settings(tmp_path / "pm", role="pm"), session_factory=reviewer_factory())
    specialist = create_server(
        make_settings(tmp_path / "spec", role="specialist"), session_factory=reviewer_factory()
    )

    assert "update_tasks" in getattr(pm, "tool_handles").registered
    assert sorted(getattr(specialist, "tool_handles").registered) == [
        "consult_reviewer",
        "get_next_task",
        "recent_activity",
    ]


def test_status_reflects_reviewer_activity(tmp_path: Path) -> None:
    records = [
        {"type": "system", "subtype": "init", "session_id": "sess-1"},
        {"type": "content", "text": "Fine by me."},
    ]
    server = create_server(make_settings(tmp_path), session_factory=reviewer_factory(records))
    gate = getattr(server, "gate")

    consultation = asyncio.run(gate.consult("Anything else?", "system"))
    payload = getattr(server, "status_payload")()

    assert consultation.text == "Fine by me."
    assert [event["type"] for event in payload["sessions"]["recent_events"]] == [
        "session_start",
        "agent_message",
        "session_end",
    ]


def test_parse_args() -> None:
    args = parse_args(["--role", "pm", "--workspace", "/tmp/squabble"])

    assert args.role == "pm"
    assert args.workspace == Path("/tmp/squabble")
    assert parse_args([]).role is None
