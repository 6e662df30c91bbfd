from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from squabble_mcp.agent import (
    AgentNotFoundError,
    AgentProcessSession,
    AgentTransportError,
    FakeAgentSession,
    SessionIdTimeoutError,
    build_reviewer_mcp_config,
    describe_exit,
    sanitize_environment,
    translate_record,
    write_mcp_config,
)
from squabble_mcp.config import SquabbleSettings
from squabble_mcp.events import AgentMessageEvent, SessionStartEvent, ToolResultEvent, ToolUseEvent

STREAM_SCRIPT = """#!/bin/sh
cat > "$(dirname "$0")/prompt.txt"
echo "$@" > "$(dirname "$0")/args.txt"
cat <<'EOF'
starting up, not json
{"type":"system","subtype":"init","session_id":"sess-1","tools":["Read","Bash"]}
{"type":"assistant","message":{"content":[{"type":"text","text":"Checking the diff"},{"type":"tool_use","id":"tu-1","name":"Read","input":{"file_path":"app.py"}}]}}
{"type":"user","message":{"content":[{"type":"tool_result","tool_use_id":"tu-1","content":[{"type":"text","text":"print('hi')"}]}]}}
{"type":"assistant","message":{"content":[{"type":"text","text":"APPROVED"}]}}
{"type":"result","subtype":"success"}
EOF
exit 3
"""


def write_script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "claude"
    script.write_text(body, encoding="utf-8")
    script.chmod(0o755)
    return script


def test_session_streams_events_in_order(tmp_path: Path) -> None:
    script = write_script(tmp_path, STREAM_SCRIPT)
    session = AgentProcessSession(script, mcp_config_path=tmp_path / "mcp.json", allowed_tools="Read")
    received = []
    session.subscribe(received.append)

    async def run():
        invocation = await session.invoke("Review this", "You are a reviewer")
        returncode = await session.wait()
        return invocation, returncode

    invocation, returncode = asyncio.run(run())

    assert invocation.session_id == "sess-1"
    assert invocation.process_id is not None
    assert returncode == 3
    assert [event.type for event in received] == [
        "session_start",
        "agent_message",
        "tool_use",
        "tool_result",
        "agent_message",
        "session_end",
    ]
    assert received[0].tools == ["Read", "Bash"]
    assert received[2].tool == "Read"
    assert received[2].args == {"file_path": "app.py"}
    assert received[3].correlates_to_id == "tu-1"
    assert received[-1].exit_code == 3
    assert received[-1].exit_reason == "Process exited with code 3"
    assert all(event.session_id == "sess-1" for event in received)
    assert session.parse_failures == 1
    assert session.finished

    assert (tmp_path / "prompt.txt").read_text(encoding="utf-8") == "Review this"
    args = (tmp_path / "args.txt").read_text(encoding="utf-8")
    assert "--output-format stream-json --verbose" in args
    assert "--allowedTools Read" in args


def test_session_without_init_raises_transport_error(tmp_path: Path) -> None:
    script = write_script(tmp_path, "#!/bin/sh\ncat > /dev/null\necho 'auth failed' >&2\nexit 2\n")
    session = AgentProcessSession(script)
    received = []
    session.subscribe(received.append)

    with pytest.raises(AgentTransportError) as excinfo:
        asyncio.run(session.invoke("prompt", "system"))

    message = str(excinfo.value)
    assert "code 2" in message
    assert "auth failed" in message
    assert received == []


def test_session_id_timeout_kills_process(tmp_path: Path) -> None:
    script = write_script(tmp_path, "#!/bin/sh\ncat > /dev/null\nexec sleep 5\n")
    session = AgentProcessSession(script, session_id_timeout=0.2)

    async def run():
        with pytest.raises(SessionIdTimeoutError):
            await session.invoke("prompt", "system")
        return await session.wait()

    returncode = asyncio.run(run())

    assert returncode is not None and returncode < 0


def test_missing_executable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(AgentNotFoundError):
        AgentProcessSession(tmp_path / "missing")

    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(AgentNotFoundError):
        AgentProcessSession()


def test_build_args_orders_flags_and_resume(tmp_path: Path) -> None:
    script = write_script(tmp_path, "#!/bin/sh\n")
    session = AgentProcessSession(
        script,
        mcp_config_path=tmp_path / "mcp.json",
        allowed_tools="Read,Bash",
        extra_args=["--model", "opus"],
    )

    args = session.build_args("system text", resume_token="sess-9")

    assert args == [
        "-p",
        "--system-prompt",
        "system text",
        "--mcp-config",
        str(tmp_path / "mcp.json"),
        "--allowedTools",
        "Read,Bash",
        "--output-format",
        "stream-json",
        "--verbose",
        "--model",
        "opus",
        "--resume",
        "sess-9",
    ]
    assert "--resume" not in session.build_args("system text")


def test_translate_record_variants() -> None:
    start = translate_record({"type": "system", "subtype": "init", "session_id": "s"}, None)
    assert isinstance(start[0], SessionStartEvent)
    assert start[0].session_id == "s"

    assert translate_record({"type": "system", "subtype": "other"}, "s") == []
    assert translate_record({"type": "result", "result": "done"}, "s") == []

    use = translate_record({"type": "tool_use", "name": "Grep", "input": {"pattern": "x"}, "id": "t"}, "s")
    assert isinstance(use[0], ToolUseEvent)
    assert use[0].args == {"pattern": "x"}

    result = translate_record({"type": "tool_result", "content": "3 matches", "tool_use_id": "t"}, "s")
    assert isinstance(result[0], ToolResultEvent)
    assert result[0].result_summary == "3 matches"

    content = translate_record({"type": "content", "text": "thinking"}, "s")
    assert isinstance(content[0], AgentMessageEvent)
    assert translate_record({"type": "content", "text": "   "}, "s") == []


def test_describe_exit() -> None:
    assert describe_exit(0) == "Process exited with code 0"
    assert describe_exit(-9) == "Process terminated by signal SIGKILL"


def test_fake_session_records_invocations() -> None:
    fake = FakeAgentSession(
        [
            {"type": "system", "subtype": "init", "session_id": "fake-1"},
            {"type": "content", "text": "LGTM"},
        ],
        exit_code=0,
    )
    received = []
    fake.subscribe(received.append)

    async def run():
        invocation = await fake.invoke("prompt", "system", resume_token="old")
        await fake.wait()
        return invocation

    invocation = asyncio.run(run())

    assert invocation.session_id == "fake-1"
    assert fake.invocations == [{"prompt": "prompt", "system_prompt": "system", "resume_token": "old"}]
    assert [event.type for event in received] == ["session_start", "agent_message", "session_end"]


def test_sanitize_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    env = sanitize_environment({"EXTRA": "1"})
    assert "PYTHONPATH" not in env
    assert env["EXTRA"] == "1"


def test_reviewer_mcp_config_by_environment(tmp_path: Path) -> None:
    dev = SquabbleSettings(workspace_root=tmp_path, environment="development")
    prod = SquabbleSettings(workspace_root=tmp_path, environment="production")

    dev_server = build_reviewer_mcp_config(dev)["mcpServers"]["squabble-pm"]
    prod_server = build_reviewer_mcp_config(prod)["mcpServers"]["squabble-pm"]

    assert dev_server["args"][-2:] == ["--role", "pm"]
    assert "squabble_mcp.server" in dev_server["args"]
    assert prod_server["command"] == "uvx"
    assert prod_server["env"]["SQUABBLE_WORKSPACE"] == str(tmp_path)

    path = write_mcp_config(tmp_path / "nested" / "mcp.json", build_reviewer_mcp_config(dev))
    assert json.loads(path.read_text(encoding="utf-8"))["mcpServers"]["squabble-pm"]
