"""Async session wrapper around the reviewer agent CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..events import (
    ActivityEvent,
    AgentMessageEvent,
    ErrorEvent,
    SessionEndEvent,
    SessionStartEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

EventListener = Callable[[ActivityEvent], None]

_STREAM_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL = 5


class AgentSessionError(RuntimeError):
    """Base class for reviewer agent session errors."""


class AgentNotFoundError(AgentSessionError):
    """Raised when the agent CLI executable cannot be located."""


class AgentTransportError(AgentSessionError):
    """Raised when the agent process cannot be started or ends without a session id."""


class SessionIdTimeoutError(AgentSessionError):
    """Raised when no initialization event arrives within the configured wait."""


@dataclass(slots=True)
class AgentInvocation:
    """Identifies a running consultation."""

    session_id: str
    process_id: int | None
    args: tuple[str, ...]


def describe_exit(returncode: int | None) -> str:
    if returncode is None:
        return "Process exited"
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"Process terminated by signal {name}"
    return f"Process exited with code {returncode}"


def _text_blocks(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def translate_record(record: Mapping[str, Any], session_id: str | None) -> list[ActivityEvent]:
    """Map one stream-json record from the agent CLI onto activity events.

    Records the CLI emits that carry nothing worth logging (final ``result``
    summaries, empty text blocks) translate to an empty list.
    """

    kind = record.get("type")
    events: list[ActivityEvent] = []

    if kind == "system":
        if record.get("subtype") == "init" and record.get("session_id"):
            events.append(
                SessionStartEvent(
                    session_id=record["session_id"],
                    tools=[str(tool) for tool in record.get("tools") or []],
                )
            )
    elif kind == "tool_use":
        events.append(
            ToolUseEvent(
                session_id=session_id,
                tool=str(record.get("name") or "unknown"),
                args=dict(record.get("input") or {}),
                id=record.get("id"),
            )
        )
    elif kind == "tool_result":
        summary = _text_blocks(record.get("content")) or str(record.get("result") or "")
        if summary.strip():
            events.append(
                ToolResultEvent(
                    session_id=session_id,
                    result_summary=summary,
                    correlates_to_id=record.get("tool_use_id"),
                )
            )
    elif kind == "content":
        text = record.get("text") or ""
        if text.strip():
            events.append(AgentMessageEvent(session_id=session_id, text=text))
    elif kind == "assistant":
        blocks = (record.get("message") or {}).get("content") or []
        text = _text_blocks(blocks)
        if text.strip():
            events.append(AgentMessageEvent(session_id=session_id, text=text))
        for block in blocks:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                events.append(
                    ToolUseEvent(
                        session_id=session_id,
                        tool=str(block.get("name") or "unknown"),
                        args=dict(block.get("input") or {}),
                        id=block.get("id"),
                    )
                )
    elif kind == "user":
        blocks = (record.get("message") or {}).get("content") or []
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            summary = _text_blocks(block.get("content"))
            if summary:
                events.append(
                    ToolResultEvent(
                        session_id=session_id,
                        result_summary=summary,
                        correlates_to_id=block.get("tool_use_id"),
                    )
                )

    return events


class AgentProcessSession:
    """Run one consultation of the reviewer agent CLI and stream its events.

    The prompt goes to the process on stdin; stdout is read line by line and
    each line that parses as stream-json is translated into activity events
    for the subscribed listeners. The session id is taken from the CLI's
    ``system/init`` record and :meth:`invoke` returns as soon as it arrives,
    while the rest of the stream keeps flowing in the background.
    """

    def __init__(
        self,
        executable: Path | None = None,
        *,
        mcp_config_path: Path | None = None,
        allowed_tools: str | None = None,
        extra_args: Sequence[str] = (),
        session_id_timeout: float = 10.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._mcp_config_path = mcp_config_path
        self._allowed_tools = allowed_tools
        self._extra_args = list(extra_args)
        self._session_id_timeout = session_id_timeout
        self._env = sanitize_environment(env)
        self._init_state()

    def _init_state(self) -> None:
        self._listeners: list[EventListener] = []
        self._process: asyncio.subprocess.Process | None = None
        self._session_id: str | None = None
        self._session_ready: asyncio.Future[str] | None = None
        self._background: list[asyncio.Task[Any]] = []
        self._finished = False
        self.stderr_lines: list[str] = []
        self.parse_failures = 0

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"Agent executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise AgentNotFoundError("claude CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def process_id(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def finished(self) -> bool:
        return self._finished

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def build_args(self, system_prompt: str, resume_token: str | None = None) -> list[str]:
        args = ["-p", "--system-prompt", system_prompt]
        if self._mcp_config_path is not None:
            args.extend(["--mcp-config", str(self._mcp_config_path)])
        if self._allowed_tools:
            args.extend(["--allowedTools", self._allowed_tools])
        args.extend(["--output-format", "stream-json", "--verbose"])
        args.extend(self._extra_args)
        if resume_token:
            args.extend(["--resume", resume_token])
        return args

    async def invoke(
        self,
        prompt: str,
        system_prompt: str,
        resume_token: str | None = None,
    ) -> AgentInvocation:
        """Spawn the agent, send ``prompt`` and wait for the session id."""

        if self._session_ready is not None:
            raise AgentSessionError("Agent session has already been invoked")

        cmd = [str(self._executable_path), *self.build_args(system_prompt, resume_token)]
        loop = asyncio.get_running_loop()
        self._session_ready = loop.create_future()

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise AgentNotFoundError(f"Agent executable not found at {cmd[0]}") from exc
        except OSError as exc:
            raise AgentTransportError(f"Failed to start agent process: {exc}") from exc

        self._process = process
        stdout_task = loop.create_task(self._pump_stdout(process))
        stderr_task = loop.create_task(self._pump_stderr(process))
        self._background = [
            stdout_task,
            stderr_task,
            loop.create_task(self._watch_exit(process, stdout_task, stderr_task)),
        ]

        assert process.stdin is not None
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Agent process closed stdin before the prompt was written")
        finally:
            process.stdin.close()

        session_id = await self._await_session_id()
        return AgentInvocation(session_id=session_id, process_id=process.pid, args=tuple(cmd))

    async def _await_session_id(self) -> str:
        assert self._session_ready is not None
        try:
            return await asyncio.wait_for(
                asyncio.shield(self._session_ready), timeout=self._session_id_timeout
            )
        except asyncio.TimeoutError as exc:
            self._session_ready.cancel()
            await self.stop()
            raise SessionIdTimeoutError(
                f"Timed out after {self._session_id_timeout:g}s waiting for the agent session id"
            ) from exc

    async def _pump_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            try:
                raw = await process.stdout.readline()
            except ValueError:
                self.parse_failures += 1
                self._emit(ErrorEvent(session_id=self._session_id, message="Dropped oversized output line"))
                continue
            if not raw:
                break
            self.handle_line(raw.decode("utf-8", errors="replace"))

    async def _pump_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self.stderr_lines.append(line)
                logger.warning("Agent stderr: %s", line, extra={"session_id": self._session_id})

    async def _watch_exit(
        self,
        process: asyncio.subprocess.Process,
        *pumps: asyncio.Task[Any],
    ) -> None:
        await asyncio.gather(*pumps, return_exceptions=True)
        returncode = await process.wait()
        self.finish(returncode)

    def handle_line(self, line: str) -> None:
        """Parse one stdout line; anything that is not stream-json is noise."""

        stripped = line.strip()
        if not stripped:
            return
        try:
            record = json.loads(stripped)
        except json.JSONDecodeError:
            self.parse_failures += 1
            logger.debug("Ignoring non-JSON agent output", extra={"line": stripped[:200]})
            return
        if not isinstance(record, dict):
            self.parse_failures += 1
            return

        for event in translate_record(record, self._session_id):
            if isinstance(event, SessionStartEvent):
                self._session_id = event.session_id
                if self._session_ready is not None and not self._session_ready.done():
                    self._session_ready.set_result(event.session_id)
            self._emit(event)

    def finish(self, returncode: int | None) -> None:
        """Turn process exit into the terminal event of the stream."""

        if self._finished:
            return
        self._finished = True

        if self._session_ready is not None and not self._session_ready.done():
            tail = "; ".join(self.stderr_lines[-_STDERR_TAIL:])
            message = f"Agent process closed without emitting a session id ({describe_exit(returncode)})"
            if tail:
                message = f"{message}: {tail}"
            self._session_ready.set_exception(AgentTransportError(message))
            return

        if self._session_id is not None:
            self._emit(
                SessionEndEvent(
                    session_id=self._session_id,
                    exit_reason=describe_exit(returncode),
                    exit_code=returncode,
                )
            )

    def _emit(self, event: ActivityEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001 - one listener must not break the stream
                logger.exception("Agent event listener failed", extra={"event_type": event.type})

    async def stop(self) -> None:
        """Kill the agent process if it is still running."""

        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def wait(self) -> int | None:
        """Wait for the process and its stream to be fully consumed."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        return self._process.returncode if self._process is not None else None


class FakeAgentSession(AgentProcessSession):
    """Test double that replays scripted stream-json output instead of spawning a process."""

    def __init__(  # type: ignore[override]
        self,
        records: Iterable[Mapping[str, Any] | str] | None = None,
        *,
        exit_code: int = 0,
        hold_open: bool = False,
        session_id_timeout: float = 1.0,
    ) -> None:
        self._executable_path = Path("/tmp/fake-claude")
        self._mcp_config_path = None
        self._allowed_tools = None
        self._extra_args = []
        self._session_id_timeout = session_id_timeout
        self._env = {}
        self._init_state()
        self._records = [
            record if isinstance(record, str) else json.dumps(record) for record in (records or [])
        ]
        self._exit_code = exit_code
        self._hold_open = hold_open
        self._released: asyncio.Event | None = None
        self.invocations: list[dict[str, Any]] = []

    async def invoke(  # type: ignore[override]
        self,
        prompt: str,
        system_prompt: str,
        resume_token: str | None = None,
    ) -> AgentInvocation:
        if self._session_ready is not None:
            raise AgentSessionError("Agent session has already been invoked")
        self.invocations.append(
            {"prompt": prompt, "system_prompt": system_prompt, "resume_token": resume_token}
        )
        loop = asyncio.get_running_loop()
        self._session_ready = loop.create_future()
        self._released = asyncio.Event()
        if not self._hold_open:
            self._released.set()
        self._background = [loop.create_task(self._replay())]
        session_id = await self._await_session_id()
        return AgentInvocation(
            session_id=session_id,
            process_id=None,
            args=tuple(self.build_args(system_prompt, resume_token)),
        )

    async def _replay(self) -> None:
        for line in self._records:
            self.handle_line(line)
            await asyncio.sleep(0)
        assert self._released is not None
        await self._released.wait()
        self.finish(self._exit_code)

    def release(self) -> None:
        if self._released is not None:
            self._released.set()

    async def stop(self) -> None:  # type: ignore[override]
        if not self._finished:
            self._exit_code = -signal.SIGTERM
            self.release()

