"""Durable dual-format activity log with size-triggered rotation."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from ..events import EnhancedEvent

logger = logging.getLogger(__name__)

BANNER = "=" * 80
_TAIL_CHUNK = 64 * 1024
_ARG_PREVIEW = 100
_RESULT_PREVIEW = 200


class ActivityLogRotationError(RuntimeError):
    """Raised when rotation fails; the logs are left as they were."""


def condense_args(args: dict[str, Any]) -> str:
    """Short single-line rendering of tool arguments for the narrative log."""

    if not args:
        return ""
    for key in ("file_path", "path", "command", "pattern", "url", "query"):
        value = args.get(key)
        if isinstance(value, str) and value:
            text = value.splitlines()[0] if value.strip() else value
            return text if len(text) <= _ARG_PREVIEW else text[: _ARG_PREVIEW - 3] + "..."
    text = json.dumps(args, default=str, ensure_ascii=False)
    return text if len(text) <= _ARG_PREVIEW else text[: _ARG_PREVIEW - 3] + "..."


def _condense_result(summary: str) -> str:
    lines = [line for line in summary.splitlines() if line.strip()]
    if not lines:
        return "(empty result)"
    first = lines[0].strip()
    if len(first) > _RESULT_PREVIEW:
        first = first[: _RESULT_PREVIEW - 3] + "..."
    if len(lines) > 1:
        first = f"{first} (+{len(lines) - 1} more lines)"
    return first


def format_narrative(enhanced: EnhancedEvent) -> list[str]:
    """Render one event as lines of the human-readable log."""

    event = enhanced.event
    prefix = f"[{event.timestamp.isoformat()}] "

    if event.type == "session_start":
        lines = [BANNER, f"{prefix}🚀 Reviewer session started (ID: {event.session_id})"]
        session = enhanced.session
        if session is not None and (session.task_id or session.engineer_id != "unknown"):
            lines.append(f"{prefix}   engineer: {session.engineer_id}, task: {session.task_id or '-'}")
        lines.append(BANNER)
        return lines
    if event.type == "session_end":
        return [f"{prefix}✅ Reviewer session completed ({event.exit_reason})", BANNER, ""]
    if event.type == "tool_use":
        condensed = condense_args(event.args)
        return [f"{prefix}🔧 {event.tool}" + (f": {condensed}" if condensed else "")]
    if event.type == "tool_result":
        return [f"{prefix}   └─ {_condense_result(event.result_summary)}"]
    if event.type == "agent_message":
        return [f"{prefix}💬 Reviewer: {event.text}"]
    return [f"{prefix}❌ Error: {event.message}"]


def _iter_lines_reversed(path: Path) -> Iterator[str]:
    with path.open("rb") as handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        remainder = b""
        while position > 0:
            step = min(_TAIL_CHUNK, position)
            position -= step
            handle.seek(position)
            chunk = handle.read(step) + remainder
            lines = chunk.split(b"\n")
            remainder = lines.pop(0)
            for line in reversed(lines):
                yield line.decode("utf-8", errors="replace")
        if remainder:
            yield remainder.decode("utf-8", errors="replace")


class ActivityRecorder:
    """Persist every broker event as a JSON line and as a narrative line.

    Events handed to :meth:`submit` are queued and written from a worker
    thread, so publishing never waits on disk. After every append the
    structured log is checked against ``max_bytes`` and rotated when it is
    over. Write failures are logged and counted in :attr:`write_failures`.
    Rotation failures are kept and raised by the next :meth:`flush`.
    """

    def __init__(
        self,
        root: Path,
        *,
        structured_name: str = "pm-activity.jsonl",
        narrative_name: str = "pm-activity.log",
        max_bytes: int = 10 * 1024 * 1024,
        keep_sessions: int = 5,
    ) -> None:
        if max_bytes <= 0 or keep_sessions <= 0:
            raise ValueError("max_bytes and keep_sessions must be > 0")
        self.root = Path(root)
        self.structured_path = self.root / structured_name
        self.narrative_path = self.root / narrative_name
        self.max_bytes = max_bytes
        self.keep_sessions = keep_sessions
        self.write_failures = 0
        self._rotation_error: ActivityLogRotationError | None = None
        self._queue: asyncio.Queue[EnhancedEvent | None] | None = None
        self._writer: asyncio.Task[None] | None = None

    async def open(self) -> None:
        """Rotate if the structured log is over the limit, then start writing."""

        self.root.mkdir(parents=True, exist_ok=True)
        self.rotate_if_needed()
        self._ensure_writer()

    def _ensure_writer(self) -> asyncio.Queue[EnhancedEvent | None]:
        if self._queue is None or self._writer is None or self._writer.done():
            self._queue = asyncio.Queue()
            self._writer = asyncio.get_running_loop().create_task(self._drain(self._queue))
        return self._queue

    async def _drain(self, queue: asyncio.Queue[EnhancedEvent | None]) -> None:
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return
                await asyncio.to_thread(self._write, event)
            finally:
                queue.task_done()

    def submit(self, event: EnhancedEvent) -> None:
        """Queue ``event`` for the background writer without blocking."""

        self._ensure_writer().put_nowait(event)

    def _write(self, event: EnhancedEvent) -> None:
        """Append one event to both logs, then rotate if the structured log grew too big."""

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            record = json.dumps(event.to_record(), ensure_ascii=False)
            with self.structured_path.open("a", encoding="utf-8") as handle:
                handle.write(record + "\n")
            with self.narrative_path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(format_narrative(event)) + "\n")
        except (OSError, ValueError) as exc:
            self.write_failures += 1
            logger.error(
                "Failed to persist activity event",
                extra={
                    "event_type": event.type,
                    "session_id": event.session_id,
                    "error": str(exc),
                },
            )
            return

        try:
            self.rotate_if_needed()
        except ActivityLogRotationError as exc:
            self._rotation_error = exc
            logger.error("Activity log rotation failed", extra={"error": str(exc)})

    async def flush(self) -> None:
        """Wait for queued writes; re-raise a rotation failure seen since the last flush."""

        if self._queue is not None:
            await self._queue.join()
        error, self._rotation_error = self._rotation_error, None
        if error is not None:
            raise error

    async def close(self) -> None:
        queue, writer = self._queue, self._writer
        if queue is None or writer is None:
            return
        queue.put_nowait(None)
        await writer
        self._queue = None
        self._writer = None

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate_if_needed(self) -> bool:
        try:
            size = self.structured_path.stat().st_size
        except FileNotFoundError:
            return False
        if size <= self.max_bytes:
            return False
        self.rotate()
        return True

    def rotate(self) -> None:
        """Keep only the most recent ``keep_sessions`` sessions in both logs."""

        structured_tmp = self.structured_path.with_name(f"{self.structured_path.name}.tmp")
        narrative_tmp = self.narrative_path.with_name(f"{self.narrative_path.name}.tmp")
        try:
            sessions: dict[str, list[dict[str, Any]]] = {}
            with self.structured_path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    stripped = line.strip()
                    if not stripped:
                        continue
                    try:
                        record = json.loads(stripped)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(record, dict):
                        continue
                    key = record.get("session_id") or "unknown"
                    sessions.setdefault(key, []).append(record)

            # Sessions stay in first-seen order; each keeps its own line order.
            retained = list(sessions.items())[-self.keep_sessions :]

            with structured_tmp.open("w", encoding="utf-8") as structured, narrative_tmp.open(
                "w", encoding="utf-8"
            ) as narrative:
                for _, records in retained:
                    for record in records:
                        structured.write(json.dumps(record, ensure_ascii=False) + "\n")
                        try:
                            lines = format_narrative(EnhancedEvent.from_record(record))
                        except ValidationError:
                            continue
                        narrative.write("\n".join(lines) + "\n")

            os.replace(structured_tmp, self.structured_path)
            os.replace(narrative_tmp, self.narrative_path)
        except (OSError, ValueError) as exc:
            structured_tmp.unlink(missing_ok=True)
            narrative_tmp.unlink(missing_ok=True)
            raise ActivityLogRotationError(f"Failed to rotate activity log: {exc}") from exc

        logger.info(
            "Rotated activity log",
            extra={"sessions_kept": len(retained), "sessions_dropped": len(sessions) - len(retained)},
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_recent_events(self, limit: int = 100) -> list[EnhancedEvent]:
        """Return up to ``limit`` of the newest logged events, oldest first."""

        if limit <= 0 or not self.structured_path.exists():
            return []

        events: list[EnhancedEvent] = []
        try:
            for line in _iter_lines_reversed(self.structured_path):
                if len(events) >= limit:
                    break
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    events.append(EnhancedEvent.from_record(json.loads(stripped)))
                except (ValueError, TypeError):
                    continue
        except FileNotFoundError:
            return []

        events.reverse()
        return events


__all__ = [
    "ActivityLogRotationError",
    "ActivityRecorder",
    "BANNER",
    "condense_args",
    "format_narrative",
]
