"""FastMCP server bootstrap for Squabble."""

import argparse
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from fastmcp import Context, FastMCP

from . import __version__
from .agent import AgentNotFoundError, AgentProcessSession, build_reviewer_mcp_config, write_mcp_config
from .config import SquabbleSettings, get_settings
from .profiles import ProfileLoadError, ProfileLoader
from .review import ReviewGate
from .roles import capabilities_for
from .streaming import ActivityRecorder, EventBroker, SessionFactory
from .tasks import TaskStore, TaskStoreError, TaskWorkflowEngine
from .tools import register_tools
from .workspace import Workspace

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Squabble server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _default_session_factory(settings: SquabbleSettings, workspace: Workspace) -> SessionFactory:
    executable = Path(settings.claude_path) if settings.claude_path else None

    def factory() -> AgentProcessSession:
        return AgentProcessSession(
            executable,
            mcp_config_path=workspace.mcp_config_path,
            allowed_tools=settings.reviewer_allowed_tools,
            session_id_timeout=settings.session_id_timeout_seconds,
        )

    return factory


def create_server(
    settings: Optional[SquabbleSettings] = None,
    session_factory: SessionFactory | None = None,
) -> FastMCP:
    """Wire the workspace, task engine, event pipeline and tools into a FastMCP server."""

    settings = settings or get_settings()

    workspace = Workspace(settings.workspace_root)
    workspace.initialize()
    write_mcp_config(workspace.mcp_config_path, build_reviewer_mcp_config(settings))

    store = TaskStore(workspace.tasks_path, workspace.counter_path)
    engine = TaskWorkflowEngine(store, id_prefix=settings.task_id_prefix)
    recorder = ActivityRecorder(
        settings.workspace_root,
        max_bytes=settings.activity_log_max_bytes,
        keep_sessions=settings.activity_log_keep_sessions,
    )

    factory = session_factory or _default_session_factory(settings, workspace)
    agent_metadata: dict[str, Any] = {
        "available": False,
        "executable": None,
        "environment": settings.environment,
        "error": None,
    }
    try:
        probe = factory()
        agent_metadata["available"] = True
        agent_metadata["executable"] = str(probe.executable)
    except AgentNotFoundError as exc:
        agent_metadata["error"] = str(exc)

    broker = EventBroker(factory, recorder=recorder, recent_capacity=settings.recent_event_capacity)
    gate = ReviewGate(
        broker,
        engine,
        timeout=settings.consultation_timeout_seconds,
        review_timeout=settings.review_timeout_seconds,
    )
    profile_loader = ProfileLoader(settings.profile_paths)

    @asynccontextmanager
    async def lifespan(app: FastMCP):
        await recorder.open()
        try:
            yield
        finally:
            await broker.shutdown()

    server = FastMCP(
        name="Squabble MCP",
        version=__version__,
        instructions=(
            "Squabble pairs an engineer with a reviewer agent. Use get_next_task and "
            "claim_task to pick work, submit_for_review to get approval, and "
            "propose_modification to change the task list."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        settings=settings,
        workspace=workspace,
        engine=engine,
        gate=gate,
        broker=broker,
        profiles=profile_loader,
        recorder=recorder,
    )

    def status_payload(request_id: Any = None) -> dict[str, Any]:
        try:
            profile_ids = sorted(profile_loader.load_all().keys())
            profile_error: str | None = None
        except ProfileLoadError as exc:
            profile_ids = []
            profile_error = str(exc)

        try:
            task_counts: dict[str, int] | None = engine.status_counts()
            task_error: str | None = None
        except TaskStoreError as exc:
            task_counts = None
            task_error = str(exc)

        recent = broker.recent_events(5)
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "role": settings.role,
            "environment": settings.environment,
            "log_level": settings.log_level,
            "tools": sorted(capabilities_for(settings.role)),
            "profiles": {"count": len(profile_ids), "ids": profile_ids, "error": profile_error},
            "agent": agent_metadata,
            "tasks": {"status_counts": task_counts, "error": task_error},
            "sessions": {
                "active": [meta.model_dump(mode="json") for meta in broker.active_sessions()],
                "recent_events": [event.to_record() for event in recent],
            },
            "activity_log": {
                "path": str(recorder.structured_path),
                "write_failures": recorder.write_failures,
            },
            "request_id": request_id,
        }

    @server.resource(
        "resource://squabble/status",
        name="squabble_status",
        title="Squabble MCP Status",
        description="Current role, task counts, reviewer sessions and recent activity.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(status_payload(getattr(context, "request_id", None)))

    setattr(server, "squabble_settings", settings)
    setattr(server, "workspace", workspace)
    setattr(server, "engine", engine)
    setattr(server, "recorder", recorder)
    setattr(server, "broker", broker)
    setattr(server, "gate", gate)
    setattr(server, "profile_loader", profile_loader)
    setattr(server, "agent_metadata", agent_metadata)
    setattr(server, "status_payload", status_payload)
    setattr(server, "tool_handles", handles)
    return server


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="squabble-mcp", description="Run the Squabble MCP server.")
    parser.add_argument(
        "--role",
        choices=["engineer", "pm", "specialist"],
        default=None,
        help="Role whose tools are exposed (defaults to SQUABBLE_MODE or engineer).",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root (defaults to SQUABBLE_WORKSPACE or ./.squabble).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for running the Squabble MCP server via CLI."""

    args = parse_args(argv)
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if args.role:
        overrides["role"] = args.role
    if args.workspace:
        overrides["workspace_root"] = args.workspace.expanduser().resolve()
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Squabble MCP server",
        extra={
            "version": __version__,
            "role": settings.role,
            "environment": settings.environment,
            "agent_available": getattr(server, "agent_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
