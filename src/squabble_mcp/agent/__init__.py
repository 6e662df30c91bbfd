"""Reviewer agent process integration."""

from .session import (
    AgentInvocation,
    AgentNotFoundError,
    AgentProcessSession,
    AgentSessionError,
    AgentTransportError,
    EventListener,
    FakeAgentSession,
    SessionIdTimeoutError,
    describe_exit,
    translate_record,
)
from .utils import (
    REVIEWER_SERVER_NAME,
    build_reviewer_mcp_config,
    sanitize_environment,
    write_mcp_config,
)

__all__ = [
    "AgentInvocation",
    "AgentNotFoundError",
    "AgentProcessSession",
    "AgentSessionError",
    "AgentTransportError",
    "EventListener",
    "FakeAgentSession",
    "REVIEWER_SERVER_NAME",
    "SessionIdTimeoutError",
    "build_reviewer_mcp_config",
    "describe_exit",
    "sanitize_environment",
    "translate_record",
    "write_mcp_config",
]
