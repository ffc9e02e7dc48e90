"""Interactive agent session orchestration utilities."""

from .events import (
    AgentEvent,
    ErrorEvent,
    Result,
    SessionInit,
    StatusUpdate,
    TextFragment,
    ToolResult,
    ToolUse,
)
from .runner import (
    AgentError,
    AgentLauncher,
    AgentNotFoundError,
    AgentSession,
    AgentSessionError,
    ClaudeRunner,
    ClaudeSession,
    StreamTranslator,
)

__all__ = [
    "AgentError",
    "AgentEvent",
    "AgentLauncher",
    "AgentNotFoundError",
    "AgentSession",
    "AgentSessionError",
    "ClaudeRunner",
    "ClaudeSession",
    "ErrorEvent",
    "Result",
    "SessionInit",
    "StatusUpdate",
    "StreamTranslator",
    "TextFragment",
    "ToolResult",
    "ToolUse",
]
