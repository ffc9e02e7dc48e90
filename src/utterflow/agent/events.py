"""Events streamed back from an interactive agent session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True, slots=True)
class SessionInit:
    session_id: str


@dataclass(frozen=True, slots=True)
class ToolUse:
    name: str
    input: str


@dataclass(frozen=True, slots=True)
class ToolResult:
    name: str
    output: str


@dataclass(frozen=True, slots=True)
class TextFragment:
    text: str


@dataclass(frozen=True, slots=True)
class Result:
    final_text: str


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    message: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str


AgentEvent = Union[SessionInit, ToolUse, ToolResult, TextFragment, Result, StatusUpdate, ErrorEvent]


__all__ = [
    "AgentEvent",
    "ErrorEvent",
    "Result",
    "SessionInit",
    "StatusUpdate",
    "TextFragment",
    "ToolResult",
    "ToolUse",
]
