"""Async runner for interactive agent CLI sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncGenerator, Protocol, Sequence

from ..attachments import Attachment, content_blocks
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
from .utils import find_agent_cli, sanitize_environment

logger = logging.getLogger(__name__)

_INPUT_SUMMARY_KEYS = ("command", "pattern", "file_path", "path", "query", "url", "description")


class AgentError(RuntimeError):
    """Base class for agent runner errors."""


class AgentNotFoundError(AgentError):
    """Raised when the agent CLI executable cannot be located."""


class AgentSessionError(AgentError):
    """Raised when a session fails to start or its stream breaks."""


class AgentSession(Protocol):
    """A running interactive agent process."""

    @property
    def is_running(self) -> bool:
        ...

    def events(self) -> AsyncGenerator[AgentEvent, None]:
        ...

    async def send(self, text: str, attachments: Sequence[Attachment] = ()) -> None:
        ...

    async def stop(self) -> None:
        ...


class AgentLauncher(Protocol):
    """Starts agent sessions."""

    async def start_session(
        self,
        prompt: str,
        working_directory: Path,
        attachments: Sequence[Attachment] = (),
    ) -> AgentSession:
        ...


def summarize_tool_input(value: Any) -> str:
    """Return a one-line description of a tool invocation's input."""

    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in _INPUT_SUMMARY_KEYS:
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value, separators=(",", ":"), default=str)


def _flatten_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(part for part in parts if part)
    return "" if content is None else str(content)


class StreamTranslator:
    """Translate stream-json lines emitted by the CLI into agent events."""

    def __init__(self) -> None:
        self._tool_names: dict[str, str] = {}
        self.error_result: str | None = None

    def translate(self, line: str) -> list[AgentEvent]:
        line = line.strip()
        if not line:
            return []
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            return [StatusUpdate(line)]
        if not isinstance(payload, dict):
            return [StatusUpdate(line)]

        kind = payload.get("type")
        if kind == "system":
            if payload.get("subtype") == "init":
                return [SessionInit(str(payload.get("session_id", "")))]
            return [StatusUpdate(str(payload.get("message") or payload.get("subtype") or "system"))]

        if kind == "assistant":
            events: list[AgentEvent] = []
            for block in (payload.get("message") or {}).get("content") or []:
                block_type = block.get("type")
                if block_type == "text" and block.get("text"):
                    events.append(TextFragment(block["text"]))
                elif block_type == "tool_use":
                    name = block.get("name", "tool")
                    if block.get("id"):
                        self._tool_names[block["id"]] = name
                    events.append(ToolUse(name, summarize_tool_input(block.get("input"))))
            return events

        if kind == "user":
            events = []
            content = (payload.get("message") or {}).get("content")
            if not isinstance(content, list):
                return events
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_result":
                    name = self._tool_names.pop(block.get("tool_use_id", ""), "tool")
                    events.append(ToolResult(name, _flatten_content(block.get("content"))))
            return events

        if kind == "result":
            text = str(payload.get("result") or "")
            if payload.get("is_error"):
                self.error_result = text or str(payload.get("subtype") or "error")
                return [ErrorEvent(self.error_result)]
            return [Result(text)]

        if kind == "error":
            return [ErrorEvent(str(payload.get("message") or payload.get("error") or line))]

        return []


class ClaudeSession:
    """One interactive CLI process speaking stream-json over stdin/stdout."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._translator = StreamTranslator()
        self._consumed = False
        self._stopped = False
        self._finished = False

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def is_running(self) -> bool:
        return not self._stopped and not self._finished and self._process.returncode is None

    async def send(self, text: str, attachments: Sequence[Attachment] = ()) -> None:
        stdin = self._process.stdin
        if not self.is_running or stdin is None or stdin.is_closing():
            raise AgentSessionError("Agent session is not running")
        message = {
            "type": "user",
            "message": {"role": "user", "content": content_blocks(text, attachments)},
        }
        try:
            stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise AgentSessionError(f"Agent session input closed: {exc}") from exc

    async def stop(self) -> None:
        self._stopped = True
        if self._process.stdin is not None and not self._process.stdin.is_closing():
            self._process.stdin.close()
        if self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                return
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()

    async def events(self) -> AsyncGenerator[AgentEvent, None]:
        if self._consumed:
            raise AgentSessionError("Agent event stream can only be consumed once")
        self._consumed = True

        stdout = self._process.stdout
        assert stdout is not None
        while True:
            raw = await stdout.readline()
            if not raw:
                break
            for event in self._translator.translate(raw.decode("utf-8", errors="replace")):
                if isinstance(event, Result) and self._process.stdin is not None:
                    # A result ends the turn; closing stdin lets the CLI exit.
                    self._process.stdin.close()
                yield event

        returncode = await self._process.wait()
        self._finished = True
        if self._stopped:
            raise AgentSessionError("Agent session was stopped")
        if returncode != 0:
            raise AgentSessionError(f"agent exited with code {returncode}")
        if self._translator.error_result is not None:
            raise AgentSessionError(self._translator.error_result)


class ClaudeRunner:
    """Start interactive agent CLI sessions asynchronously."""

    def __init__(self, executable: Path | None = None, *, model: str | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._model = model

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"Agent executable not found at {candidate}")

        binary = find_agent_cli()
        if binary is None:
            raise AgentNotFoundError(
                "claude CLI not found. Install via: npm install -g @anthropic-ai/claude-code"
            )
        return binary

    @property
    def executable(self) -> Path:
        return self._executable_path

    def command(self) -> list[str]:
        cmd = [
            str(self._executable_path),
            "--print",
            "--input-format",
            "stream-json",
            "--output-format",
            "stream-json",
            "--verbose",
        ]
        if self._model:
            cmd.extend(["--model", self._model])
        return cmd

    async def start_session(
        self,
        prompt: str,
        working_directory: Path,
        attachments: Sequence[Attachment] = (),
    ) -> ClaudeSession:
        cwd = Path(working_directory)
        if not cwd.is_dir():
            raise AgentSessionError(f"Working directory does not exist: {cwd}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(),
                cwd=str(cwd),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=sanitize_environment(),
                limit=16 * 1024 * 1024,
            )
        except OSError as exc:
            raise AgentSessionError(f"Failed to launch agent: {exc}") from exc

        session = ClaudeSession(process)
        logger.info(
            "Started agent session",
            extra={"pid": process.pid, "cwd": str(cwd), "attachments": len(attachments)},
        )
        try:
            await session.send(prompt, attachments)
        except BaseException:
            await session.stop()
            raise
        return session


__all__ = [
    "AgentError",
    "AgentLauncher",
    "AgentNotFoundError",
    "AgentSession",
    "AgentSessionError",
    "ClaudeRunner",
    "ClaudeSession",
    "StreamTranslator",
    "summarize_tool_input",
]
