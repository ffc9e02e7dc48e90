"""Tool registration for the Utterflow MCP server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from fastmcp import Context, FastMCP

from ..attachments import Attachment
from ..orchestrator import PipelineOrchestrator, PipelineSource
from ..storage import ExecutionStep, PipelineStore, PipelineTask, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    process_transcript: Any
    accept_task: Any
    dismiss_task: Any
    send_message_to_task: Any
    stop_task_session: Any
    list_tasks: Any
    task_steps: Any
    register_project: Any
    background: set[asyncio.Task[Any]] = field(default_factory=set)


def _task_payload(task: PipelineTask) -> dict[str, Any]:
    payload = asdict(task)
    payload["mode"] = task.mode.value
    payload["status"] = task.status.value
    for key in ("created_at", "started_at", "completed_at"):
        value = payload[key]
        payload[key] = value.isoformat() if value is not None else None
    return payload


def _step_payload(step: ExecutionStep) -> dict[str, Any]:
    return {
        "step_index": step.step_index,
        "description": step.description,
        "status": step.status.value,
        "timestamp": step.timestamp.isoformat(),
        "output": step.output,
    }


def register_tools(
    server: FastMCP,
    *,
    orchestrator: PipelineOrchestrator,
    store: PipelineStore,
) -> ToolHandles:
    """Register Utterflow's MCP tools on the server."""

    background: set[asyncio.Task[Any]] = set()

    def _spawn(coro: Any, *, label: str) -> None:
        task = asyncio.create_task(coro)
        background.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            background.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    "Background pipeline work failed",
                    exc_info=finished.exception(),
                    extra={"label": label},
                )

        task.add_done_callback(_done)

    def _require_task(task_id: str) -> PipelineTask:
        task = store.fetch_task(task_id)
        if task is None:
            raise ValueError(f"Unknown task '{task_id}'")
        return task

    async def _process_transcript(
        text: str,
        transcript_id: int,
        session_id: str | None = None,
        sequence_number: int = 0,
        duration_seconds: int = 0,
        speaker_name: str | None = None,
        source: str = PipelineSource.AMBIENT.value,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Queue a transcribed speech chunk for the pipeline."""

        try:
            pipeline_source = PipelineSource(source)
        except ValueError as exc:
            raise ValueError(f"Unknown source '{source}'") from exc

        _spawn(
            orchestrator.process_transcript(
                text,
                transcript_id,
                session_id,
                sequence_number,
                duration_seconds,
                speaker_name,
                source=pipeline_source,
            ),
            label=f"transcript:{transcript_id}",
        )
        _emit_log(
            context,
            "info",
            "Queued transcript chunk",
            extra={"transcript_id": transcript_id, "session_id": session_id, "sequence": sequence_number},
        )
        return {"transcript_id": transcript_id, "queued": True}

    async def _accept_task(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Approve a task and start executing it in the background."""

        _require_task(task_id)
        accepted = orchestrator.approve_task(task_id)
        if accepted is None:
            raise ValueError(f"Task '{task_id}' cannot be accepted in its current state")
        _spawn(orchestrator.execute_accepted_task(accepted), label=f"task:{task_id}")
        _emit_log(context, "info", "Accepted task", extra={"task_id": task_id})
        return _task_payload(accepted)

    async def _dismiss_task(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Filter a task out of the pipeline."""

        _require_task(task_id)
        dismissed = await orchestrator.dismiss_task(task_id)
        _emit_log(context, "info", "Dismiss requested", extra={"task_id": task_id, "dismissed": dismissed})
        return {"task_id": task_id, "dismissed": dismissed}

    async def _send_message_to_task(
        task_id: str,
        message: str,
        attachment_paths: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send a follow-up message (and optional files) to a task's running agent session."""

        attachments = [
            attachment
            for attachment in (Attachment.from_file(path) for path in attachment_paths or [])
            if attachment is not None
        ]
        sent = await orchestrator.send_message_to_task(task_id, message, attachments)
        _emit_log(context, "info" if sent else "warning", "Follow-up message", extra={"task_id": task_id, "sent": sent})
        return {"task_id": task_id, "sent": sent, "attachments": [a.file_name for a in attachments]}

    async def _stop_task_session(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Stop the agent session of a task."""

        stopped = await orchestrator.stop_task_session(task_id)
        _emit_log(context, "warning", "Stop requested", extra={"task_id": task_id, "stopped": stopped})
        return {"task_id": task_id, "stopped": stopped}

    def _list_tasks(
        status: str | None = None,
        limit: int = 50,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List pipeline tasks, optionally filtered by status."""

        status_filter = TaskStatus(status) if status else None
        tasks = store.fetch_tasks(status=status_filter)
        _emit_log(context, "debug", "Listing tasks", extra={"count": len(tasks)})
        return [_task_payload(task) for task in tasks[-limit:]]

    def _task_steps(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return the execution step log for a task."""

        task = _require_task(task_id)
        steps = store.fetch_steps(task_id)
        return {
            "task_id": task_id,
            "status": task.status.value,
            "steps": [_step_payload(step) for step in steps],
        }

    def _register_project(name: str, local_path: str, context: Context | None = None) -> dict[str, Any]:
        """Register a project directory that tasks can execute in."""

        project = store.add_project(name, local_path)
        _emit_log(context, "info", "Registered project", extra={"project_id": project.id, "path": local_path})
        return {"id": project.id, "name": project.name, "local_path": project.local_path}

    tool_process = server.tool(
        name="process_transcript",
        description=(
            "Submit a transcribed speech chunk. Chunks sharing a session_id are merged "
            "before cleaning, analysis, task creation, and automatic execution."
        ),
    )(_process_transcript)

    tool_accept = server.tool(
        name="accept_task",
        description="Approve a task awaiting input or approval and execute it.",
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Accepted tasks run a coding agent inside the project directory",
            }
        },
    )(_accept_task)

    tool_dismiss = server.tool(
        name="dismiss_task",
        description="Dismiss an upcoming or ongoing task (idempotent).",
    )(_dismiss_task)

    tool_send = server.tool(
        name="send_message_to_task",
        description="Send a follow-up message with optional file attachments to a running task.",
    )(_send_message_to_task)

    tool_stop = server.tool(
        name="stop_task_session",
        description="Stop the running agent session of a task.",
    )(_stop_task_session)

    tool_list = server.tool(
        name="list_tasks",
        description="List pipeline tasks with status, mode, and routing details.",
    )(_list_tasks)

    tool_steps = server.tool(
        name="task_steps",
        description="Return the ordered execution step log for a task.",
    )(_task_steps)

    tool_project = server.tool(
        name="register_project",
        description="Register a local project directory for task execution.",
    )(_register_project)

    return ToolHandles(
        process_transcript=tool_process,
        accept_task=tool_accept,
        dismiss_task=tool_dismiss,
        send_message_to_task=tool_send,
        stop_task_session=tool_stop,
        list_tasks=tool_list,
        task_steps=tool_steps,
        register_project=tool_project,
        background=background,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
