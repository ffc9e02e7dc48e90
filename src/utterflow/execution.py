"""Stage 4: interactive task execution.

Each executed task gets one agent session, registered by task id so follow-up
messages and cancellation can reach it. Streamed agent events are translated
into append-only execution steps, and the task status follows::

    upcoming/ongoing --execute--> ongoing --result/end of stream--> completed
                                  ongoing --failure--> needs_input
    needs_input/pending_approval --accept--> ongoing
    upcoming/ongoing --dismiss--> filtered
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

from .agent import (
    AgentError,
    AgentEvent,
    AgentLauncher,
    AgentSession,
    ErrorEvent,
    Result,
    SessionInit,
    StatusUpdate,
    TextFragment,
    ToolResult,
    ToolUse,
)
from .attachments import Attachment
from .notify import UpdateBus
from .rebuild import is_self_project, spawn_self_rebuild
from .storage import (
    ExecutionStep,
    PipelineStore,
    PipelineTask,
    Project,
    StepStatus,
    TaskStatus,
)
from .workflows import WorkflowRegistry

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Task completed successfully"
_PREVIEW_LIMIT = 200
_EXECUTABLE_STATUSES = {TaskStatus.UPCOMING, TaskStatus.ONGOING}
_ACCEPTABLE_STATUSES = {
    TaskStatus.UPCOMING,
    TaskStatus.ONGOING,
    TaskStatus.NEEDS_INPUT,
    TaskStatus.PENDING_APPROVAL,
}
_DISMISSABLE_STATUSES = {TaskStatus.UPCOMING, TaskStatus.ONGOING}


def _preview(text: str) -> str:
    text = text.strip()
    return text if len(text) <= _PREVIEW_LIMIT else text[: _PREVIEW_LIMIT - 1] + "…"


class SessionRegistry:
    """Active agent sessions keyed by task id; at most one per task.

    Register, get and remove hold the lock. The synchronous views below read a
    snapshot without it and are only safe from the owning event loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, AgentSession] = {}
        self._lock = asyncio.Lock()

    async def register(self, task_id: str, session: AgentSession) -> bool:
        async with self._lock:
            if task_id in self._sessions:
                return False
            self._sessions[task_id] = session
            return True

    async def get(self, task_id: str) -> AgentSession | None:
        async with self._lock:
            return self._sessions.get(task_id)

    async def remove(self, task_id: str, session: AgentSession | None = None) -> AgentSession | None:
        """Remove the task's session; when ``session`` is given only that exact session is removed."""

        async with self._lock:
            current = self._sessions.get(task_id)
            if current is None or (session is not None and current is not session):
                return None
            return self._sessions.pop(task_id)

    def active_task_ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass(slots=True)
class _StreamState:
    last_flush: float
    text_buffer: str = ""
    pending_tool: str | None = None
    completed: bool = False


class TaskExecutionService:
    """Run tasks through agent sessions and keep their step log and status current."""

    def __init__(
        self,
        store: PipelineStore,
        launcher: AgentLauncher | None,
        workflows: WorkflowRegistry,
        *,
        bus: UpdateBus | None = None,
        default_workflow: str = "claude-code",
        text_flush_interval: float = 2.0,
        rebuild: Callable[[Path], object] | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._launcher = launcher
        self._workflows = workflows
        self._bus = bus or UpdateBus()
        self._default_workflow = default_workflow
        self._flush_interval = text_flush_interval
        self._rebuild = rebuild or spawn_self_rebuild
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic
        self.registry = SessionRegistry()

    # -- lifecycle -------------------------------------------------------------------------

    async def execute(self, task: PipelineTask) -> None:
        current = self._store.fetch_task(task.id) or task
        if current.status not in _EXECUTABLE_STATUSES:
            logger.info(
                "Skipping execution for task in non-executable state",
                extra={"task_id": task.id, "status": current.status.value},
            )
            return
        if task.id in self.registry:
            logger.warning("Task already has an active session", extra={"task_id": task.id})
            return

        self._store.update_task_status(task.id, TaskStatus.ONGOING, started_at=self._clock())
        self._log_step(task.id, "Task execution started")

        project = self._store.fetch_project(current.project_id) if current.project_id else None
        if project is None:
            self._fail(task.id, "No project path resolved")
            logger.warning("Task has no project path, marking needs_input", extra={"task_id": task.id})
            return

        workflow_id = current.workflow_id or self._default_workflow
        workflow = self._workflows.get(workflow_id)
        if workflow is None or not workflow.is_executable:
            self._fail(task.id, f"No executable workflow for '{workflow_id}'")
            logger.info("Task has no executable workflow, marking needs_input", extra={"task_id": task.id})
            return

        await self._execute_via_agent(current, project)

    async def _execute_via_agent(self, task: PipelineTask, project: Project) -> None:
        self._log_step(task.id, "Dispatching to Claude Code CLI")
        logger.info(
            "Executing task via agent",
            extra={"task_id": task.id, "project_path": project.local_path},
        )

        attachments = self._load_attachments(task.attachment_paths)
        if self._launcher is None:
            self._fail(task.id, "Failed to start agent session: agent CLI unavailable")
            return
        try:
            session = await self._launcher.start_session(task.prompt, Path(project.local_path), attachments)
        except Exception as exc:
            self._fail(task.id, f"Failed to start agent session: {exc}")
            logger.error("Agent session failed to start", extra={"task_id": task.id, "error": str(exc)})
            return

        if not await self.registry.register(task.id, session):
            await session.stop()
            self._fail(task.id, "Another agent session is already active for this task")
            return

        state = _StreamState(last_flush=self._monotonic())
        try:
            async with aclosing(session.events()) as events:
                async for event in events:
                    self._handle_event(task.id, event, state)
                    if state.completed:
                        break
            if not state.completed:
                self._flush_text(task.id, state, force=True)
                if self._status_of(task.id) == TaskStatus.ONGOING:
                    self._complete(task.id)
                    state.completed = True
        except Exception as exc:
            self._flush_text(task.id, state, force=True)
            self._log_step(task.id, f"Execution failed: {exc}", StepStatus.FAILED)
            if self._status_of(task.id) == TaskStatus.ONGOING:
                self._store.update_task_status(task.id, TaskStatus.NEEDS_INPUT)
            logger.error("Task execution failed", extra={"task_id": task.id, "error": str(exc)})
        finally:
            await self.registry.remove(task.id, session)
            await session.stop()

        if state.completed and is_self_project(project.local_path):
            self._log_step(task.id, "Rebuilding and relaunching Utterflow")
            try:
                self._rebuild(Path(project.local_path))
            except Exception as exc:
                self._log_step(task.id, f"Rebuild failed: {exc}", StepStatus.FAILED)
                logger.error("Self-rebuild failed", extra={"task_id": task.id, "error": str(exc)})

    def _handle_event(self, task_id: str, event: AgentEvent, state: _StreamState) -> None:
        if isinstance(event, SessionInit):
            self._log_step(task_id, f"Session started: {event.session_id}")
        elif isinstance(event, ToolUse):
            self._flush_text(task_id, state, force=True)
            self._log_step(task_id, f"Using {event.name}: {_preview(event.input)}")
            state.pending_tool = event.name
        elif isinstance(event, ToolResult):
            name = state.pending_tool or event.name
            state.pending_tool = None
            summary = _preview(event.output)
            self._log_step(
                task_id,
                f"{name} done: {summary}" if summary else f"{name} done",
                output=event.output or None,
            )
        elif isinstance(event, TextFragment):
            state.text_buffer += event.text
            self._flush_text(task_id, state)
        elif isinstance(event, Result):
            self._flush_text(task_id, state, force=True)
            if event.final_text.strip():
                self._log_step(task_id, event.final_text.strip())
            self._complete(task_id)
            state.completed = True
        elif isinstance(event, StatusUpdate):
            self._log_step(task_id, event.message, StepStatus.RUNNING)
        elif isinstance(event, ErrorEvent):
            self._log_step(task_id, event.message, StepStatus.FAILED)

    def _flush_text(self, task_id: str, state: _StreamState, *, force: bool = False) -> None:
        now = self._monotonic()
        due = "\n" in state.text_buffer or now - state.last_flush >= self._flush_interval
        if not (force or due):
            return
        text = state.text_buffer.strip()
        state.text_buffer = ""
        state.last_flush = now
        if text:
            self._log_step(task_id, text)

    def _complete(self, task_id: str) -> None:
        self._log_step(task_id, COMPLETED_MESSAGE)
        self._store.update_task_status(task_id, TaskStatus.COMPLETED, completed_at=self._clock())
        logger.info("Task completed", extra={"task_id": task_id})

    def _fail(self, task_id: str, description: str) -> None:
        self._log_step(task_id, description, StepStatus.FAILED)
        self._store.update_task_status(task_id, TaskStatus.NEEDS_INPUT)

    def _status_of(self, task_id: str) -> TaskStatus | None:
        task = self._store.fetch_task(task_id)
        return task.status if task else None

    def _load_attachments(self, paths: Sequence[str]) -> list[Attachment]:
        attachments: list[Attachment] = []
        for path in paths:
            attachment = Attachment.from_file(path)
            if attachment is not None:
                attachments.append(attachment)
        return attachments

    def _log_step(
        self,
        task_id: str,
        description: str,
        status: StepStatus = StepStatus.COMPLETED,
        *,
        output: str | None = None,
    ) -> ExecutionStep:
        index = self._store.next_step_index(task_id)
        step = ExecutionStep(
            id=f"{task_id}-step-{index}",
            task_id=task_id,
            step_index=index,
            description=description,
            status=status,
            timestamp=self._clock(),
            output=output,
        )
        self._store.insert_step(step)
        self._bus.step_updated(step)
        return step

    # -- user actions ----------------------------------------------------------------------

    async def send_message(
        self,
        task_id: str,
        text: str,
        attachments: Sequence[Attachment] = (),
    ) -> bool:
        """Forward a follow-up to the task's running session and log it as a step."""

        session = await self.registry.get(task_id)
        if session is None or not session.is_running:
            logger.warning("No active session for task", extra={"task_id": task_id})
            return False
        try:
            await session.send(text, attachments)
        except AgentError as exc:
            logger.warning("Follow-up message failed", extra={"task_id": task_id, "error": str(exc)})
            return False

        names = ", ".join(attachment.file_name for attachment in attachments)
        self._log_step(task_id, f"You: {text}" + (f" [{names}]" if names else ""))
        return True

    async def stop_session(self, task_id: str) -> bool:
        """Remove and stop the task's session; the task status is left to the execution loop."""

        session = await self.registry.remove(task_id)
        if session is None:
            return False
        await session.stop()
        logger.info("Stopped agent session", extra={"task_id": task_id})
        return True

    def accept(self, task_id: str) -> PipelineTask | None:
        """Move an approved task to ongoing; terminal tasks are rejected with ``None``."""

        task = self._store.fetch_task(task_id)
        if task is None:
            logger.warning("Accept requested for unknown task", extra={"task_id": task_id})
            return None
        if task.status not in _ACCEPTABLE_STATUSES:
            logger.warning(
                "Refusing to accept task in terminal state",
                extra={"task_id": task_id, "status": task.status.value},
            )
            return None

        if task.pending_question is not None:
            self._store.update_task_details(task_id, pending_question=None)
        self._store.update_task_status(task_id, TaskStatus.ONGOING, started_at=self._clock())
        logger.info("Task accepted", extra={"task_id": task_id, "previous_status": task.status.value})
        return self._store.fetch_task(task_id)

    async def dismiss(self, task_id: str) -> bool:
        """Filter a task out; dismissing an already filtered task is a no-op."""

        task = self._store.fetch_task(task_id)
        if task is None:
            logger.warning("Dismiss requested for unknown task", extra={"task_id": task_id})
            return False
        if task.status == TaskStatus.FILTERED:
            return True
        if task.status not in _DISMISSABLE_STATUSES:
            logger.warning(
                "Refusing to dismiss task",
                extra={"task_id": task_id, "status": task.status.value},
            )
            return False

        self._store.update_task_status(task_id, TaskStatus.FILTERED)
        await self.stop_session(task_id)
        logger.info("Task dismissed", extra={"task_id": task_id})
        return True


__all__ = ["COMPLETED_MESSAGE", "SessionRegistry", "TaskExecutionService"]
