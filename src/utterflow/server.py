"""FastMCP server bootstrap for Utterflow."""

import json
import logging
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .agent import AgentLauncher, AgentNotFoundError, ClaudeRunner
from .analysis import LLMTranscriptAnalyzer, WorkflowTaskCreator
from .captures import ContextCaptureStore
from .cleaning import TranscriptCleaningService
from .config import UtterflowSettings, get_settings
from .execution import TaskExecutionService
from .llm import OllamaClient, TextGenerator
from .notify import UpdateBus
from .orchestrator import PipelineOrchestrator
from .rebuild import spawn_self_rebuild
from .storage import PipelineStore, StoreUnavailableError
from .tools import register_tools
from .workflows import WorkflowLoadError, WorkflowRegistry


def configure_logging(level: str) -> None:
    """Configure root logging for the Utterflow server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[UtterflowSettings] = None,
    launcher: AgentLauncher | None = None,
    store: PipelineStore | None = None,
    llm: TextGenerator | None = None,
) -> FastMCP:
    """Wire the pipeline services and expose them as MCP tools."""

    settings = settings or get_settings()

    agent_metadata: dict[str, Any] = {
        "available": False,
        "path": settings.claude_path,
        "model": settings.claude_model,
        "error": None,
    }
    if launcher is None:
        try:
            launcher = ClaudeRunner(
                Path(settings.claude_path) if settings.claude_path else None,
                model=settings.claude_model,
            )
            agent_metadata["available"] = True
        except AgentNotFoundError as exc:
            agent_metadata["error"] = str(exc)
            launcher = None
    else:
        agent_metadata["available"] = True

    store_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "error": None,
    }
    if store is None:
        store = PipelineStore(settings.chroma_persist_path)
    try:
        store.ping()
        store_metadata["available"] = True
    except StoreUnavailableError as exc:
        store_metadata["error"] = str(exc)

    llm = llm or OllamaClient(
        settings.ollama_url,
        settings.ollama_model,
        timeout=settings.ollama_timeout,
    )
    workflows = WorkflowRegistry(settings.workflow_paths)
    captures = ContextCaptureStore(settings.chroma_persist_path.parent / "captures")
    bus = UpdateBus()

    executor = TaskExecutionService(
        store,
        launcher,
        workflows,
        bus=bus,
        default_workflow=settings.default_workflow,
        text_flush_interval=settings.text_flush_interval,
        rebuild=partial(spawn_self_rebuild, rebuild_command=settings.rebuild_command),
    )
    orchestrator = PipelineOrchestrator(
        TranscriptCleaningService(
            llm,
            store,
            merge_window=settings.merge_window,
            min_cleaned_length=settings.min_cleaned_length,
        ),
        LLMTranscriptAnalyzer(llm, store),
        WorkflowTaskCreator(
            llm,
            store,
            workflows,
            default_workflow=settings.default_workflow,
            autonomous_rules=settings.autonomous_rules,
        ),
        executor,
        captures=captures,
        bus=bus,
        capture_window=settings.capture_window,
    )

    server = FastMCP(
        name="Utterflow",
        version=__version__,
        instructions=(
            "Utterflow turns transcribed speech into coding tasks. Submit chunks with "
            "process_transcript, review tasks with list_tasks and task_steps, and steer "
            "running agents with accept_task, send_message_to_task, and stop_task_session."
        ),
    )

    handles = register_tools(server, orchestrator=orchestrator, store=store)

    @server.resource(
        "resource://utterflow/status",
        name="utterflow_status",
        title="Utterflow Status",
        description="Provides the current runtime status for the Utterflow server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            workflow_ids = sorted(workflows.load_all().keys())
            workflow_error: str | None = None
        except WorkflowLoadError as exc:
            workflow_ids = []
            workflow_error = str(exc)

        status_counts: dict[str, int] = {}
        storage_error = None
        try:
            for task in store.fetch_tasks():
                status_counts[task.status.value] = status_counts.get(task.status.value, 0) + 1
        except StoreUnavailableError as exc:
            storage_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "workflows": {
                "count": len(workflow_ids),
                "ids": workflow_ids,
                "default": settings.default_workflow,
                "error": workflow_error,
            },
            "agent": agent_metadata,
            "llm": {"url": settings.ollama_url, "model": settings.ollama_model},
            "storage": {**store_metadata, "error": storage_error or store_metadata["error"]},
            "tasks": {
                "status_counts": status_counts,
                "active_sessions": executor.registry.active_task_ids(),
                "background_jobs": len(handles.background),
            },
            "cleaning": {"pending_sessions": orchestrator.pending_sessions()},
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "executor", executor)
    setattr(server, "store", store)
    setattr(server, "agent_metadata", agent_metadata)
    setattr(server, "store_metadata", store_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Utterflow server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Utterflow server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "agent_available": getattr(server, "agent_metadata", {}).get("available"),
            "store_available": getattr(server, "store_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
