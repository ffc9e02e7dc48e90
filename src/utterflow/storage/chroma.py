"""Chroma-based persistence layer for pipeline records.

Every write is appended to a single collection as an event; current state is
replayed from those events on read.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import (
    AnalysisTaskDescription,
    CleanedTranscript,
    ExecutionStep,
    PipelineTask,
    Project,
    StepStatus,
    TaskMode,
    TaskStatus,
    TranscriptAnalysis,
)


class StoreUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Utterflow."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Utterflow."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class StoredEvent:
    """Represents a stored event in Chroma."""

    id: str
    record_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    @property
    def body(self) -> dict[str, Any]:
        return json.loads(self.document)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _clean_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma only accepts scalar, non-null metadata values.
    return {key: value for key, value in metadata.items() if value is not None}


class PipelineStore:
    """Persist cleaned transcripts, analyses, tasks, steps, and projects via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "utterflow_pipeline",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._sequence = 0
        self._step_counters: dict[str, int] = {}

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise StoreUnavailableError(
                "chromadb package is not installed; install utterflow with its dependencies"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            collection = client.get_or_create_collection(self._collection_name)
            existing = collection.get()
            self._sequence = max(
                (int(meta.get("sequence", 0)) for meta in existing.get("metadatas", []) or []),
                default=0,
            )
            self._collection = collection
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    # -- event log -------------------------------------------------------------------------

    def _record(
        self,
        *,
        record_id: str,
        event_type: str,
        body: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> StoredEvent:
        collection = self._ensure_collection()
        self._sequence += 1
        event_id = f"{record_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = json.dumps(_encode(body))
        record_metadata = {
            "record_id": record_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": self._sequence,
        }
        if metadata:
            record_metadata.update(metadata)
        record_metadata = _clean_metadata(record_metadata)

        collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])

        return StoredEvent(
            id=event_id,
            record_id=record_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def _convert_result(self, result: dict[str, list[Any]]) -> list[StoredEvent]:
        events: list[StoredEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                StoredEvent(
                    id=event_id,
                    record_id=metadata.get("record_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: event.metadata.get("sequence", 0))
        return events

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        return self._convert_result(result)

    def _replay(self, record_id: str) -> dict[str, Any] | None:
        events = self.search_events(filters={"record_id": record_id})
        if not events:
            return None
        state: dict[str, Any] = {}
        for event in events:
            state.update(event.body)
        return state

    # -- cleaned transcripts ---------------------------------------------------------------

    def insert_cleaned_transcript(self, transcript: CleanedTranscript) -> None:
        self._record(
            record_id=f"cleaned::{transcript.id}",
            event_type="cleaned_transcript",
            body=asdict(transcript),
            metadata={"session_id": transcript.session_id},
        )

    def fetch_cleaned_transcript(self, transcript_id: str) -> CleanedTranscript | None:
        state = self._replay(f"cleaned::{transcript_id}")
        return _cleaned_from_state(state) if state else None

    def fetch_recent_cleaned(self, limit: int = 100) -> list[CleanedTranscript]:
        events = self.search_events(filters={"event_type": "cleaned_transcript"})
        records = [_cleaned_from_state(event.body) for event in events]
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records[:limit]

    # -- analyses --------------------------------------------------------------------------

    def insert_analysis(self, analysis: TranscriptAnalysis) -> None:
        self._record(
            record_id=f"analysis::{analysis.id}",
            event_type="analysis_created",
            body=asdict(analysis),
            metadata={"cleaned_transcript_id": analysis.cleaned_transcript_id},
        )

    def update_analysis(self, analysis_id: str, **fields: Any) -> TranscriptAnalysis:
        allowed = set(TranscriptAnalysis.__dataclass_fields__) - {"id", "cleaned_transcript_id"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown analysis fields: {', '.join(sorted(unknown))}")
        if self.fetch_analysis(analysis_id) is None:
            raise KeyError(analysis_id)
        if "task_descriptions" in fields:
            fields["task_descriptions"] = [
                asdict(item) if isinstance(item, AnalysisTaskDescription) else item
                for item in fields["task_descriptions"]
            ]
        self._record(
            record_id=f"analysis::{analysis_id}",
            event_type="analysis_updated",
            body=fields,
        )
        updated = self.fetch_analysis(analysis_id)
        assert updated is not None
        return updated

    def fetch_analysis(self, analysis_id: str) -> TranscriptAnalysis | None:
        state = self._replay(f"analysis::{analysis_id}")
        return _analysis_from_state(state) if state else None

    def fetch_recent_analyses(self, limit: int = 100) -> list[TranscriptAnalysis]:
        events = self.search_events(filters={"event_type": "analysis_created"})
        analyses = [self.fetch_analysis(event.body["id"]) for event in events]
        return [analysis for analysis in analyses if analysis is not None][-limit:][::-1]

    # -- tasks -----------------------------------------------------------------------------

    def insert_task(self, task: PipelineTask) -> None:
        self._record(
            record_id=f"task::{task.id}",
            event_type="task_created",
            body=asdict(task),
            metadata={"task_id": task.id, "status": task.status.value},
        )

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        body: dict[str, Any] = {"status": status}
        if started_at is not None:
            body["started_at"] = started_at
        if completed_at is not None:
            body["completed_at"] = completed_at
        self._record(
            record_id=f"task::{task_id}",
            event_type="task_updated",
            body=body,
            metadata={"task_id": task_id, "status": status.value},
        )

    def update_task_mode(self, task_id: str, mode: TaskMode) -> None:
        self._record(
            record_id=f"task::{task_id}",
            event_type="task_updated",
            body={"mode": mode},
            metadata={"task_id": task_id},
        )

    def update_task_details(self, task_id: str, **fields: Any) -> None:
        allowed = {
            "title",
            "prompt",
            "project_id",
            "project_name",
            "skill_id",
            "workflow_id",
            "workflow_steps",
            "missing_connection",
            "pending_question",
            "attachment_paths",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        self._record(
            record_id=f"task::{task_id}",
            event_type="task_updated",
            body=fields,
            metadata={"task_id": task_id},
        )

    def fetch_task(self, task_id: str) -> PipelineTask | None:
        state = self._replay(f"task::{task_id}")
        return _task_from_state(state) if state else None

    def fetch_tasks(self, *, status: TaskStatus | None = None, limit: int | None = None) -> list[PipelineTask]:
        created = self.search_events(filters={"event_type": "task_created"})
        tasks = [self.fetch_task(event.body["id"]) for event in created]
        result = [task for task in tasks if task is not None and (status is None or task.status == status)]
        result.sort(key=lambda task: task.created_at)
        return result[:limit] if limit else result

    # -- steps -----------------------------------------------------------------------------

    def insert_step(self, step: ExecutionStep) -> None:
        self._record(
            record_id=f"steps::{step.task_id}",
            event_type="step_logged",
            body=asdict(step),
            metadata={"task_id": step.task_id, "step_index": step.step_index},
        )
        current = self._step_counters.get(step.task_id, 0)
        self._step_counters[step.task_id] = max(current, step.step_index + 1)

    def next_step_index(self, task_id: str) -> int:
        """Return the next free step index for a task, seeded from persisted steps."""

        if task_id not in self._step_counters:
            steps = self.fetch_steps(task_id)
            self._step_counters[task_id] = steps[-1].step_index + 1 if steps else 0
        return self._step_counters[task_id]

    def fetch_steps(self, task_id: str) -> list[ExecutionStep]:
        events = self.search_events(filters={"record_id": f"steps::{task_id}"})
        steps = [_step_from_state(event.body) for event in events]
        steps.sort(key=lambda step: step.step_index)
        return steps

    # -- projects --------------------------------------------------------------------------

    def add_project(self, name: str, local_path: str, *, project_id: str | None = None) -> Project:
        project = Project(
            id=project_id or str(uuid.uuid4()),
            name=name,
            local_path=local_path,
            created_at=self._clock(),
        )
        self._record(
            record_id=f"project::{project.id}",
            event_type="project_added",
            body=asdict(project),
        )
        return project

    def fetch_project(self, project_id: str) -> Project | None:
        state = self._replay(f"project::{project_id}")
        return _project_from_state(state) if state else None

    def list_projects(self) -> list[Project]:
        events = self.search_events(filters={"event_type": "project_added"})
        return [_project_from_state(event.body) for event in events]


def _cleaned_from_state(state: dict[str, Any]) -> CleanedTranscript:
    return CleanedTranscript(
        id=state["id"],
        session_id=state.get("session_id"),
        source_transcript_ids=tuple(state.get("source_transcript_ids", [])),
        is_continued=bool(state.get("is_continued", False)),
        source_chunk_count=int(state.get("source_chunk_count", 1)),
        cleaned_text=state["cleaned_text"],
        timestamp=_parse_datetime(state["timestamp"]),
        speaker_name=state.get("speaker_name"),
        duration_seconds=int(state.get("duration_seconds", 0)),
    )


def _analysis_from_state(state: dict[str, Any]) -> TranscriptAnalysis:
    return TranscriptAnalysis(
        id=state["id"],
        cleaned_transcript_id=state["cleaned_transcript_id"],
        tags=list(state.get("tags") or []),
        project_name=state.get("project_name"),
        project_id=state.get("project_id"),
        summary=state.get("summary"),
        priority=state.get("priority"),
        person_names=list(state.get("person_names") or []),
        task_descriptions=[
            AnalysisTaskDescription(title=item["title"], prompt=item["prompt"])
            for item in state.get("task_descriptions") or []
        ],
        timestamp=_parse_datetime(state.get("timestamp")),
    )


def _task_from_state(state: dict[str, Any]) -> PipelineTask:
    return PipelineTask(
        id=state["id"],
        analysis_id=state["analysis_id"],
        title=state["title"],
        prompt=state["prompt"],
        created_at=_parse_datetime(state["created_at"]),
        project_id=state.get("project_id"),
        project_name=state.get("project_name"),
        mode=TaskMode(state.get("mode", TaskMode.AUTO.value)),
        status=TaskStatus(state.get("status", TaskStatus.UPCOMING.value)),
        skill_id=state.get("skill_id"),
        workflow_id=state.get("workflow_id"),
        workflow_steps=list(state.get("workflow_steps") or []),
        missing_connection=state.get("missing_connection"),
        pending_question=state.get("pending_question"),
        started_at=_parse_datetime(state.get("started_at")),
        completed_at=_parse_datetime(state.get("completed_at")),
        attachment_paths=list(state.get("attachment_paths") or []),
    )


def _step_from_state(state: dict[str, Any]) -> ExecutionStep:
    return ExecutionStep(
        id=state["id"],
        task_id=state["task_id"],
        step_index=int(state["step_index"]),
        description=state["description"],
        status=StepStatus(state.get("status", StepStatus.COMPLETED.value)),
        timestamp=_parse_datetime(state["timestamp"]),
        output=state.get("output"),
    )


def _project_from_state(state: dict[str, Any]) -> Project:
    return Project(
        id=state["id"],
        name=state["name"],
        local_path=state["local_path"],
        created_at=_parse_datetime(state["created_at"]),
    )


__all__ = ["PipelineStore", "StoredEvent", "StoreUnavailableError"]
