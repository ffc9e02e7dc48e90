"""Data models for the pipeline records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskMode(str, Enum):
    AUTO = "auto"
    ASK = "ask"
    USER = "user"


class TaskStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    PENDING_APPROVAL = "pending_approval"
    NEEDS_INPUT = "needs_input"
    COMPLETED = "completed"
    FILTERED = "filtered"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FILTERED}


class StepStatus(str, Enum):
    COMPLETED = "completed"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CleanedTranscript:
    """One merge-completed burst of speech after cleanup."""

    id: str
    session_id: str | None
    source_transcript_ids: tuple[int, ...]
    is_continued: bool
    source_chunk_count: int
    cleaned_text: str
    timestamp: datetime
    speaker_name: str | None
    duration_seconds: int


@dataclass(slots=True)
class AnalysisTaskDescription:
    title: str
    prompt: str


@dataclass(slots=True)
class TranscriptAnalysis:
    id: str
    cleaned_transcript_id: str
    tags: list[str] = field(default_factory=list)
    project_name: str | None = None
    project_id: str | None = None
    summary: str | None = None
    priority: str | None = None
    person_names: list[str] = field(default_factory=list)
    task_descriptions: list[AnalysisTaskDescription] = field(default_factory=list)
    timestamp: datetime | None = None


@dataclass(slots=True)
class PipelineTask:
    id: str
    analysis_id: str
    title: str
    prompt: str
    created_at: datetime
    project_id: str | None = None
    project_name: str | None = None
    mode: TaskMode = TaskMode.AUTO
    status: TaskStatus = TaskStatus.UPCOMING
    skill_id: str | None = None
    workflow_id: str | None = None
    workflow_steps: list[str] = field(default_factory=list)
    missing_connection: str | None = None
    pending_question: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attachment_paths: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ExecutionStep:
    """Append-only audit entry for a task run."""

    id: str
    task_id: str
    step_index: int
    description: str
    status: StepStatus
    timestamp: datetime
    output: str | None = None


@dataclass(slots=True)
class Project:
    id: str
    name: str
    local_path: str
    created_at: datetime


__all__ = [
    "AnalysisTaskDescription",
    "CleanedTranscript",
    "ExecutionStep",
    "PipelineTask",
    "Project",
    "StepStatus",
    "TaskMode",
    "TaskStatus",
    "TranscriptAnalysis",
]
