"""Storage abstractions for Utterflow."""

from .chroma import PipelineStore, StoredEvent, StoreUnavailableError
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

__all__ = [
    "AnalysisTaskDescription",
    "CleanedTranscript",
    "ExecutionStep",
    "PipelineStore",
    "PipelineTask",
    "Project",
    "StepStatus",
    "StoredEvent",
    "StoreUnavailableError",
    "TaskMode",
    "TaskStatus",
    "TranscriptAnalysis",
]
