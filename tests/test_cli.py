from __future__ import annotations

import argparse
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from utterflow.storage import (
    CleanedTranscript,
    ExecutionStep,
    PipelineTask,
    StepStatus,
    StoreUnavailableError,
    TaskStatus,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _load_diag():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "utterflow_diag.py"
    spec = importlib.util.spec_from_file_location("utterflow_diag_test_module", module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


class StubStore:
    def fetch_tasks(self, *, status=None, limit=None):
        tasks = [
            PipelineTask(id="task-1", analysis_id="a", title="Fix login", prompt="p", created_at=NOW),
            PipelineTask(
                id="task-2",
                analysis_id="a",
                title="Ask about deploy",
                prompt="p",
                created_at=NOW,
                status=TaskStatus.NEEDS_INPUT,
                pending_question="Which env?",
            ),
        ]
        return [task for task in tasks if status is None or task.status == status]

    def fetch_steps(self, task_id):
        return [
            ExecutionStep(
                id="s0",
                task_id=task_id,
                step_index=0,
                description="Task execution started",
                status=StepStatus.COMPLETED,
                timestamp=NOW,
            )
        ]

    def fetch_recent_cleaned(self, limit=100):
        return [
            CleanedTranscript(
                id="c1",
                session_id="s",
                source_transcript_ids=(1, 2),
                is_continued=True,
                source_chunk_count=2,
                cleaned_text="We should fix the bug.",
                timestamp=NOW,
                speaker_name=None,
                duration_seconds=4,
            )
        ][:limit]


def test_tasks_command_prints_json(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    diag = _load_diag()
    monkeypatch.setattr(diag, "load_store", lambda settings: StubStore())

    diag.main(["tasks", "--json", "--status", "needs_input"])

    payload = json.loads(capsys.readouterr().out)
    assert [task["id"] for task in payload] == ["task-2"]
    assert payload[0]["pending_question"] == "Which env?"


def test_tasks_command_plain_output(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    diag = _load_diag()
    monkeypatch.setattr(diag, "load_store", lambda settings: StubStore())

    diag.cmd_tasks(argparse.Namespace(status=None, json=False))

    out = capsys.readouterr().out
    assert "task-1 [upcoming/auto] Fix login" in out


def test_steps_and_transcripts(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    diag = _load_diag()
    monkeypatch.setattr(diag, "load_store", lambda settings: StubStore())

    diag.main(["steps", "task-1"])
    steps_out = capsys.readouterr().out
    diag.main(["transcripts", "--limit", "5"])
    transcripts = json.loads(capsys.readouterr().out)

    assert "  0 [completed] Task execution started" in steps_out
    assert transcripts[0]["chunks"] == 2
    assert transcripts[0]["continued"] is True


def test_store_unavailable_exits(monkeypatch: pytest.MonkeyPatch, capsys, tmp_path: Path) -> None:
    diag = _load_diag()

    class BrokenStore:
        def __init__(self, *args, **kwargs) -> None:
            pass

        def ping(self):
            raise StoreUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(diag, "PipelineStore", BrokenStore)
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))

    with pytest.raises(SystemExit):
        diag.main(["tasks"])

    assert "Store unavailable" in capsys.readouterr().out
