from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from utterflow.analysis import (
    LLMTranscriptAnalyzer,
    WorkflowTaskCreator,
    detect_dot_words,
    parse_execution_plan,
    parse_key_value_blocks,
    resolve_project,
)
from utterflow.llm import LLMError
from utterflow.storage import (
    AnalysisTaskDescription,
    CleanedTranscript,
    PipelineStore,
    Project,
    TaskMode,
    TaskStatus,
    TranscriptAnalysis,
)
from utterflow.workflows import WorkflowRegistry

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

ANALYSIS_RESPONSE = """PROJECT: utterflow
PEOPLE: Dana, Lee
PRIORITY: p2
TAGS: bug, feature
SUMMARY: Login page breaks on submit
TASK_TITLE: Fix login submit handler
TASK_PROMPT: Fix the submit handler in the login form so it no longer crashes
---
PROJECT: utterflow
SUMMARY: Small talk about lunch
TASK_TITLE: NONE
TASK_PROMPT: NONE"""


class ScriptedLLM:
    def __init__(self, *responses: str) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, num_predict: int = 512) -> str:
        self.prompts.append(prompt)
        return self.responses.pop(0)


class FailingLLM:
    async def generate(self, prompt: str, *, num_predict: int = 512) -> str:
        raise LLMError("offline")


def _cleaned(text: str = "The login page breaks, dot p0 please fix") -> CleanedTranscript:
    return CleanedTranscript(
        id="cleaned-1",
        session_id="session-a",
        source_transcript_ids=(1,),
        is_continued=False,
        source_chunk_count=1,
        cleaned_text=text,
        timestamp=NOW,
        speaker_name=None,
        duration_seconds=4,
    )


def _analysis(project_id: str | None = "proj-1") -> TranscriptAnalysis:
    return TranscriptAnalysis(
        id="analysis-1",
        cleaned_transcript_id="cleaned-1",
        project_name="Utterflow",
        project_id=project_id,
        task_descriptions=[AnalysisTaskDescription(title="Fix login", prompt="Fix the login form")],
    )


def _registry(cli_available: bool = True) -> WorkflowRegistry:
    return WorkflowRegistry(connection_checks={"claude-cli": lambda: cli_available})


def test_detect_dot_words() -> None:
    assert detect_dot_words("this is dot p1 and also .bug, not file.info") == ["p1", "bug"]
    assert detect_dot_words("nothing special") == []


def test_parse_key_value_blocks() -> None:
    blocks = parse_key_value_blocks(ANALYSIS_RESPONSE)

    assert len(blocks) == 2
    assert blocks[0]["TASK_TITLE"] == "Fix login submit handler"
    assert blocks[0]["PEOPLE"] == "Dana, Lee"
    assert blocks[1]["TASK_TITLE"] == "NONE"
    assert parse_key_value_blocks("no structure here") == []


def test_resolve_project_matches_case_insensitively() -> None:
    projects = [Project(id="proj-1", name="Utterflow", local_path="/src/utterflow", created_at=NOW)]

    assert resolve_project("utterflow", projects) == ("Utterflow", "proj-1")
    assert resolve_project("utter", projects) == ("Utterflow", "proj-1")
    assert resolve_project("unknown app", projects) == ("unknown app", None)
    assert resolve_project("none", projects) == (None, None)


def test_analyzer_extracts_tasks(store: PipelineStore) -> None:
    store.add_project("Utterflow", "/src/utterflow", project_id="proj-1")
    llm = ScriptedLLM(ANALYSIS_RESPONSE)
    analyzer = LLMTranscriptAnalyzer(llm, store)

    analysis = asyncio.run(analyzer.analyze(_cleaned()))

    assert analysis is not None
    assert analysis.project_id == "proj-1"
    assert analysis.project_name == "Utterflow"
    assert analysis.priority == "p0"
    assert analysis.tags == ["bug", "feature"]
    assert analysis.person_names == ["Dana", "Lee"]
    assert [item.title for item in analysis.task_descriptions] == ["Fix login submit handler"]
    assert store.fetch_analysis(analysis.id) == analysis
    assert "KNOWN PROJECTS: Utterflow" in llm.prompts[0]
    assert "DETECTED DOT-WORDS: p0" in llm.prompts[0]


def test_analyzer_returns_none_on_llm_failure(store: PipelineStore) -> None:
    analyzer = LLMTranscriptAnalyzer(FailingLLM(), store)

    assert asyncio.run(analyzer.analyze(_cleaned())) is None
    assert store.fetch_recent_analyses() == []


def test_parse_execution_plan_defaults_to_medium() -> None:
    assert parse_execution_plan("CERTAINTY: high\nNEEDS_INPUT: NONE").certainty == "high"
    plan = parse_execution_plan("garbage")
    assert plan.certainty == "medium"
    assert plan.needs_input is None
    assert parse_execution_plan("CERTAINTY: low\nNEEDS_INPUT: Which branch?").needs_input == "Which branch?"


@pytest.mark.parametrize(
    ("plan", "mode", "status"),
    [
        ("CERTAINTY: high\nNEEDS_INPUT: NONE", TaskMode.AUTO, TaskStatus.UPCOMING),
        ("CERTAINTY: medium\nNEEDS_INPUT: NONE", TaskMode.ASK, TaskStatus.PENDING_APPROVAL),
        ("CERTAINTY: low\nNEEDS_INPUT: NONE", TaskMode.ASK, TaskStatus.NEEDS_INPUT),
        ("CERTAINTY: high\nNEEDS_INPUT: Which file?", TaskMode.ASK, TaskStatus.NEEDS_INPUT),
    ],
)
def test_task_creator_routes_by_certainty(store: PipelineStore, plan: str, mode: TaskMode, status: TaskStatus) -> None:
    creator = WorkflowTaskCreator(ScriptedLLM(plan), store, _registry(), clock=lambda: NOW)

    tasks = asyncio.run(creator.create_tasks(_analysis(), ["/tmp/shot.png"]))

    assert len(tasks) == 1
    task = tasks[0]
    assert task.mode == mode
    assert task.status == status
    assert task.id.startswith("task-")
    assert task.workflow_id == "claude-code"
    assert task.attachment_paths == ["/tmp/shot.png"]
    assert store.fetch_task(task.id) == task


def test_task_creator_asks_for_project(store: PipelineStore) -> None:
    llm = ScriptedLLM()
    creator = WorkflowTaskCreator(llm, store, _registry())

    (task,) = asyncio.run(creator.create_tasks(_analysis(project_id=None)))

    assert task.status == TaskStatus.NEEDS_INPUT
    assert task.pending_question == "Which project should this task run in?"
    assert llm.prompts == []


def test_task_creator_reports_missing_connection(store: PipelineStore) -> None:
    creator = WorkflowTaskCreator(ScriptedLLM(), store, _registry(cli_available=False))

    (task,) = asyncio.run(creator.create_tasks(_analysis()))

    assert task.mode == TaskMode.ASK
    assert task.status == TaskStatus.NEEDS_INPUT
    assert task.missing_connection == "claude-cli"


def test_autonomous_rule_skips_planning(store: PipelineStore) -> None:
    llm = ScriptedLLM()
    creator = WorkflowTaskCreator(llm, store, _registry(), autonomous_rules=["fix login"])

    (task,) = asyncio.run(creator.create_tasks(_analysis()))

    assert task.mode == TaskMode.AUTO
    assert task.status == TaskStatus.UPCOMING
    assert llm.prompts == []


def test_task_creator_without_descriptions(store: PipelineStore) -> None:
    creator = WorkflowTaskCreator(ScriptedLLM(), store, _registry())
    analysis = _analysis()
    analysis.task_descriptions = []

    assert asyncio.run(creator.create_tasks(analysis)) == []
