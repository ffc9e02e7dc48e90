"""Stages 2 and 3: transcript analysis and task creation.

The orchestrator depends only on the :class:`TranscriptAnalyzer` and
:class:`TaskCreator` contracts; the LLM-backed implementations below are the
defaults wired by the server.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol, Sequence

from .llm import TextGenerator
from .storage import (
    AnalysisTaskDescription,
    CleanedTranscript,
    PipelineStore,
    PipelineTask,
    Project,
    TaskMode,
    TaskStatus,
    TranscriptAnalysis,
)
from .workflows import WorkflowRegistry

logger = logging.getLogger(__name__)


class TranscriptAnalyzer(Protocol):
    async def analyze(self, cleaned: CleanedTranscript) -> TranscriptAnalysis | None:
        ...


class TaskCreator(Protocol):
    async def create_tasks(
        self,
        analysis: TranscriptAnalysis,
        attachment_paths: Sequence[str] = (),
    ) -> list[PipelineTask]:
        ...


ANALYSIS_TEMPLATE = """You are analyzing a spoken transcript to understand context, intent, and create actionable tasks.

KNOWN PROJECTS: {{project_list}}
{{dot_word_hints}}

TRANSCRIPT:
{{transcript}}

For each distinct action or topic, output a block in this format (separate multiple blocks with ---):
PROJECT: <project name from the list above, or "none">
PEOPLE: <comma-separated names mentioned, or "none">
PRIORITY: <p0/p1/p2/p3 if mentioned or implied, or "none">
TAGS: <comma-separated from: bug, feature, question, schedule-change, personal, info, decision>
SUMMARY: <one line understanding of what this is about>
TASK_TITLE: <imperative action title, max 10 words, or "NONE" if no action needed>
TASK_PROMPT: <detailed instruction for an AI to execute this task, or "NONE">

If the transcript is casual talk with no actionable content, output only:
SUMMARY: <brief note>
TASK_TITLE: NONE"""

PLANNING_TEMPLATE = """Decide how confidently this task can be executed without asking the user.

PROJECT: {{project}}
TITLE: {{title}}
PROMPT: {{prompt}}

Answer with exactly these lines:
CERTAINTY: <high|medium|low>
NEEDS_INPUT: <question for the user, or NONE>"""

_KNOWN_KEYS = {"PROJECT", "PEOPLE", "PRIORITY", "TAGS", "SUMMARY", "TASK_TITLE", "TASK_PROMPT"}
_DOT_WORD = re.compile(
    r"(?:\bdot\s+|(?<![\w.])\.)(p[0-3]|bug|feature|question|blocker|personal|info)\b", re.IGNORECASE
)


def detect_dot_words(text: str) -> list[str]:
    """Spoken hints like "dot p0" or ".bug"."""

    return [match.group(1).lower() for match in _DOT_WORD.finditer(text)]


def parse_key_value_blocks(response: str) -> list[dict[str, str]]:
    blocks: list[dict[str, str]] = []
    for raw_block in response.split("---"):
        block: dict[str, str] = {}
        for line in raw_block.splitlines():
            key, sep, value = line.strip().partition(": ")
            key = key.strip().upper()
            if sep and key in _KNOWN_KEYS:
                block[key] = value.strip()
        if "SUMMARY" in block or "TASK_TITLE" in block:
            blocks.append(block)
    return blocks


def _split_list(value: str | None) -> list[str]:
    if not value or value.lower() == "none":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def resolve_project(raw_name: str | None, projects: Iterable[Project]) -> tuple[str | None, str | None]:
    if not raw_name or raw_name.lower() == "none":
        return None, None
    needle = raw_name.lower()
    projects = list(projects)
    for project in projects:
        if project.name.lower() == needle:
            return project.name, project.id
    for project in projects:
        if needle in project.name.lower():
            return project.name, project.id
    return raw_name, None


class LLMTranscriptAnalyzer:
    """Extract project, priority, tags, and task descriptions from a cleaned transcript."""

    def __init__(self, llm: TextGenerator, store: PipelineStore, *, template: str | None = None) -> None:
        self._llm = llm
        self._store = store
        self._template = template or ANALYSIS_TEMPLATE

    async def analyze(self, cleaned: CleanedTranscript) -> TranscriptAnalysis | None:
        dot_words = detect_dot_words(cleaned.cleaned_text)
        dot_priority = next((word for word in dot_words if word.startswith("p")), None)
        projects = self._store.list_projects()

        prompt = (
            self._template.replace("{{project_list}}", ", ".join(p.name for p in projects) or "none")
            .replace("{{dot_word_hints}}", f"DETECTED DOT-WORDS: {', '.join(dot_words)}" if dot_words else "")
            .replace("{{transcript}}", cleaned.cleaned_text)
        )

        try:
            response = await self._llm.generate(prompt, num_predict=1024)
        except Exception as exc:
            logger.error("Stage 2 LLM failed", extra={"error": str(exc), "cleaned_id": cleaned.id})
            return None

        blocks = parse_key_value_blocks(response)
        if not blocks:
            logger.info("Stage 2: no analysis blocks parsed", extra={"cleaned_id": cleaned.id})
            return None

        descriptions = [
            AnalysisTaskDescription(title=block["TASK_TITLE"], prompt=block["TASK_PROMPT"])
            for block in blocks
            if block.get("TASK_TITLE", "NONE").upper() != "NONE"
            and block.get("TASK_PROMPT", "NONE").upper() != "NONE"
        ]
        primary = blocks[0]
        project_name, project_id = resolve_project(primary.get("PROJECT"), projects)
        llm_priority = primary.get("PRIORITY")

        analysis = TranscriptAnalysis(
            id=str(uuid.uuid4()),
            cleaned_transcript_id=cleaned.id,
            tags=_split_list(primary.get("TAGS")),
            project_name=project_name,
            project_id=project_id,
            summary=primary.get("SUMMARY") or cleaned.cleaned_text[:80],
            priority=dot_priority or (None if not llm_priority or llm_priority.lower() == "none" else llm_priority),
            person_names=_split_list(primary.get("PEOPLE")),
            task_descriptions=descriptions,
            timestamp=datetime.now(timezone.utc),
        )
        self._store.insert_analysis(analysis)
        logger.info(
            "Stage 2 done",
            extra={
                "project": project_name or "none",
                "priority": analysis.priority or "none",
                "tasks": len(descriptions),
                "tags": ",".join(analysis.tags),
            },
        )
        return analysis


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    certainty: str
    needs_input: str | None


def parse_execution_plan(response: str) -> ExecutionPlan:
    certainty = "medium"
    needs_input: str | None = None
    for line in response.splitlines():
        key, sep, value = line.strip().partition(": ")
        if not sep:
            continue
        key = key.strip().upper()
        value = value.strip()
        if key == "CERTAINTY" and value.lower() in {"high", "medium", "low"}:
            certainty = value.lower()
        elif key == "NEEDS_INPUT" and value and value.upper() != "NONE":
            needs_input = value
    return ExecutionPlan(certainty=certainty, needs_input=needs_input)


class WorkflowTaskCreator:
    """Turn analysis task descriptions into routed, persisted tasks."""

    def __init__(
        self,
        llm: TextGenerator,
        store: PipelineStore,
        workflows: WorkflowRegistry,
        *,
        default_workflow: str = "claude-code",
        autonomous_rules: Sequence[str] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._llm = llm
        self._store = store
        self._workflows = workflows
        self._default_workflow = default_workflow
        self._autonomous_rules = list(autonomous_rules)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create_tasks(
        self,
        analysis: TranscriptAnalysis,
        attachment_paths: Sequence[str] = (),
    ) -> list[PipelineTask]:
        if not analysis.task_descriptions:
            logger.info("Stage 3: no task descriptions, skipping", extra={"analysis_id": analysis.id})
            return []

        tasks: list[PipelineTask] = []
        for description in analysis.task_descriptions:
            workflow = self._workflows.get(self._default_workflow)
            missing = self._workflows.check_connections(workflow) if workflow else None

            if missing is not None:
                mode, status = TaskMode.ASK, TaskStatus.NEEDS_INPUT
                question = f"Missing connection: {missing}. Set up {missing} to proceed."
            elif analysis.project_id is None:
                mode, status = TaskMode.ASK, TaskStatus.NEEDS_INPUT
                question = "Which project should this task run in?"
            elif self._matches_autonomous_rule(description):
                mode, status, question = TaskMode.AUTO, TaskStatus.UPCOMING, None
            else:
                plan = await self._plan(description, analysis.project_name)
                if plan.needs_input is not None or plan.certainty == "low":
                    mode, status = TaskMode.ASK, TaskStatus.NEEDS_INPUT
                    question = plan.needs_input or "Low certainty. Please review before proceeding."
                elif plan.certainty == "medium":
                    mode, status = TaskMode.ASK, TaskStatus.PENDING_APPROVAL
                    question = "Review and approve this task before execution?"
                else:
                    mode, status, question = TaskMode.AUTO, TaskStatus.UPCOMING, None

            task = PipelineTask(
                id=f"task-{uuid.uuid4().hex[:8]}",
                analysis_id=analysis.id,
                title=description.title,
                prompt=description.prompt,
                created_at=self._clock(),
                project_id=analysis.project_id,
                project_name=analysis.project_name,
                mode=mode,
                status=status,
                workflow_id=self._default_workflow,
                workflow_steps=list(workflow.steps) if workflow else [],
                missing_connection=missing,
                pending_question=question,
                attachment_paths=list(attachment_paths),
            )
            self._store.insert_task(task)
            tasks.append(task)
            logger.info(
                "Stage 3: created task",
                extra={"task_id": task.id, "title": task.title, "mode": mode.value, "status": status.value},
            )
        return tasks

    def _matches_autonomous_rule(self, description: AnalysisTaskDescription) -> bool:
        text = f"{description.title} {description.prompt}".lower()
        for rule in self._autonomous_rules:
            keywords = [word for word in rule.lower().split() if len(word) > 2]
            if keywords and all(word in text for word in keywords):
                return True
        return False

    async def _plan(self, description: AnalysisTaskDescription, project_name: str | None) -> ExecutionPlan:
        prompt = (
            PLANNING_TEMPLATE.replace("{{project}}", project_name or "unknown")
            .replace("{{title}}", description.title)
            .replace("{{prompt}}", description.prompt)
        )
        try:
            response = await self._llm.generate(prompt, num_predict=256)
        except Exception as exc:
            logger.error("Stage 3 LLM planning failed", extra={"error": str(exc)})
            return ExecutionPlan(certainty="low", needs_input="LLM planning failed")
        return parse_execution_plan(response)


__all__ = [
    "ExecutionPlan",
    "LLMTranscriptAnalyzer",
    "TaskCreator",
    "TranscriptAnalyzer",
    "WorkflowTaskCreator",
    "detect_dot_words",
    "parse_execution_plan",
    "parse_key_value_blocks",
    "resolve_project",
]
