"""Workflow registry: built-in routes merged with YAML overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Mapping

import yaml
from pydantic import ValidationError

from ..agent.utils import find_agent_cli
from .models import Workflow


class WorkflowLoadError(RuntimeError):
    """Raised when one or more workflow files cannot be parsed."""


BUILTIN_WORKFLOWS: tuple[Workflow, ...] = (
    Workflow(
        id="claude-code",
        name="Utterflow → Claude Code CLI",
        steps=[
            "Utterflow captures requirement",
            "Prompt dispatched to Claude Code CLI",
            "Claude Code executes in project directory",
            "Results logged back to Utterflow",
        ],
        required_connections=["claude-cli"],
        dispatch="agent",
    ),
    Workflow(
        id="claude-code-linear",
        name="Utterflow → Claude Code → Linear",
        steps=[
            "Utterflow captures project management task",
            "Prompt dispatched to Claude Code CLI",
            "Claude Code prepares Linear API calls",
            "Linear tasks updated via API",
        ],
        required_connections=["claude-cli", "linear-api"],
        dispatch="agent",
    ),
    Workflow(
        id="claude-code-meta",
        name="Utterflow → Claude Code → Meta MCP",
        steps=[
            "Utterflow captures campaign requirement",
            "Prompt dispatched to Claude Code CLI",
            "Claude Code interfaces with Meta MCP server",
            "Campaign activated on Meta platforms",
        ],
        required_connections=["claude-cli", "meta-mcp"],
        dispatch="agent",
    ),
    Workflow(
        id="freepik",
        name="Utterflow → Freepik (Gemini → Sora)",
        steps=[
            "Utterflow captures creative brief",
            "Gemini generates first and last frame images",
            "Sora generates video from frame pair",
            "Video delivered to project assets",
        ],
        required_connections=["freepik-api"],
    ),
)


def _claude_cli_available() -> bool:
    return find_agent_cli() is not None


class WorkflowRegistry:
    """Resolve workflow routing keys.

    Later search paths override earlier ones, and every file overrides the
    built-in workflows, when ids collide.
    """

    def __init__(
        self,
        search_paths: Iterable[Path] | None = None,
        *,
        connection_checks: Mapping[str, Callable[[], bool]] | None = None,
        include_builtin: bool = True,
    ) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._connection_checks: dict[str, Callable[[], bool]] = {"claude-cli": _claude_cli_available}
        if connection_checks:
            self._connection_checks.update(connection_checks)
        self._include_builtin = include_builtin
        self._cache: dict[str, Workflow] | None = None

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, Workflow]:
        if self._cache is not None:
            return dict(self._cache)

        workflows: dict[str, Workflow] = (
            {workflow.id: workflow for workflow in BUILTIN_WORKFLOWS} if self._include_builtin else {}
        )
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    workflow = Workflow.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Workflow validation error in {path}: {exc}")
                    continue

                workflows[workflow.id] = workflow

        if errors:
            raise WorkflowLoadError("; ".join(errors))

        self._cache = workflows
        return dict(workflows)

    def get(self, workflow_id: str) -> Workflow | None:
        return self.load_all().get(workflow_id)

    def all(self) -> list[Workflow]:
        return sorted(self.load_all().values(), key=lambda workflow: workflow.id)

    def check_connections(self, workflow: Workflow) -> str | None:
        """Return the first missing connection, or None if all are present."""

        for connection in workflow.required_connections:
            check = self._connection_checks.get(connection)
            if check is None or not check():
                return connection
        return None


__all__ = ["BUILTIN_WORKFLOWS", "WorkflowLoadError", "WorkflowRegistry"]
