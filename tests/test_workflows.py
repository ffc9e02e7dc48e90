from __future__ import annotations

from pathlib import Path

import pytest

from utterflow.workflows import WorkflowLoadError, WorkflowRegistry


def write_workflow(path: Path, *, name: str, dispatch: str | None = "agent") -> None:
    lines = [
        "id: claude-code",
        f"name: {name}",
        "steps:",
        "  - Prompt dispatched",
        "  - Agent executes",
        "required_connections:",
        "  - claude-cli",
    ]
    if dispatch:
        lines.append(f"dispatch: {dispatch}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def test_builtin_workflows_are_available() -> None:
    registry = WorkflowRegistry()

    ids = [workflow.id for workflow in registry.all()]

    assert ids == ["claude-code", "claude-code-linear", "claude-code-meta", "freepik"]
    assert registry.get("claude-code").is_executable
    assert not registry.get("freepik").is_executable
    assert registry.get("missing") is None


def test_later_paths_override_earlier(tmp_path: Path) -> None:
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    write_workflow(first / "claude.yml", name="First")
    write_workflow(second / "claude.yaml", name="Second")

    registry = WorkflowRegistry([first, second])

    assert registry.get("claude-code").name == "Second"
    assert len(registry.all()) == 4


def test_missing_search_paths_are_ignored(tmp_path: Path) -> None:
    registry = WorkflowRegistry([tmp_path / "absent"], include_builtin=False)

    assert registry.load_all() == {}
    assert registry.search_paths == []


def test_validation_error_is_reported(tmp_path: Path) -> None:
    (tmp_path / "broken.yml").write_text("id: ''\nname: Broken\n", encoding="utf-8")

    registry = WorkflowRegistry([tmp_path])

    with pytest.raises(WorkflowLoadError):
        registry.load_all()


def test_check_connections_uses_injected_checks() -> None:
    registry = WorkflowRegistry(
        connection_checks={"claude-cli": lambda: True, "linear-api": lambda: False}
    )

    assert registry.check_connections(registry.get("claude-code")) is None
    assert registry.check_connections(registry.get("claude-code-linear")) == "linear-api"
    # Connections without a registered check count as missing.
    assert registry.check_connections(registry.get("claude-code-meta")) == "meta-mcp"
