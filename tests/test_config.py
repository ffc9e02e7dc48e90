from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from utterflow.config import UtterflowSettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("UTTERFLOW_MERGE_WINDOW", "UTTERFLOW_LOG_LEVEL", "UTTERFLOW_WORKFLOW_PATHS"):
        monkeypatch.delenv(name, raising=False)

    settings = UtterflowSettings(_env_file=None)

    assert settings.merge_window == 3.0
    assert settings.text_flush_interval == 2.0
    assert settings.min_cleaned_length == 5
    assert settings.default_workflow == "claude-code"
    assert settings.workflow_paths == (Path("workflows"),)
    assert settings.autonomous_rules == ()


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("UTTERFLOW_LOG_LEVEL", "debug")
    monkeypatch.setenv("UTTERFLOW_MERGE_WINDOW", "1.5")
    monkeypatch.setenv(
        "UTTERFLOW_WORKFLOW_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")])
    )
    monkeypatch.setenv("UTTERFLOW_AUTONOMOUS_RULES", "fix typos; update changelog ;")

    settings = UtterflowSettings(_env_file=None)

    assert settings.log_level == "DEBUG"
    assert settings.merge_window == 1.5
    assert settings.workflow_paths == (tmp_path / "a", tmp_path / "b")
    assert settings.autonomous_rules == ("fix typos", "update changelog")


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("UTTERFLOW_LOG_LEVEL", "chatty"),
        ("UTTERFLOW_MERGE_WINDOW", "0"),
        ("UTTERFLOW_TEXT_FLUSH_INTERVAL", "-1"),
        ("UTTERFLOW_MIN_CLEANED_LENGTH", "-3"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        UtterflowSettings(_env_file=None)


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))
    monkeypatch.setenv("UTTERFLOW_WORKFLOW_PATHS", "relative-workflows")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.chroma_persist_path == (tmp_path / "chroma").resolve()
    assert settings.workflow_paths[0].is_absolute()
