"""Configuration management for Utterflow."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class UtterflowSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    claude_model: str | None = Field(default=None, validation_alias="CLAUDE_MODEL")
    ollama_url: str = Field(default="http://localhost:11434", validation_alias="OLLAMA_URL")
    ollama_model: str = Field(default="llama3.2", validation_alias="OLLAMA_MODEL")
    ollama_timeout: float = Field(default=120.0, validation_alias="OLLAMA_TIMEOUT")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    workflow_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("workflows"),), validation_alias="UTTERFLOW_WORKFLOW_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="UTTERFLOW_LOG_LEVEL")
    merge_window: float = Field(default=3.0, validation_alias="UTTERFLOW_MERGE_WINDOW")
    text_flush_interval: float = Field(
        default=2.0, validation_alias="UTTERFLOW_TEXT_FLUSH_INTERVAL"
    )
    min_cleaned_length: int = Field(default=5, validation_alias="UTTERFLOW_MIN_CLEANED_LENGTH")
    default_workflow: str = Field(
        default="claude-code", validation_alias="UTTERFLOW_DEFAULT_WORKFLOW"
    )
    capture_window: float = Field(default=120.0, validation_alias="UTTERFLOW_CAPTURE_WINDOW")
    rebuild_command: str | None = Field(default=None, validation_alias="UTTERFLOW_REBUILD_COMMAND")
    autonomous_rules: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="UTTERFLOW_AUTONOMOUS_RULES"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "UTTERFLOW_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("workflow_paths", mode="before")
    @classmethod
    def _parse_workflow_paths(cls, value):
        if value is None or value == "":
            return (Path("workflows"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("workflows"),)
        raise TypeError("UTTERFLOW_WORKFLOW_PATHS must be a list of paths or a path-separated string")

    @field_validator("autonomous_rules", mode="before")
    @classmethod
    def _parse_autonomous_rules(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            return tuple(rule.strip() for rule in value.split(";") if rule.strip())
        return tuple(str(rule).strip() for rule in value if str(rule).strip())

    @field_validator("merge_window", "text_flush_interval")
    @classmethod
    def _validate_positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Merge and flush intervals must be > 0 seconds")
        return value

    @field_validator("min_cleaned_length")
    @classmethod
    def _validate_min_cleaned_length(cls, value: int) -> int:
        if value < 0:
            raise ValueError("UTTERFLOW_MIN_CLEANED_LENGTH must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> UtterflowSettings:
    """Return cached settings instance."""

    settings = UtterflowSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.workflow_paths = tuple(path.expanduser().resolve() for path in settings.workflow_paths)
    return settings


__all__ = ["UtterflowSettings", "get_settings"]
