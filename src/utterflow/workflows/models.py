"""Workflow models describing how a task is executed."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class Workflow(BaseModel):
    """A routing target for tasks: its tool chain and the connections it needs."""

    id: str = Field(..., description="Routing key referenced by tasks.")
    name: str = Field(..., description="Display name for the workflow.")
    steps: list[str] = Field(
        default_factory=list,
        description="Human-readable description of the tool chain, in order.",
    )
    required_connections: list[str] = Field(
        default_factory=list,
        description="Connections that must be available before the workflow can run.",
    )
    dispatch: str | None = Field(
        default=None,
        description="Execution path handling the workflow; 'agent' delegates to the coding agent.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Workflow id must not be empty")
        return normalized

    @field_validator("steps", "required_connections", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Workflow steps and connections must be sequences of strings")

    @property
    def is_executable(self) -> bool:
        return self.dispatch == "agent"


__all__ = ["Workflow"]
