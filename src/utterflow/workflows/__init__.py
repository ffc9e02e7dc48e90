"""Workflow routing for task execution."""

from .models import Workflow
from .registry import BUILTIN_WORKFLOWS, WorkflowLoadError, WorkflowRegistry

__all__ = ["BUILTIN_WORKFLOWS", "Workflow", "WorkflowLoadError", "WorkflowRegistry"]
