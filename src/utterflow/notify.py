"""Observer bus for pipeline and step updates.

Subscribers are notified fire-and-forget: a failing subscriber is logged and
never affects the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .storage.models import ExecutionStep

logger = logging.getLogger(__name__)


class UpdateTopic(str, Enum):
    PIPELINE_UPDATED = "pipeline_updated"
    STEP_UPDATED = "step_updated"


@dataclass(frozen=True, slots=True)
class PipelineUpdate:
    stage: str
    transcript_id: int | None = None
    task_id: str | None = None


@dataclass(frozen=True, slots=True)
class StepUpdate:
    task_id: str
    step: ExecutionStep


Subscriber = Callable[[Any], Any]


class UpdateBus:
    """Multi-subscriber, topic-keyed notification bus."""

    def __init__(self) -> None:
        self._subscribers: dict[UpdateTopic, list[Subscriber]] = {topic: [] for topic in UpdateTopic}
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, topic: UpdateTopic, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""

        self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, topic: UpdateTopic, payload: Any) -> None:
        for callback in list(self._subscribers[topic]):
            try:
                outcome = callback(payload)
            except Exception:
                logger.exception("Update subscriber failed", extra={"topic": topic.value})
                continue
            if inspect.isawaitable(outcome):
                self._schedule(topic, outcome)

    def _schedule(self, topic: UpdateTopic, awaitable: Any) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError:
            logger.warning("No running event loop for async subscriber", extra={"topic": topic.value})
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        self._pending.add(task)
        task.add_done_callback(lambda done: self._finish(topic, done))

    def _finish(self, topic: UpdateTopic, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async update subscriber failed",
                exc_info=exc,
                extra={"topic": topic.value},
            )

    def pipeline_updated(self, stage: str, **fields: Any) -> None:
        self.publish(UpdateTopic.PIPELINE_UPDATED, PipelineUpdate(stage=stage, **fields))

    def step_updated(self, step: ExecutionStep) -> None:
        self.publish(UpdateTopic.STEP_UPDATED, StepUpdate(task_id=step.task_id, step=step))


__all__ = ["PipelineUpdate", "StepUpdate", "UpdateBus", "UpdateTopic"]
