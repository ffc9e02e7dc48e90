"""Pipeline coordinator: clean → analyze → create tasks → execute."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

from .analysis import TaskCreator, TranscriptAnalyzer
from .attachments import Attachment
from .captures import ContextCaptureStore
from .cleaning import TranscriptCleaningService
from .execution import TaskExecutionService
from .notify import UpdateBus
from .storage import PipelineTask, TaskMode

logger = logging.getLogger(__name__)


class PipelineSource(str, Enum):
    """Where a transcript came from, which decides how far it travels."""

    AMBIENT = "ambient"
    WHATSAPP = "whatsapp"
    TRANSCRIPTION = "transcription"
    CODE = "code"


class PipelineOrchestrator:
    """Sequences the four stages for each incoming chunk."""

    def __init__(
        self,
        cleaning: TranscriptCleaningService,
        analyzer: TranscriptAnalyzer,
        task_creator: TaskCreator,
        executor: TaskExecutionService,
        *,
        captures: ContextCaptureStore | None = None,
        bus: UpdateBus | None = None,
        capture_window: float = 120.0,
    ) -> None:
        self._cleaning = cleaning
        self._analyzer = analyzer
        self._task_creator = task_creator
        self._executor = executor
        self._captures = captures
        self._capture_window = capture_window
        self.bus = bus or UpdateBus()

    def pending_sessions(self) -> list[str]:
        """Session ids with chunks still waiting to be merged."""

        return self._cleaning.pending_sessions

    async def process_transcript(
        self,
        text: str,
        transcript_id: int,
        session_id: str | None,
        sequence_number: int,
        duration_seconds: int,
        speaker_name: str | None = None,
        source: PipelineSource = PipelineSource.AMBIENT,
    ) -> None:
        """Run a new transcript chunk through as many stages as it qualifies for."""

        logger.info(
            "Processing transcript",
            extra={
                "source": source.value,
                "chars": len(text),
                "session_id": session_id or "none",
                "sequence": sequence_number,
            },
        )

        if source == PipelineSource.CODE:
            logger.info("Skipping all stages for code source")
            self.bus.pipeline_updated("skipped", transcript_id=transcript_id)
            return

        try:
            cleaned = await self._cleaning.process_new_transcript(
                text,
                transcript_id,
                session_id,
                sequence_number,
                duration_seconds,
                speaker_name,
            )
        except Exception:
            logger.exception("Cleaning stage failed", extra={"transcript_id": transcript_id})
            return
        if cleaned is None:
            logger.info("Cleaning returned no result", extra={"transcript_id": transcript_id})
            return
        self.bus.pipeline_updated("cleaned", transcript_id=transcript_id)

        if source == PipelineSource.TRANSCRIPTION:
            logger.info("Stopping after cleaning stage for transcription source")
            return

        try:
            analysis = await self._analyzer.analyze(cleaned)
        except Exception:
            logger.exception("Analysis stage failed", extra={"cleaned_id": cleaned.id})
            return
        if analysis is None:
            logger.info("Analysis returned no result", extra={"cleaned_id": cleaned.id})
            return
        self.bus.pipeline_updated("analyzed", transcript_id=transcript_id)

        capture_paths = self._claim_captures(session_id)
        try:
            tasks = await self._task_creator.create_tasks(analysis, capture_paths)
        except Exception:
            logger.exception("Task creation stage failed", extra={"analysis_id": analysis.id})
            return
        self.bus.pipeline_updated("tasks_created", transcript_id=transcript_id)

        if not tasks:
            logger.info("No tasks created", extra={"analysis_id": analysis.id})
            return
        logger.info(
            "Tasks created",
            extra={"count": len(tasks), "attachments": len(capture_paths)},
        )

        # Serial on purpose: auto tasks may write into the same working tree.
        for task in tasks:
            if task.mode != TaskMode.AUTO:
                continue
            try:
                await self._executor.execute(task)
            except Exception:
                logger.exception("Auto task execution failed", extra={"task_id": task.id})
            self.bus.pipeline_updated("executed", transcript_id=transcript_id, task_id=task.id)

        logger.info("Pipeline complete", extra={"transcript_id": transcript_id})

    def _claim_captures(self, session_id: str | None) -> list[str]:
        if self._captures is None:
            return []
        captures = self._captures.recent_unattached(session_id, window=self._capture_window)
        if not captures:
            return []
        self._captures.mark_attached(capture.id for capture in captures)
        logger.info("Attaching context captures", extra={"count": len(captures)})
        return [capture.file_path for capture in captures if capture.file_path]

    async def execute_accepted_task(self, task: PipelineTask) -> None:
        logger.info("Executing accepted task", extra={"task_id": task.id})
        await self._executor.execute(task)
        self.bus.pipeline_updated("executed", task_id=task.id)

    def approve_task(self, task_id: str) -> PipelineTask | None:
        """Mark a task ongoing without running it; None if it cannot be accepted."""

        task = self._executor.accept(task_id)
        if task is not None:
            self.bus.pipeline_updated("accepted", task_id=task_id)
        return task

    async def accept_task(self, task_id: str) -> PipelineTask | None:
        task = self.approve_task(task_id)
        if task is None:
            return None
        await self.execute_accepted_task(task)
        return task

    async def dismiss_task(self, task_id: str) -> bool:
        dismissed = await self._executor.dismiss(task_id)
        if dismissed:
            self.bus.pipeline_updated("dismissed", task_id=task_id)
        return dismissed

    async def send_message_to_task(
        self,
        task_id: str,
        message: str,
        attachments: Sequence[Attachment] = (),
    ) -> bool:
        return await self._executor.send_message(task_id, message, attachments)

    async def stop_task_session(self, task_id: str) -> bool:
        return await self._executor.stop_session(task_id)


__all__ = ["PipelineOrchestrator", "PipelineSource"]
