"""Stage 1: continuation merge and transcript cleanup.

Chunks that share an utterance session are buffered by a per-session worker.
Every new chunk restarts the worker's debounce timer; when the timer expires
the worker merges the buffered chunks in sequence order, cleans the merged
text, and persists exactly one cleaned transcript for the burst. The result is
handed to the caller that submitted the highest sequence number; every other
caller of the burst receives ``None``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from .llm import TextGenerator
from .storage import CleanedTranscript, PipelineStore

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_TEMPLATE = """Clean this spoken transcript. Remove filler words (um, uh, like, you know, so, basically), fix grammar, merge broken sentences. Keep ALL meaning. Output ONLY the cleaned text.

RAW TRANSCRIPT:
{{transcript}}

CLEANED:"""


@dataclass(frozen=True, slots=True)
class PendingChunk:
    transcript_id: int
    sequence: int
    text: str
    duration_seconds: int
    speaker_name: str | None


@dataclass(slots=True)
class _Burst:
    arrived: asyncio.Event = field(default_factory=asyncio.Event)
    chunks: list[PendingChunk] = field(default_factory=list)
    waiters: list[asyncio.Future] = field(default_factory=list)
    worker: asyncio.Task | None = None


class TranscriptCleaningService:
    """Merge continued chunks and clean them into one transcript per burst."""

    def __init__(
        self,
        llm: TextGenerator,
        store: PipelineStore,
        *,
        merge_window: float = 3.0,
        min_cleaned_length: int = 5,
        prompt_template: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._llm = llm
        self._store = store
        self._merge_window = merge_window
        self._min_cleaned_length = min_cleaned_length
        self._template = prompt_template or DEFAULT_CLEANUP_TEMPLATE
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._bursts: dict[str, _Burst] = {}
        self._lock = asyncio.Lock()

    @property
    def pending_sessions(self) -> list[str]:
        return list(self._bursts)

    async def process_new_transcript(
        self,
        text: str,
        transcript_id: int,
        session_id: str | None,
        sequence_number: int,
        duration_seconds: int,
        speaker_name: str | None = None,
    ) -> CleanedTranscript | None:
        """Submit a chunk; returns the cleaned transcript to the burst's merging caller only."""

        chunk = PendingChunk(
            transcript_id=transcript_id,
            sequence=sequence_number,
            text=text,
            duration_seconds=duration_seconds,
            speaker_name=speaker_name,
        )

        if session_id is None:
            return await self._clean_and_store([chunk], session_id=None)

        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        async with self._lock:
            burst = self._bursts.get(session_id)
            if burst is None:
                burst = _Burst()
                self._bursts[session_id] = burst
                burst.worker = asyncio.create_task(self._run_burst(session_id, burst))
            burst.chunks.append(chunk)
            burst.waiters.append(waiter)
            burst.arrived.set()

        logger.debug(
            "Buffered chunk for merge",
            extra={"session_id": session_id, "sequence": sequence_number, "transcript_id": transcript_id},
        )
        return await waiter

    async def _run_burst(self, session_id: str, burst: _Burst) -> None:
        while True:
            burst.arrived.clear()
            try:
                await asyncio.wait_for(burst.arrived.wait(), timeout=self._merge_window)
            except asyncio.TimeoutError:
                break

        async with self._lock:
            self._bursts.pop(session_id, None)
            entries = list(zip(burst.chunks, burst.waiters))

        # Highest sequence wins; among equal sequences the latest arrival wins.
        winner_index = max(range(len(entries)), key=lambda index: (entries[index][0].sequence, index))
        chunks = sorted((chunk for chunk, _ in entries), key=lambda chunk: chunk.sequence)

        error: Exception | None = None
        result: CleanedTranscript | None = None
        try:
            result = await self._clean_and_store(chunks, session_id=session_id)
        except Exception as exc:
            error = exc

        for index, (_, waiter) in enumerate(entries):
            if waiter.done():
                continue
            if index != winner_index:
                waiter.set_result(None)
            elif error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(result)

    async def _clean_and_store(
        self,
        chunks: list[PendingChunk],
        *,
        session_id: str | None,
    ) -> CleanedTranscript | None:
        raw_text = " ".join(chunk.text.strip() for chunk in chunks if chunk.text.strip())
        source_ids = tuple(chunk.transcript_id for chunk in chunks)
        cleaned_text = (await self.clean_text(raw_text)).strip()

        if not cleaned_text:
            logger.warning("Cleaning produced empty output", extra={"source_ids": list(source_ids)})
            return None

        transcript = CleanedTranscript(
            id=str(uuid.uuid4()),
            session_id=session_id,
            source_transcript_ids=source_ids,
            is_continued=len(chunks) > 1,
            source_chunk_count=len(chunks),
            cleaned_text=cleaned_text,
            timestamp=self._clock(),
            speaker_name=chunks[0].speaker_name if chunks else None,
            duration_seconds=sum(chunk.duration_seconds for chunk in chunks),
        )
        self._store.insert_cleaned_transcript(transcript)

        logger.info(
            "Stage 1 done",
            extra={
                "merged": f"{len(chunks)} chunks merged" if transcript.is_continued else "single chunk",
                "chars": len(cleaned_text),
                "session_id": session_id,
            },
        )
        return transcript

    async def clean_text(self, raw_text: str) -> str:
        """Clean raw speech text, falling back to the raw text on failure or degenerate output."""

        if not raw_text.strip():
            return raw_text

        prompt = self._template.replace("{{transcript}}", raw_text)
        try:
            response = await self._llm.generate(prompt, num_predict=512)
        except Exception as exc:
            logger.error("LLM cleaning failed, using raw text", extra={"error": str(exc)})
            return raw_text

        cleaned = response.strip()
        if len(cleaned) < self._min_cleaned_length:
            logger.warning("LLM cleaning output too short, using raw text", extra={"length": len(cleaned)})
            return raw_text
        return cleaned


__all__ = ["DEFAULT_CLEANUP_TEMPLATE", "PendingChunk", "TranscriptCleaningService"]
