"""Ambient context captures (screenshots, clipboard images, URLs) per listening session."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


class CaptureType(str, Enum):
    SCREENSHOT = "screenshot"
    CLIPBOARD_IMAGE = "clipboard_image"
    URL = "url"


@dataclass(slots=True)
class ContextCapture:
    id: str
    timestamp: datetime
    session_id: str | None
    type: CaptureType
    file_path: str
    preview: str
    attached: bool = False


class ContextCaptureStore:
    """In-memory index of captures saved under a capture directory."""

    def __init__(
        self,
        directory: Path,
        *,
        max_captures: int = 200,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._max_captures = max_captures
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._captures: list[ContextCapture] = []
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def register_bytes(
        self,
        data: bytes,
        *,
        type: CaptureType,
        session_id: str | None,
        ext: str = "png",
    ) -> ContextCapture | None:
        capture_id = str(uuid.uuid4())
        stamp = self._clock().strftime("%Y%m%d-%H%M%S")
        path = self._directory / f"{stamp}-{capture_id[:8]}.{ext}"
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            logger.warning("Failed to write capture", extra={"path": str(path), "error": str(exc)})
            return None

        capture = ContextCapture(
            id=capture_id,
            timestamp=self._clock(),
            session_id=session_id,
            type=type,
            file_path=str(path),
            preview=f"{type.value} ({len(data) // 1024}KB)",
        )
        self._append(capture)
        logger.info("Registered capture", extra={"capture_type": type.value, "path": str(path)})
        return capture

    def register_file(self, path: Path, *, type: CaptureType, session_id: str | None) -> ContextCapture:
        path = Path(path)
        capture = ContextCapture(
            id=str(uuid.uuid4()),
            timestamp=self._clock(),
            session_id=session_id,
            type=type,
            file_path=str(path),
            preview=f"{type.value} {path.name}",
        )
        self._append(capture)
        return capture

    def register_url(self, url: str, *, session_id: str | None) -> ContextCapture:
        capture = ContextCapture(
            id=str(uuid.uuid4()),
            timestamp=self._clock(),
            session_id=session_id,
            type=CaptureType.URL,
            file_path="",
            preview=url[:100],
        )
        self._append(capture)
        return capture

    def _append(self, capture: ContextCapture) -> None:
        with self._lock:
            self._captures.append(capture)
            if len(self._captures) <= self._max_captures:
                return
            # Drop the oldest attached captures until at most half the budget is attached.
            attached = [item for item in self._captures if item.attached]
            keep = self._max_captures // 2
            if len(attached) <= keep:
                return
            doomed = {item.id for item in attached[: len(attached) - keep]}
            self._captures = [item for item in self._captures if item.id not in doomed]
        for item in attached:
            if item.id in doomed and item.file_path:
                Path(item.file_path).unlink(missing_ok=True)

    def recent_unattached(
        self,
        session_id: str | None,
        *,
        since: datetime | None = None,
        window: float = 120.0,
    ) -> list[ContextCapture]:
        """Unattached captures of the session (or sessionless ones) newer than the cutoff."""

        cutoff = since or (self._clock() - timedelta(seconds=window))
        with self._lock:
            return [
                capture
                for capture in self._captures
                if not capture.attached
                and capture.timestamp >= cutoff
                and (session_id is None or capture.session_id in {session_id, None})
            ]

    def mark_attached(self, ids: Iterable[str]) -> None:
        wanted = set(ids)
        with self._lock:
            for capture in self._captures:
                if capture.id in wanted:
                    capture.attached = True

    def purge_old(self, retention_days: int = 7) -> int:
        cutoff = self._clock() - timedelta(days=retention_days)
        with self._lock:
            old = [capture for capture in self._captures if capture.timestamp < cutoff]
            self._captures = [capture for capture in self._captures if capture.timestamp >= cutoff]
        for capture in old:
            if capture.file_path:
                Path(capture.file_path).unlink(missing_ok=True)
        if old:
            logger.info("Purged old captures", extra={"count": len(old)})
        return len(old)


__all__ = ["CaptureType", "ContextCapture", "ContextCaptureStore"]
