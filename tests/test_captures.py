from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from utterflow.captures import CaptureType, ContextCaptureStore


class MutableClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_register_bytes_writes_file(tmp_path: Path) -> None:
    store = ContextCaptureStore(tmp_path / "captures")

    capture = store.register_bytes(b"x" * 4096, type=CaptureType.SCREENSHOT, session_id="s1")

    assert capture is not None
    assert Path(capture.file_path).read_bytes() == b"x" * 4096
    assert capture.preview == "screenshot (4KB)"


def test_recent_unattached_respects_window_and_session(tmp_path: Path) -> None:
    clock = MutableClock()
    store = ContextCaptureStore(tmp_path, clock=clock)
    old = store.register_url("https://example.com/old", session_id="s1")
    clock.now += timedelta(minutes=5)
    mine = store.register_url("https://example.com/mine", session_id="s1")
    shared = store.register_url("https://example.com/shared", session_id=None)
    store.register_url("https://example.com/other", session_id="s2")

    recent = store.recent_unattached("s1", window=120)

    assert [capture.id for capture in recent] == [mine.id, shared.id]
    assert old.id not in {capture.id for capture in recent}

    store.mark_attached([mine.id])
    assert [capture.id for capture in store.recent_unattached("s1", window=120)] == [shared.id]


def test_purge_old_removes_files(tmp_path: Path) -> None:
    clock = MutableClock()
    store = ContextCaptureStore(tmp_path, clock=clock)
    capture = store.register_bytes(b"data", type=CaptureType.CLIPBOARD_IMAGE, session_id=None)
    clock.now += timedelta(days=8)

    assert store.purge_old(retention_days=7) == 1
    assert not Path(capture.file_path).exists()
    assert store.recent_unattached(None) == []


def test_attached_captures_are_evicted_first(tmp_path: Path) -> None:
    store = ContextCaptureStore(tmp_path, max_captures=4)
    first = [store.register_bytes(b"a", type=CaptureType.CLIPBOARD_IMAGE, session_id=None) for _ in range(4)]
    store.mark_attached(capture.id for capture in first[:3])

    store.register_bytes(b"b", type=CaptureType.CLIPBOARD_IMAGE, session_id=None)

    assert not Path(first[0].file_path).exists()
    assert Path(first[3].file_path).exists()
    assert len(store.recent_unattached(None)) == 2
