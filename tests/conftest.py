from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from utterflow.storage import PipelineStore


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if ids is not None:
            filtered = [record for record in filtered if record.id in set(ids)]
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    """Deterministic wall clock that advances one second per call."""

    def __init__(self, start: str = "2025-01-01T00:00:00+00:00") -> None:
        self.current = datetime.fromisoformat(start)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()


@pytest.fixture
def store(tmp_path: Path, stub_client: StubClient) -> PipelineStore:
    return PipelineStore(tmp_path, client_factory=lambda: stub_client, clock=TickingClock())


@pytest.fixture
def utc_now() -> datetime:
    return datetime(2025, 1, 1, tzinfo=timezone.utc)
