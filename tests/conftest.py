"""Pytest configuration and fixtures."""

import hashlib
import json
from pathlib import Path
from typing import Callable, List, Optional, Set

import httpx
import pytest

from atlas_ingestion.config import (
    ChunkingSettings,
    DatabaseSettings,
    EmbeddingSettings,
    ProgressSettings,
    Settings,
    VectorIndexSettings,
    WatcherSettings,
)
from atlas_ingestion.database.connection import Database
from atlas_ingestion.service import AtlasIngestionService

TEST_DIMENSION = 4

# Repository tests; service tests share one on-disk file per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def fake_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Deterministic, non-zero vector for a text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [1.0 + digest[i % len(digest)] / 255.0 for i in range(dimension)]


class FakeOllama:
    """
    Stand-in for the Ollama /api/embed endpoint, served through httpx.MockTransport.

    Texts listed in ``failing_texts`` always get a 500. ``status_sequence``
    forces the status of the next N requests, whatever the text.
    """

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.failing_texts: Set[str] = set()
        self.status_sequence: List[int] = []
        self.should_fail: Optional[Callable[[str], bool]] = None
        self.requests: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        text = payload["input"]
        self.requests.append(text)

        if self.status_sequence:
            status = self.status_sequence.pop(0)
            if status != 200:
                return httpx.Response(status, json={"error": "forced failure"})

        if text in self.failing_texts or (self.should_fail and self.should_fail(text)):
            return httpx.Response(500, json={"error": "model crashed"})

        return httpx.Response(
            200,
            json={"model": payload["model"], "embeddings": [fake_vector(text, self.dimension)]},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every store at the test's temporary directory."""
    return Settings(
        embedding=EmbeddingSettings(
            ollama_base_url="http://ollama.test",
            embedding_dimension=TEST_DIMENSION,
            embedding_batch_size=15,
            embedding_max_attempts=3,
            embedding_initial_backoff=0.0,
            embedding_timeout=5.0,
        ),
        chunking=ChunkingSettings(chunk_size=100, chunk_overlap=20),
        vector_index=VectorIndexSettings(
            path=str(tmp_path / "index"),
            initial_max_elements=16,
            resize_headroom=4,
        ),
        watcher=WatcherSettings(
            debounce_delay=0.05,
            stability_threshold=0.0,
            poll_interval=0.01,
            scan_existing=False,
        ),
        progress=ProgressSettings(cleanup_delay=60.0),
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'atlas.db'}"),
    )


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
async def database():
    """In-memory database with all tables created."""
    db = Database(DatabaseSettings(url=TEST_DATABASE_URL))
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
async def service(settings: Settings, fake_ollama: FakeOllama):
    """Started service wired to the fake embedding endpoint."""
    svc = AtlasIngestionService(settings, transport=fake_ollama.transport)
    await svc.start()
    yield svc
    await svc.shutdown()


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "docs"
    path.mkdir()
    return path.resolve()


@pytest.fixture
async def project(service: AtlasIngestionService, docs_dir: Path):
    return await service.create_project("docs", watch_path=str(docs_dir))


def write_words(path: Path, count: int) -> Path:
    """Write ``count`` distinct words to a text file."""
    path.write_text(" ".join(f"word{i}" for i in range(count)), encoding="utf-8")
    return path
