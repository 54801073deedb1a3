"""Service object that wires the ingestion pipeline together."""

from pathlib import Path
from typing import List, Optional, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from atlas_ingestion.clients.ollama_client import OllamaClient
from atlas_ingestion.config import Settings, get_settings
from atlas_ingestion.database.connection import Database
from atlas_ingestion.models.chunk import Chunk, chunk_from_row
from atlas_ingestion.models.document import (
    Document,
    DocumentStatus,
    Project,
    ProjectSettings,
    document_from_row,
    project_from_row,
)
from atlas_ingestion.models.embedding import EmbeddingProgressView, EmbeddingRunResult, ServiceHealth
from atlas_ingestion.models.index import IndexStats, SearchResult
from atlas_ingestion.repositories.chunk_repository import ChunkRepository
from atlas_ingestion.repositories.document_repository import DocumentRepository
from atlas_ingestion.repositories.embedding_repository import EmbeddingRepository
from atlas_ingestion.repositories.project_repository import ProjectRepository
from atlas_ingestion.services.chunking_service import ChunkingService
from atlas_ingestion.services.embedding_service import EmbeddingOrchestrator
from atlas_ingestion.services.ingestion_service import IngestionCoordinator
from atlas_ingestion.services.parser_service import ParserService, detect_file_type
from atlas_ingestion.services.progress_tracker import ProgressTracker
from atlas_ingestion.services.vector_store_service import VectorIndexManager
from atlas_ingestion.services.watcher_service import DirectoryWatcher, WatcherState
from atlas_ingestion.utils.errors import NotFoundError
from atlas_ingestion.utils.logging import get_logger
from atlas_ingestion.utils.tasks import BackgroundTaskRunner

logger = get_logger("service")


class AtlasIngestionService:
    """
    Owns every component and all in-memory registries of one ingestion process.

    Usage:
        async with AtlasIngestionService(settings) as service:
            await service.watch_project_directory(project_id, "/path/to/docs")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Application settings (defaults to get_settings())
            engine: Pre-built database engine, mainly for tests
            transport: httpx transport for the embedding client, mainly for tests
        """
        self.settings = settings or get_settings()

        self.database = Database(self.settings.database, engine=engine)
        self.client = OllamaClient(self.settings.embedding, transport=transport)
        self.vector_index = VectorIndexManager(
            self.settings.vector_index, dimension=self.settings.embedding.dimension
        )
        self.progress = ProgressTracker(self.settings.progress)
        self.tasks = BackgroundTaskRunner()

        self.embeddings = EmbeddingOrchestrator(
            database=self.database,
            client=self.client,
            vector_index=self.vector_index,
            progress=self.progress,
            settings=self.settings.embedding,
        )
        self.ingestion = IngestionCoordinator(
            database=self.database,
            parser=ParserService(),
            chunker=ChunkingService(self.settings.chunking),
            embeddings=self.embeddings,
            tasks=self.tasks,
        )
        self.watcher = DirectoryWatcher(
            database=self.database,
            ingestion=self.ingestion,
            tasks=self.tasks,
            settings=self.settings.watcher,
        )
        self.health: Optional[ServiceHealth] = None
        self._started = False

    async def start(self) -> None:
        """Create tables and check the embedding service. An unhealthy service is not fatal."""
        if self._started:
            return

        await self.database.create_tables()

        self.health = await self.client.health_check()
        if self.health.healthy:
            logger.info(f"Embedding service healthy: {self.health.message}")
        else:
            logger.warning(
                f"Embedding service unavailable, running in degraded mode: {self.health.message}"
            )

        self._started = True
        logger.info(f"{self.settings.app_name} started")

    async def shutdown(self) -> None:
        """Stop watchers, cancel background work, flush indexes, release connections."""
        await self.watcher.stop_all()
        await self.tasks.shutdown()
        await self.vector_index.clear_all_indexes()
        self.progress.clear()
        await self.client.close()
        await self.database.close()
        self._started = False
        logger.info(f"{self.settings.app_name} stopped")

    async def __aenter__(self) -> "AtlasIngestionService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # Pipeline operations

    async def ingest_document(self, document_id: str) -> int:
        return await self.ingestion.ingest_document(document_id)

    async def generate_embeddings_for_document(self, document_id: str) -> EmbeddingRunResult:
        return await self.embeddings.generate_embeddings_for_document(document_id)

    async def generate_embeddings_for_project(self, project_id: str) -> EmbeddingRunResult:
        return await self.embeddings.generate_embeddings_for_project(project_id)

    async def rebuild_vector_index_from_db(self, project_id: str) -> int:
        return await self.embeddings.rebuild_vector_index_from_db(project_id)

    def get_embedding_progress(self, document_id: str) -> EmbeddingProgressView:
        return self.embeddings.get_embedding_progress(document_id)

    def is_document_embedding_in_progress(self, document_id: str) -> bool:
        return self.embeddings.is_document_embedding_in_progress(document_id)

    async def search(
        self, project_id: str, query_vector: Sequence[float], k: int = 5
    ) -> List[SearchResult]:
        return await self.vector_index.search(project_id, query_vector, k)

    async def get_project_index_stats(self, project_id: str) -> IndexStats:
        return await self.vector_index.get_project_index_stats(project_id)

    async def watch_project_directory(self, project_id: str, path: str) -> WatcherState:
        return await self.watcher.watch_project_directory(project_id, path)

    async def stop_watching(self, project_id: str) -> bool:
        return await self.watcher.stop_watching(project_id)

    async def clear_all_indexes(self) -> None:
        await self.vector_index.clear_all_indexes()

    async def delete_project_resources(self, project_id: str) -> None:
        """Release a deleted project's watcher and vector index."""
        await self.watcher.stop_watching(project_id)
        await self.vector_index.delete_project_index(project_id)

    # Persistence helpers for callers that sit in front of the pipeline

    async def create_project(
        self,
        name: str,
        watch_path: Optional[str] = None,
        settings: Optional[ProjectSettings] = None,
    ) -> Project:
        async with self.database.session() as session:
            row = await ProjectRepository(session).create_project(
                name=name,
                watch_path=watch_path,
                settings=settings.model_dump() if settings else None,
            )
            return project_from_row(row)

    async def create_document(self, project_id: str, file_path: str) -> Document:
        """Register a file as a pending document of a project (no ingestion yet)."""
        path = Path(file_path).resolve()
        async with self.database.session() as session:
            if await ProjectRepository(session).get_by_id(project_id) is None:
                raise NotFoundError("Project", project_id)
            row = await DocumentRepository(session).create(
                project_id=project_id,
                name=path.name,
                file_path=str(path),
                file_type=detect_file_type(path).value,
                file_size=path.stat().st_size if path.exists() else None,
                status=DocumentStatus.PENDING.value,
                metadata_json={},
            )
            return document_from_row(row)

    async def get_document(self, document_id: str) -> Document:
        async with self.database.session() as session:
            row = await DocumentRepository(session).get_by_id(document_id)
            if row is None:
                raise NotFoundError("Document", document_id)
            return document_from_row(row)

    async def list_chunks(self, document_id: str) -> List[Chunk]:
        async with self.database.session() as session:
            rows = await ChunkRepository(session).list_by_document(document_id)
            return [chunk_from_row(row) for row in rows]

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project with its documents, chunks and embeddings, plus its index and watcher."""
        await self.delete_project_resources(project_id)
        async with self.database.session() as session:
            documents = await DocumentRepository(session).get_by_project(project_id)
            for document in documents:
                await EmbeddingRepository(session).delete_by_document(document.id)
                await ChunkRepository(session).delete_by_document(document.id)
            return await ProjectRepository(session).delete(project_id)
