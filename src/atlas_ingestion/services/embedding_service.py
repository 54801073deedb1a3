"""Batch embedding generation for documents and projects."""

from typing import List, Optional, Sequence, Set, Tuple

from atlas_ingestion.clients.ollama_client import OllamaClient
from atlas_ingestion.config import EmbeddingSettings
from atlas_ingestion.database.connection import Database
from atlas_ingestion.models.document import EmbeddingProgress, EmbeddingStatus
from atlas_ingestion.models.embedding import (
    EmbeddingProgressView,
    EmbeddingRunResult,
    RunOutcome,
)
from atlas_ingestion.repositories.chunk_repository import ChunkRepository
from atlas_ingestion.repositories.document_repository import DocumentRepository
from atlas_ingestion.repositories.embedding_repository import EmbeddingRepository
from atlas_ingestion.repositories.project_repository import ProjectRepository
from atlas_ingestion.services.progress_tracker import ProgressTracker, terminal_status
from atlas_ingestion.services.vector_store_service import VectorIndexManager
from atlas_ingestion.utils.errors import IndexIOError, IngestionException, NotFoundError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("embedding_service")

PendingChunk = Tuple[str, str]


class EmbeddingOrchestrator:
    """
    Drive the embedding client over chunks that lack embeddings.

    Chunks are embedded in fixed-size batches. A failing text or a failing
    batch is counted and skipped; the run carries on with the next batch.
    Successful vectors are stored in the database first and then added to
    the project's vector index, which is saved once at the end of a run.
    """

    def __init__(
        self,
        database: Database,
        client: OllamaClient,
        vector_index: VectorIndexManager,
        progress: ProgressTracker,
        settings: Optional[EmbeddingSettings] = None,
    ):
        self.database = database
        self.client = client
        self.vector_index = vector_index
        self.progress = progress
        self.settings = settings or client.settings
        self._in_flight: Set[str] = set()

    def is_document_embedding_in_progress(self, document_id: str) -> bool:
        return document_id in self._in_flight

    def get_embedding_progress(self, document_id: str) -> EmbeddingProgressView:
        record = self.progress.get_progress(document_id)
        return EmbeddingProgressView(
            progress=record,
            percentage=record.percentage if record else 0,
        )

    async def generate_embeddings_for_document(self, document_id: str) -> EmbeddingRunResult:
        """
        Embed every chunk of a document that has no embedding yet.

        A call for a document that is already being embedded returns
        immediately with outcome ``already_in_progress``.

        Raises:
            NotFoundError: If the document or its project does not exist
        """
        if document_id in self._in_flight:
            logger.info(f"Embedding generation already in progress for document {document_id}")
            return EmbeddingRunResult(outcome=RunOutcome.ALREADY_IN_PROGRESS)

        self._in_flight.add(document_id)
        try:
            return await self._embed_document(document_id)
        finally:
            self._in_flight.discard(document_id)

    async def _embed_document(self, document_id: str) -> EmbeddingRunResult:
        async with self.database.session() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
            if document is None:
                raise NotFoundError("Document", document_id)
            project_id = document.project_id
            if await ProjectRepository(session).get_by_id(project_id) is None:
                raise NotFoundError("Project", project_id)

            chunks = await ChunkRepository(session).get_without_embeddings(document_id)
            pending: List[PendingChunk] = [(c.id, c.content) for c in chunks]

        if not pending:
            logger.info(f"No chunks without embeddings for document {document_id}")
            return EmbeddingRunResult(outcome=RunOutcome.NOOP)

        total = len(pending)
        logger.info(f"Generating embeddings for document {document_id}: {total} chunks")

        self.progress.start_tracking(document_id, total)
        self.progress.update_progress(document_id, status=EmbeddingStatus.PROCESSING)
        await self._update_metadata(
            document_id,
            embedding_status=EmbeddingStatus.PROCESSING,
            embedding_progress=EmbeddingProgress(total=total),
            embedding_error=None,
        )

        try:
            completed, failed = await self._process_batches(project_id, pending, document_id)
        except Exception as e:
            logger.error(
                f"Embedding generation failed for document {document_id}: {e}", exc_info=True
            )
            self.progress.complete_tracking(document_id, EmbeddingStatus.FAILED)
            await self._update_metadata(
                document_id,
                embedding_status=EmbeddingStatus.FAILED,
                embedding_error=str(e),
            )
            raise

        await self._save_index(project_id)

        status = terminal_status(completed, failed)
        self.progress.complete_tracking(document_id, status)
        await self._update_metadata(
            document_id,
            embedding_status=status,
            embedding_progress=EmbeddingProgress(total=total, completed=completed, failed=failed),
            embedding_error=(
                f"All {failed} chunks failed to embed" if status == EmbeddingStatus.FAILED else None
            ),
        )

        logger.info(
            f"Embedding generation finished for document {document_id}: "
            f"status={status.value}, completed={completed}, failed={failed}"
        )
        return EmbeddingRunResult(
            outcome=RunOutcome(status.value), total=total, completed=completed, failed=failed
        )

    async def generate_embeddings_for_project(self, project_id: str) -> EmbeddingRunResult:
        """
        Backfill embeddings for every chunk of a project that lacks one.

        Uses the same batching as the per-document path, without progress
        tracking.

        Raises:
            NotFoundError: If the project does not exist
        """
        async with self.database.session() as session:
            if await ProjectRepository(session).get_by_id(project_id) is None:
                raise NotFoundError("Project", project_id)
            chunks = await ChunkRepository(session).get_without_embeddings_by_project(project_id)
            pending: List[PendingChunk] = [(c.id, c.content) for c in chunks]

        if not pending:
            logger.info(f"No chunks without embeddings for project {project_id}")
            return EmbeddingRunResult(outcome=RunOutcome.NOOP)

        logger.info(f"Generating embeddings for project {project_id}: {len(pending)} chunks")
        completed, failed = await self._process_batches(project_id, pending)
        await self._save_index(project_id)

        status = terminal_status(completed, failed)
        logger.info(
            f"Project embedding backfill finished for {project_id}: "
            f"completed={completed}, failed={failed}"
        )
        return EmbeddingRunResult(
            outcome=RunOutcome(status.value),
            total=len(pending),
            completed=completed,
            failed=failed,
        )

    async def _process_batches(
        self,
        project_id: str,
        pending: Sequence[PendingChunk],
        document_id: Optional[str] = None,
    ) -> Tuple[int, int]:
        """Embed ``pending`` batch by batch. Returns (completed, failed)."""
        batch_size = self.settings.batch_size
        total = len(pending)
        completed = 0
        failed = 0

        for start in range(0, total, batch_size):
            batch = pending[start : start + batch_size]
            batch_number = start // batch_size + 1
            try:
                succeeded = await self._process_batch(project_id, batch)
            except Exception as e:
                logger.error(
                    f"Embedding batch {batch_number} failed for project {project_id}: {e}",
                    exc_info=True,
                )
                succeeded = 0

            completed += succeeded
            failed += len(batch) - succeeded

            if document_id is not None:
                self.progress.update_progress(document_id, completed=completed, failed=failed)
                await self._update_metadata(
                    document_id,
                    embedding_progress=EmbeddingProgress(
                        total=total, completed=completed, failed=failed
                    ),
                )

            logger.debug(
                f"Batch {batch_number}: {succeeded}/{len(batch)} embedded "
                f"({completed + failed}/{total} processed)"
            )

        return completed, failed

    async def _process_batch(self, project_id: str, batch: Sequence[PendingChunk]) -> int:
        result = await self.client.embed_batch([text for _, text in batch])

        staged: List[Tuple[str, List[float]]] = []
        async with self.database.session() as session:
            repo = EmbeddingRepository(session)
            for (chunk_id, _), vector in zip(batch, result.embeddings):
                if vector is None:
                    continue
                await repo.create_embedding(chunk_id, self.client.model, vector)
                staged.append((chunk_id, vector))

        if staged:
            # Stored rows stay authoritative; a failed index insert is fixed by a rebuild
            try:
                await self.vector_index.add_embeddings_batch(project_id, staged)
            except IngestionException as e:
                logger.error(f"Failed to index embeddings for project {project_id}: {e.message}")

        return len(staged)

    async def _save_index(self, project_id: str) -> None:
        try:
            await self.vector_index.save_index(project_id)
        except IndexIOError as e:
            logger.error(f"Failed to save vector index for project {project_id}: {e.message}")

    async def _update_metadata(self, document_id: str, **fields) -> None:
        async with self.database.session() as session:
            await DocumentRepository(session).update_metadata(document_id, **fields)

    async def rebuild_vector_index_from_db(self, project_id: str) -> int:
        """
        Rebuild a project's vector index from its stored embeddings.

        Returns:
            Number of vectors in the rebuilt index (0 when the project has none)

        Raises:
            NotFoundError: If the project does not exist
            ConcurrencyConflictError: If a rebuild for the project is already running
        """
        async with self.database.session() as session:
            if await ProjectRepository(session).get_by_id(project_id) is None:
                raise NotFoundError("Project", project_id)
            embeddings = await EmbeddingRepository(session).get_all_by_project(project_id)

        items = []
        for embedding in embeddings:
            if embedding.dimension != self.vector_index.dimension:
                logger.warning(
                    f"Skipping embedding for chunk {embedding.chunk_id}: dimension "
                    f"{embedding.dimension} != {self.vector_index.dimension}"
                )
                continue
            items.append((embedding.chunk_id, embedding.vector))

        if not items:
            logger.info(f"No embeddings stored for project {project_id}, skipping index rebuild")
            return 0

        return await self.vector_index.rebuild_project_index(project_id, items)

    async def get_documents_with_pending_embeddings(self, project_id: str) -> List[str]:
        """IDs of a project's documents that still have chunks without embeddings."""
        async with self.database.session() as session:
            return await ChunkRepository(session).get_document_ids_without_embeddings(project_id)
