"""Document ingestion: parse, chunk, persist, then hand off to embedding."""

from typing import Any, Dict, Optional

from atlas_ingestion.database.connection import Database
from atlas_ingestion.models.document import (
    DocumentStatus,
    EmbeddingStatus,
    FileType,
    ProjectSettings,
)
from atlas_ingestion.repositories.chunk_repository import ChunkRepository
from atlas_ingestion.repositories.document_repository import DocumentRepository
from atlas_ingestion.repositories.embedding_repository import EmbeddingRepository
from atlas_ingestion.repositories.project_repository import ProjectRepository
from atlas_ingestion.services.chunking_service import ChunkingService
from atlas_ingestion.services.embedding_service import EmbeddingOrchestrator
from atlas_ingestion.services.parser_service import ParserService
from atlas_ingestion.utils.errors import IngestionException, NotFoundError, ParseError
from atlas_ingestion.utils.logging import get_logger
from atlas_ingestion.utils.tasks import BackgroundTaskRunner

logger = get_logger("ingestion_service")


class IngestionCoordinator:
    """
    Drives a document through the ingestion lifecycle.

    pending -> processing -> completed | failed

    Chunks are always replaced wholesale: the previous chunks and their
    embeddings are deleted before the new chunks are inserted, in one
    transaction. Embedding generation is spawned on the background task
    runner once the document is completed.
    """

    def __init__(
        self,
        database: Database,
        parser: ParserService,
        chunker: ChunkingService,
        embeddings: EmbeddingOrchestrator,
        tasks: BackgroundTaskRunner,
        auto_embed: bool = True,
    ):
        self.database = database
        self.parser = parser
        self.chunker = chunker
        self.embeddings = embeddings
        self.tasks = tasks
        self.auto_embed = auto_embed

    def _resolve_settings(self, stored: Optional[Dict[str, Any]]) -> ProjectSettings:
        defaults = {
            "chunk_size": self.chunker.settings.chunk_size,
            "chunk_overlap": self.chunker.settings.chunk_overlap,
        }
        return ProjectSettings.model_validate({**defaults, **(stored or {})})

    async def ingest_document(self, document_id: str) -> int:
        """
        Ingest one document.

        Args:
            document_id: Document ID

        Returns:
            Number of chunks stored

        Raises:
            NotFoundError: If the document or its project does not exist
            ParseError: If the file cannot be parsed or yields no text
        """
        logger.info(f"Starting ingestion for document: {document_id}")

        async with self.database.session() as session:
            repo = DocumentRepository(session)
            document = await repo.get_by_id(document_id)
            if document is None:
                raise NotFoundError("Document", document_id)
            await repo.update(document_id, status=DocumentStatus.PROCESSING.value, error_message=None)
            project_id = document.project_id
            file_path = document.file_path
            file_type = FileType(document.file_type)

        try:
            chunk_count = await self._ingest(document_id, project_id, file_path, file_type)
        except Exception as e:
            message = e.message if isinstance(e, IngestionException) else str(e)
            logger.error(f"Failed to ingest document {document_id}: {message}", exc_info=True)
            async with self.database.session() as session:
                await DocumentRepository(session).update(
                    document_id,
                    status=DocumentStatus.FAILED.value,
                    error_message=message or type(e).__name__,
                )
            raise

        logger.info(f"Successfully ingested document {document_id}: {chunk_count} chunks")

        if self.auto_embed:
            self.tasks.spawn(
                f"embed-document-{document_id}",
                self.embeddings.generate_embeddings_for_document(document_id),
            )
        return chunk_count

    async def _ingest(
        self, document_id: str, project_id: str, file_path: str, file_type: FileType
    ) -> int:
        async with self.database.session() as session:
            project = await ProjectRepository(session).get_by_id(project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            settings = self._resolve_settings(project.settings)

        parsed = await self.parser.parse_file(file_path, file_type)
        if not parsed.text.strip():
            raise ParseError(
                "No text content extracted from file",
                file_path=file_path,
                file_type=file_type.value,
            )
        logger.debug(f"Extracted {len(parsed.text)} characters from {file_path}")

        chunks = self.chunker.chunk_document(
            parsed.text, file_type, settings.chunk_size, settings.chunk_overlap
        )

        async with self.database.session() as session:
            await EmbeddingRepository(session).delete_by_document(document_id)
            chunk_repo = ChunkRepository(session)
            deleted = await chunk_repo.delete_by_document(document_id)
            if deleted:
                logger.info(f"Deleted {deleted} existing chunks for document {document_id}")

            for index, chunk in enumerate(chunks):
                metadata: Dict[str, Any] = {"chunk_size": len(chunk.content)}
                if parsed.page_count is not None:
                    metadata["page_count"] = parsed.page_count
                await chunk_repo.create_chunk(
                    document_id=document_id,
                    chunk_index=index,
                    content=chunk.content,
                    start_char=chunk.start_char,
                    end_char=chunk.end_char,
                    metadata=metadata,
                )

            doc_repo = DocumentRepository(session)
            await doc_repo.update(document_id, status=DocumentStatus.COMPLETED.value, error_message=None)
            await doc_repo.update_metadata(
                document_id,
                chunk_count=len(chunks),
                page_count=parsed.page_count,
                embedding_status=EmbeddingStatus.PENDING,
                embedding_progress=None,
                embedding_error=None,
            )

        return len(chunks)
