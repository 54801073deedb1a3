"""Embedding repository for data access operations."""

from typing import List, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas_ingestion.database.models import Chunk, Document, Embedding
from atlas_ingestion.models.embedding import StoredEmbedding
from atlas_ingestion.repositories.base import BaseRepository
from atlas_ingestion.utils.errors import DatabaseError
from atlas_ingestion.utils.logging import get_logger
from atlas_ingestion.utils.vectors import decode_vector, encode_vector

logger = get_logger("repositories.embedding")


class EmbeddingRepository(BaseRepository[Embedding]):
    """Repository for embedding data access operations."""

    def __init__(self, session: AsyncSession):
        """Initialize embedding repository."""
        super().__init__(Embedding, session)

    async def create_embedding(self, chunk_id: str, model: str, vector: Sequence[float]) -> Embedding:
        """
        Store a chunk's embedding as packed float32 bytes.

        Args:
            chunk_id: Owning chunk ID
            model: Embedding model name
            vector: Embedding vector

        Returns:
            Created Embedding instance
        """
        return await self.create(
            chunk_id=chunk_id,
            model=model,
            dimension=len(vector),
            vector=encode_vector(vector),
        )

    async def delete_by_document(self, document_id: str) -> int:
        """
        Delete the embeddings of every chunk of a document.

        Returns:
            Number of embeddings deleted
        """
        try:
            chunk_ids = select(Chunk.id).where(Chunk.document_id == document_id)
            result = await self.session.execute(
                delete(Embedding).where(Embedding.chunk_id.in_(chunk_ids))
            )
            await self.session.flush()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting embeddings for document {document_id}: {e}")
            raise DatabaseError("Failed to delete embeddings") from e

    async def get_all_by_project(self, project_id: str) -> List[StoredEmbedding]:
        """
        Load and decode every embedding of a project.

        Rows whose blob does not match their recorded dimension are skipped
        with a warning.
        """
        try:
            result = await self.session.execute(
                select(Embedding)
                .join(Chunk, Chunk.id == Embedding.chunk_id)
                .join(Document, Document.id == Chunk.document_id)
                .where(Document.project_id == project_id)
                .order_by(Document.created_at, Chunk.document_id, Chunk.chunk_index)
            )
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error loading embeddings for project {project_id}: {e}")
            raise DatabaseError("Failed to retrieve embeddings") from e

        embeddings: List[StoredEmbedding] = []
        for row in rows:
            try:
                vector = decode_vector(row.vector, row.dimension)
            except ValueError as e:
                logger.warning(f"Skipping corrupt embedding for chunk {row.chunk_id}: {e}")
                continue
            embeddings.append(
                StoredEmbedding(
                    chunk_id=row.chunk_id,
                    model=row.model,
                    dimension=row.dimension,
                    vector=vector,
                )
            )
        return embeddings
