"""Chunk repository for data access operations."""

from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas_ingestion.database.models import Chunk, Document, Embedding
from atlas_ingestion.repositories.base import BaseRepository
from atlas_ingestion.utils.errors import DatabaseError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("repositories.chunk")


class ChunkRepository(BaseRepository[Chunk]):
    """Repository for chunk data access operations."""

    def __init__(self, session: AsyncSession):
        """Initialize chunk repository."""
        super().__init__(Chunk, session)

    async def create_chunk(
        self,
        document_id: str,
        chunk_index: int,
        content: str,
        start_char: Optional[int] = None,
        end_char: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Chunk:
        """Create one chunk row."""
        return await self.create(
            document_id=document_id,
            chunk_index=chunk_index,
            content=content,
            start_char=start_char,
            end_char=end_char,
            metadata_json=metadata,
        )

    async def list_by_document(self, document_id: str) -> List[Chunk]:
        """Get a document's chunks in index order."""
        try:
            result = await self.session.execute(
                select(Chunk).where(Chunk.document_id == document_id).order_by(Chunk.chunk_index)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing chunks for document {document_id}: {e}")
            raise DatabaseError("Failed to retrieve chunks") from e

    async def delete_by_document(self, document_id: str) -> int:
        """
        Delete every chunk of a document.

        Returns:
            Number of chunks deleted
        """
        try:
            result = await self.session.execute(delete(Chunk).where(Chunk.document_id == document_id))
            await self.session.flush()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting chunks for document {document_id}: {e}")
            raise DatabaseError("Failed to delete chunks") from e

    async def get_without_embeddings(self, document_id: str) -> List[Chunk]:
        """Get a document's chunks that have no embedding yet, in index order."""
        try:
            result = await self.session.execute(
                select(Chunk)
                .outerjoin(Embedding, Embedding.chunk_id == Chunk.id)
                .where(Chunk.document_id == document_id)
                .where(Embedding.id.is_(None))
                .order_by(Chunk.chunk_index)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting unembedded chunks for document {document_id}: {e}")
            raise DatabaseError("Failed to retrieve chunks") from e

    async def get_without_embeddings_by_project(self, project_id: str) -> List[Chunk]:
        """Get every chunk of a project that has no embedding yet."""
        try:
            result = await self.session.execute(
                select(Chunk)
                .join(Document, Document.id == Chunk.document_id)
                .outerjoin(Embedding, Embedding.chunk_id == Chunk.id)
                .where(Document.project_id == project_id)
                .where(Embedding.id.is_(None))
                .order_by(Document.created_at, Chunk.document_id, Chunk.chunk_index)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting unembedded chunks for project {project_id}: {e}")
            raise DatabaseError("Failed to retrieve chunks") from e

    async def get_document_ids_without_embeddings(self, project_id: str) -> List[str]:
        """Get IDs of a project's documents that still have unembedded chunks."""
        try:
            result = await self.session.execute(
                select(Chunk.document_id)
                .join(Document, Document.id == Chunk.document_id)
                .outerjoin(Embedding, Embedding.chunk_id == Chunk.id)
                .where(Document.project_id == project_id)
                .where(Embedding.id.is_(None))
                .distinct()
            )
            return sorted(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting pending documents for project {project_id}: {e}")
            raise DatabaseError("Failed to retrieve documents") from e
