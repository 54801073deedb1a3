"""Document repository for data access operations."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas_ingestion.database.models import Document
from atlas_ingestion.models.document import DocumentMetadata
from atlas_ingestion.repositories.base import BaseRepository
from atlas_ingestion.utils.errors import DatabaseError, NotFoundError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("repositories.document")


class DocumentRepository(BaseRepository[Document]):
    """Repository for document data access operations."""

    def __init__(self, session: AsyncSession):
        """Initialize document repository."""
        super().__init__(Document, session)

    async def get_by_project(self, project_id: str) -> List[Document]:
        """
        Get all documents of a project, oldest first.

        Args:
            project_id: Project ID

        Returns:
            List of Document instances
        """
        try:
            result = await self.session.execute(
                select(Document)
                .where(Document.project_id == project_id)
                .order_by(Document.created_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting documents for project {project_id}: {e}")
            raise DatabaseError("Failed to retrieve documents") from e

    async def get_by_file_path(self, project_id: str, file_path: str) -> Optional[Document]:
        """
        Find the document that tracks a file path within a project.

        Args:
            project_id: Project ID
            file_path: Absolute file path

        Returns:
            Document instance or None
        """
        try:
            result = await self.session.execute(
                select(Document)
                .where(Document.project_id == project_id)
                .where(Document.file_path == file_path)
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error looking up document {file_path} in project {project_id}: {e}")
            raise DatabaseError("Failed to retrieve document") from e

    async def update_metadata(self, id: str, **fields) -> Document:
        """
        Merge named fields into a document's metadata.

        Args:
            id: Document ID
            **fields: DocumentMetadata fields to set

        Returns:
            Updated Document instance

        Raises:
            NotFoundError: If the document does not exist
        """
        document = await self.get_by_id(id)
        if document is None:
            raise NotFoundError("Document", id)

        current = DocumentMetadata.model_validate(document.metadata_json or {})
        merged = DocumentMetadata.model_validate({**current.model_dump(), **fields})
        # Reassign so the JSON column is marked dirty
        document.metadata_json = merged.model_dump(mode="json", exclude_none=True)
        try:
            await self.session.flush()
            await self.session.refresh(document)
            return document
        except SQLAlchemyError as e:
            logger.error(f"Error updating metadata for document {id}: {e}")
            raise DatabaseError("Failed to update document metadata") from e
