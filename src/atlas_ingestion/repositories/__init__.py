"""Repository layer for data access."""

from atlas_ingestion.repositories.base import BaseRepository
from atlas_ingestion.repositories.chunk_repository import ChunkRepository
from atlas_ingestion.repositories.document_repository import DocumentRepository
from atlas_ingestion.repositories.embedding_repository import EmbeddingRepository
from atlas_ingestion.repositories.project_repository import ProjectRepository

__all__ = [
    "BaseRepository",
    "ChunkRepository",
    "DocumentRepository",
    "EmbeddingRepository",
    "ProjectRepository",
]
