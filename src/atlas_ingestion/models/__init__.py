"""Pydantic domain models."""

from atlas_ingestion.models.chunk import Chunk, TextChunk
from atlas_ingestion.models.document import (
    Document,
    DocumentMetadata,
    DocumentStatus,
    EmbeddingProgress,
    EmbeddingStatus,
    FileType,
    ParsedDocument,
    Project,
    ProjectSettings,
)
from atlas_ingestion.models.embedding import (
    EmbeddingBatchResult,
    EmbeddingProgressView,
    EmbeddingRunResult,
    RunOutcome,
    ServiceHealth,
    StoredEmbedding,
)
from atlas_ingestion.models.index import AddResult, IndexStats, SearchResult
from atlas_ingestion.models.progress import ProgressRecord

__all__ = [
    "AddResult",
    "Chunk",
    "Document",
    "DocumentMetadata",
    "DocumentStatus",
    "EmbeddingBatchResult",
    "EmbeddingProgress",
    "EmbeddingProgressView",
    "EmbeddingRunResult",
    "EmbeddingStatus",
    "FileType",
    "IndexStats",
    "ParsedDocument",
    "ProgressRecord",
    "Project",
    "ProjectSettings",
    "RunOutcome",
    "SearchResult",
    "ServiceHealth",
    "StoredEmbedding",
    "TextChunk",
]
