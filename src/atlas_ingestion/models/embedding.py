"""Embedding models for document ingestion."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from atlas_ingestion.models.progress import ProgressRecord


class StoredEmbedding(BaseModel):
    """An embedding row decoded from the relational store."""

    chunk_id: str = Field(..., description="Owning chunk")
    model: str = Field(..., description="Embedding model used")
    dimension: int = Field(..., gt=0, description="Vector length")
    vector: List[float] = Field(..., description="Embedding vector")


class EmbeddingBatchResult(BaseModel):
    """Per-position outcome of a batch embedding call."""

    embeddings: List[Optional[List[float]]] = Field(
        default_factory=list, description="Vectors aligned with the input texts; None where it failed"
    )
    failed_indices: List[int] = Field(default_factory=list, description="Input positions that failed")

    @property
    def succeeded(self) -> int:
        return sum(1 for e in self.embeddings if e is not None)


class ServiceHealth(BaseModel):
    """Result of an embedding service health check."""

    service: str
    model: str
    healthy: bool
    message: str


class RunOutcome(str, Enum):
    """How an embedding run ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    NOOP = "noop"
    ALREADY_IN_PROGRESS = "already_in_progress"


class EmbeddingRunResult(BaseModel):
    """Summary of one embedding generation run."""

    outcome: RunOutcome
    total: int = 0
    completed: int = 0
    failed: int = 0


class EmbeddingProgressView(BaseModel):
    """Progress record plus its derived percentage."""

    progress: Optional[ProgressRecord] = None
    percentage: int = 0
