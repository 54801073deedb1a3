"""Chunk models for document ingestion."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextChunk(BaseModel):
    """A window of text produced by the chunker, before persistence."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(..., description="Chunk text content")
    start_char: int = Field(..., ge=0, description="Offset of the first character in the source text")
    end_char: int = Field(..., ge=0, description="Offset one past the last character")

    @property
    def length(self) -> int:
        return self.end_char - self.start_char


class Chunk(BaseModel):
    """A persisted chunk belonging to exactly one document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    document_id: str
    chunk_index: int = Field(..., ge=0, description="0-based index of this chunk within the document")
    content: str
    start_char: Optional[int] = None
    end_char: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


def chunk_from_row(row) -> Chunk:
    """Build a Chunk from its database row."""
    return Chunk(
        id=row.id,
        document_id=row.document_id,
        chunk_index=row.chunk_index,
        content=row.content,
        start_char=row.start_char,
        end_char=row.end_char,
        metadata=row.metadata_json or {},
        created_at=row.created_at,
    )
