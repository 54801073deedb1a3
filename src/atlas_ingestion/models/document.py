"""Document and project models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    """Lifecycle status of a document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmbeddingStatus(str, Enum):
    """Status of embedding generation for a document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileType(str, Enum):
    """Coarse document type, decides the parser and the chunker."""

    PDF = "pdf"
    CODE = "code"
    MARKDOWN = "markdown"
    TEXT = "text"


class EmbeddingProgress(BaseModel):
    """Embedding counters mirrored into document metadata."""

    total: int = Field(0, ge=0, description="Chunks scheduled for embedding")
    completed: int = Field(0, ge=0, description="Chunks embedded successfully")
    failed: int = Field(0, ge=0, description="Chunks whose embedding failed")


class DocumentMetadata(BaseModel):
    """Typed metadata attached to a document."""

    model_config = ConfigDict(extra="ignore")

    page_count: Optional[int] = Field(None, description="Number of pages (for PDF)")
    chunk_count: Optional[int] = Field(None, description="Chunks produced by the last ingestion")
    embedding_status: Optional[EmbeddingStatus] = Field(None, description="Embedding sub-status")
    embedding_progress: Optional[EmbeddingProgress] = Field(
        None, description="Embedding counters for externally visible progress"
    )
    embedding_error: Optional[str] = Field(None, description="Last embedding error message")


class ProjectSettings(BaseModel):
    """Per-project ingestion settings."""

    model_config = ConfigDict(extra="ignore")

    chunk_size: int = Field(1000, gt=0, description="Chunk size in characters")
    chunk_overlap: int = Field(200, ge=0, description="Overlap between chunks in characters")
    embedding_model: str = Field("nomic-embed-text", description="Embedding model name")
    chat_model: str = Field("llama2", description="Chat model name (used downstream)")


class Project(BaseModel):
    """A project groups documents and owns one vector index."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    watch_path: Optional[str] = Field(None, description="Directory watched for this project")
    settings: Optional[ProjectSettings] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Document(BaseModel):
    """A source file tracked by a project."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    name: str
    file_path: str
    file_type: FileType
    file_size: Optional[int] = None
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ParsedDocument(BaseModel):
    """Text extracted from a source file."""

    text: str = Field(..., description="Extracted text content")
    file_type: FileType = Field(..., description="Detected file type")
    page_count: Optional[int] = Field(None, description="Number of pages (for PDF)")
    encoding: Optional[str] = Field(None, description="Text encoding (for text files)")


def project_from_row(row) -> Project:
    """Build a Project from its database row."""
    return Project(
        id=row.id,
        name=row.name,
        watch_path=row.watch_path,
        settings=ProjectSettings.model_validate(row.settings) if row.settings else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def document_from_row(row) -> Document:
    """Build a Document from its database row, decoding the metadata JSON."""
    return Document(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        file_path=row.file_path,
        file_type=FileType(row.file_type),
        file_size=row.file_size,
        status=DocumentStatus(row.status),
        error_message=row.error_message,
        metadata=DocumentMetadata.model_validate(row.metadata_json or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
