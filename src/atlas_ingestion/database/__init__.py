"""Relational persistence for projects, documents, chunks and embeddings."""

from atlas_ingestion.database.connection import Database
from atlas_ingestion.database.models import Base, Chunk, Document, Embedding, Project

__all__ = ["Base", "Chunk", "Database", "Document", "Embedding", "Project"]
