"""Atlas ingestion: document chunking, local embeddings and per-project HNSW indexes."""

__version__ = "0.1.0"
