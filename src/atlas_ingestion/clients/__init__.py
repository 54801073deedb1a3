"""External service clients."""

from atlas_ingestion.clients.ollama_client import OllamaClient

__all__ = ["OllamaClient"]
