"""Configuration management using pydantic-settings."""

import logging
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingSettings(BaseSettings):
    """Local embedding service (Ollama) configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the embedding service. Env var: OLLAMA_BASE_URL",
    )
    embedding_model: str = Field(
        default="nomic-embed-text",
        description="Embedding model name. Env var: EMBEDDING_MODEL",
    )
    embedding_dimension: int = Field(
        default=768,
        gt=0,
        description="Expected embedding dimension, validated on every response. Env var: EMBEDDING_DIMENSION",
    )
    embedding_batch_size: int = Field(
        default=15,
        gt=0,
        description="Texts per embedding batch. Env var: EMBEDDING_BATCH_SIZE",
    )
    embedding_max_text_chars: int = Field(
        default=8192 * 4,
        gt=0,
        description="Maximum characters per text (~8192 tokens). Env var: EMBEDDING_MAX_TEXT_CHARS",
    )
    embedding_timeout: float = Field(
        default=60.0,
        description="Embedding request timeout in seconds. Env var: EMBEDDING_TIMEOUT",
    )
    embedding_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per text before giving up. Env var: EMBEDDING_MAX_ATTEMPTS",
    )
    embedding_initial_backoff: float = Field(
        default=1.0,
        ge=0.0,
        description="First retry delay in seconds, doubled on each retry. Env var: EMBEDDING_INITIAL_BACKOFF",
    )

    @property
    def base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.ollama_base_url.rstrip("/")

    @property
    def model(self) -> str:
        return self.embedding_model

    @property
    def dimension(self) -> int:
        return self.embedding_dimension

    @property
    def batch_size(self) -> int:
        return self.embedding_batch_size

    @property
    def timeout(self) -> float:
        return self.embedding_timeout


class ChunkingSettings(BaseSettings):
    """Default text chunking configuration (project settings take precedence)."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    chunk_size: int = Field(
        default=1000, description="Chunk size in characters. Env var: CHUNK_SIZE"
    )
    chunk_overlap: int = Field(
        default=200, description="Overlap between chunks in characters. Env var: CHUNK_OVERLAP"
    )

    @model_validator(mode="after")
    def validate_overlap(self) -> "ChunkingSettings":
        """Reject overlap values that would stall the sliding window."""
        if self.chunk_size <= 0:
            raise ValueError("CHUNK_SIZE must be greater than 0")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("CHUNK_OVERLAP must be between 0 and CHUNK_SIZE")
        return self


class VectorIndexSettings(BaseSettings):
    """HNSW vector index configuration."""

    model_config = SettingsConfigDict(env_prefix="VECTOR_INDEX_", case_sensitive=False)

    path: str = Field(
        default="./data/vector_index",
        description="Directory holding per-project index files. Env var: VECTOR_INDEX_PATH",
    )
    space: str = Field(default="cosine", description="Distance space. Env var: VECTOR_INDEX_SPACE")
    initial_max_elements: int = Field(
        default=10000,
        gt=0,
        description="Initial index capacity. Env var: VECTOR_INDEX_INITIAL_MAX_ELEMENTS",
    )
    m: int = Field(default=16, gt=0, description="Graph degree (M). Env var: VECTOR_INDEX_M")
    ef_construction: int = Field(
        default=200,
        gt=0,
        description="Construction breadth. Env var: VECTOR_INDEX_EF_CONSTRUCTION",
    )
    ef_search: int = Field(
        default=50, gt=0, description="Query breadth. Env var: VECTOR_INDEX_EF_SEARCH"
    )
    resize_threshold: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fill ratio that triggers a resize. Env var: VECTOR_INDEX_RESIZE_THRESHOLD",
    )
    resize_headroom: int = Field(
        default=1000,
        ge=0,
        description="Extra slots added on resize beyond the pending batch. Env var: VECTOR_INDEX_RESIZE_HEADROOM",
    )

    @field_validator("space")
    @classmethod
    def validate_space(cls, v: str) -> str:
        """Validate distance space."""
        valid_spaces = ["cosine", "l2", "ip"]
        if v.lower() not in valid_spaces:
            raise ValueError(f"Vector index space must be one of {valid_spaces}")
        return v.lower()


class WatcherSettings(BaseSettings):
    """Directory watcher configuration."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_", case_sensitive=False)

    debounce_delay: float = Field(
        default=1.0, ge=0.0, description="Quiet period per file in seconds. Env var: WATCHER_DEBOUNCE_DELAY"
    )
    stability_threshold: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds a file must stay unchanged before it is processed. Env var: WATCHER_STABILITY_THRESHOLD",
    )
    poll_interval: float = Field(
        default=0.1, gt=0.0, description="Settle polling interval in seconds. Env var: WATCHER_POLL_INTERVAL"
    )
    max_depth: int = Field(
        default=10, ge=0, description="Maximum directory depth below the root. Env var: WATCHER_MAX_DEPTH"
    )
    scan_existing: bool = Field(
        default=True,
        description="Feed files already present at start through the add path. Env var: WATCHER_SCAN_EXISTING",
    )


class ProgressSettings(BaseSettings):
    """Embedding progress tracking configuration."""

    model_config = SettingsConfigDict(env_prefix="PROGRESS_", case_sensitive=False)

    cleanup_delay: float = Field(
        default=300.0,
        ge=0.0,
        description="Seconds a finished record stays readable. Env var: PROGRESS_CLEANUP_DELAY",
    )


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)

    url: str = Field(
        default="sqlite+aiosqlite:///./data/atlas.db",
        description="SQLAlchemy async database URL. Env var: DATABASE_URL",
    )
    echo: bool = Field(default=False, description="Log SQL statements. Env var: DATABASE_ECHO")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="atlas-ingestion", description="Application name. Env var: APP_NAME"
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment. Env var: ENVIRONMENT",
    )
    debug: bool = Field(default=False, description="Enable debug mode. Env var: DEBUG")
    log_level: str = Field(default="INFO", description="Logging level. Env var: LOG_LEVEL")

    # Sub-settings
    embedding: Optional[EmbeddingSettings] = None
    chunking: Optional[ChunkingSettings] = None
    vector_index: Optional[VectorIndexSettings] = None
    watcher: Optional[WatcherSettings] = None
    progress: Optional[ProgressSettings] = None
    database: Optional[DatabaseSettings] = None

    @model_validator(mode="after")
    def initialize_nested_settings(self) -> "Settings":
        """Initialize nested settings to ensure they read from environment."""
        if self.embedding is None:
            self.embedding = EmbeddingSettings()
        if self.chunking is None:
            self.chunking = ChunkingSettings()
        if self.vector_index is None:
            self.vector_index = VectorIndexSettings()
        if self.watcher is None:
            self.watcher = WatcherSettings()
        if self.progress is None:
            self.progress = ProgressSettings()
        if self.database is None:
            self.database = DatabaseSettings()
        return self

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Parse environment from string."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def validate_production_settings(self) -> None:
        """Validate that production settings are safe."""
        if self.is_production and self.debug:
            raise ValueError("DEBUG must be False in production")
        if self.is_production and self.database.echo:
            raise ValueError("DATABASE_ECHO must be False in production")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        try:
            _settings.validate_production_settings()
        except ValueError as e:
            logging.error(f"Configuration validation failed: {e}")
            if _settings.is_production:
                raise  # Fail fast in production
    return _settings
