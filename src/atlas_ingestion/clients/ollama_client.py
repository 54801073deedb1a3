"""Ollama embedding client."""

from typing import List, Optional, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from atlas_ingestion.config import EmbeddingSettings
from atlas_ingestion.models.embedding import EmbeddingBatchResult, ServiceHealth
from atlas_ingestion.utils.errors import (
    DimensionMismatchError,
    EmbeddingServiceError,
    IngestionException,
    TextValidationError,
)
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("ollama_client")

HEALTH_CHECK_TEXT = "health check"


class OllamaClient:
    """
    HTTP client for a local Ollama embedding endpoint.

    Handles:
    - Local validation of texts before any request
    - One embedding request per text, retried with exponential backoff
    - Dimension validation of every returned vector
    - Per-item failure isolation in batch mode
    """

    def __init__(
        self,
        settings: Optional[EmbeddingSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Ollama client.

        Args:
            settings: Embedding settings
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.settings = settings or EmbeddingSettings()
        self.base_url = self.settings.base_url
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.timeout,
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def dimension(self) -> int:
        return self.settings.dimension

    def _validate_text(self, text: str) -> None:
        if not text or not text.strip():
            raise TextValidationError("Text cannot be empty")
        limit = self.settings.embedding_max_text_chars
        if len(text) > limit:
            raise TextValidationError(
                f"Text too long: {len(text)} characters (max {limit})",
                details={"length": len(text), "max_length": limit},
            )

    async def _request_embedding(self, text: str) -> List[float]:
        """Issue a single embed request and return the first vector."""
        try:
            response = await self._client.post(
                "/api/embed", json={"model": self.model, "input": text}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingServiceError(
                f"Embedding service returned {e.response.status_code}",
                model=self.model,
                details={"status_code": e.response.status_code, "response": e.response.text[:500]},
            ) from e
        except httpx.TimeoutException as e:
            raise EmbeddingServiceError(
                f"Embedding request timed out after {self.settings.timeout}s", model=self.model
            ) from e
        except httpx.RequestError as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}", model=self.model) from e
        except ValueError as e:
            raise EmbeddingServiceError(
                f"Embedding service returned invalid JSON: {e}", model=self.model
            ) from e

        embeddings = payload.get("embeddings") if isinstance(payload, dict) else None
        if not (isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list)):
            raise EmbeddingServiceError("No embedding returned from service", model=self.model)

        vector = embeddings[0]
        if len(vector) != self.dimension:
            raise DimensionMismatchError(
                expected=self.dimension,
                actual=len(vector),
                details={"model": self.model},
            )
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingServiceError(
                f"Embedding service returned a non-numeric vector: {e}", model=self.model
            ) from e

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for one text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector of the configured dimension

        Raises:
            TextValidationError: If the text is empty or too long (no request made)
            DimensionMismatchError: If the service returns a vector of the wrong length
            EmbeddingServiceError: If every attempt failed
        """
        self._validate_text(text)

        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.settings.embedding_max_attempts),
            wait=wait_exponential(multiplier=self.settings.embedding_initial_backoff),
            retry=retry_if_exception_type(EmbeddingServiceError),
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying embedding request (attempt {attempt.retry_state.attempt_number})"
                    )
                return await self._request_embedding(text)
        # unreachable due to reraise=True, but keeps type checkers happy
        raise EmbeddingServiceError("Embedding retries exhausted", model=self.model)

    async def embed_batch(self, texts: Sequence[str]) -> EmbeddingBatchResult:
        """
        Embed several texts, one request each, isolating failures per item.

        Returns:
            EmbeddingBatchResult aligned with ``texts``; failed positions hold None
        """
        embeddings: List[Optional[List[float]]] = []
        failed_indices: List[int] = []

        for index, text in enumerate(texts):
            try:
                embeddings.append(await self.embed(text))
            except IngestionException as e:
                logger.error(f"Failed to embed text at index {index}: {e.message}")
                embeddings.append(None)
                failed_indices.append(index)

        return EmbeddingBatchResult(embeddings=embeddings, failed_indices=failed_indices)

    async def health_check(self) -> ServiceHealth:
        """Issue one test embedding and report whether the service is usable. Never raises."""
        try:
            await self.embed(HEALTH_CHECK_TEXT)
        except DimensionMismatchError as e:
            message = (
                f"Dimension mismatch: model returned {e.actual}, configured {e.expected}"
            )
            healthy = False
        except IngestionException as e:
            message = f"Cannot reach embedding service at {self.base_url}: {e.message}"
            healthy = False
        except Exception as e:
            logger.error(f"Unexpected error during embedding health check: {e}", exc_info=True)
            message = f"Unexpected error: {e}"
            healthy = False
        else:
            message = f"Model {self.model} ready (dimension {self.dimension})"
            healthy = True

        return ServiceHealth(service="ollama", model=self.model, healthy=healthy, message=message)

    async def close(self) -> None:
        """Release pooled connections."""
        await self._client.aclose()
