"""Ephemeral embedding progress records."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from atlas_ingestion.models.document import EmbeddingStatus


class ProgressRecord(BaseModel):
    """In-memory embedding progress for one document."""

    total: int = Field(..., ge=0)
    completed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    status: EmbeddingStatus = EmbeddingStatus.PENDING
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.completed + self.failed >= self.total

    @property
    def percentage(self) -> int:
        """Share of chunks embedded successfully, 0-100."""
        if self.total <= 0:
            return 0
        return round(self.completed / self.total * 100)
