"""In-memory embedding progress tracking."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from atlas_ingestion.config import ProgressSettings
from atlas_ingestion.models.document import EmbeddingStatus
from atlas_ingestion.models.progress import ProgressRecord
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("progress_tracker")


def terminal_status(completed: int, failed: int) -> EmbeddingStatus:
    """Status of a finished run: failed only when nothing succeeded."""
    if completed == 0 and failed > 0:
        return EmbeddingStatus.FAILED
    return EmbeddingStatus.COMPLETED


class ProgressTracker:
    """
    Ephemeral progress records keyed by document ID.

    Records are not persisted. Once a record is finished it stays readable for
    ``cleanup_delay`` seconds and is then dropped.
    """

    def __init__(self, settings: Optional[ProgressSettings] = None):
        self.settings = settings or ProgressSettings()
        self._records: Dict[str, ProgressRecord] = {}
        self._cleanup_handles: Dict[str, asyncio.TimerHandle] = {}

    def start_tracking(self, document_id: str, total: int) -> ProgressRecord:
        """
        Start (or restart) tracking a document.

        Args:
            document_id: Document ID
            total: Number of chunks scheduled for embedding

        Returns:
            The new progress record
        """
        self._cancel_cleanup(document_id)
        record = ProgressRecord(total=total)
        self._records[document_id] = record
        logger.debug(f"Started tracking embedding progress for {document_id} (total={total})")
        return record

    def update_progress(
        self,
        document_id: str,
        completed: Optional[int] = None,
        failed: Optional[int] = None,
        status: Optional[EmbeddingStatus] = None,
    ) -> Optional[ProgressRecord]:
        """
        Update counters and/or status of a tracked document.

        Unknown documents are ignored with a warning. When the counters reach
        the total, the record gets an end time, its terminal status, and a
        cleanup timer.
        """
        record = self._records.get(document_id)
        if record is None:
            logger.warning(f"No progress record for document {document_id}, ignoring update")
            return None

        if completed is not None:
            record.completed = completed
        if failed is not None:
            record.failed = failed
        if status is not None:
            record.status = status

        if record.is_finished and record.status not in (
            EmbeddingStatus.COMPLETED,
            EmbeddingStatus.FAILED,
        ):
            self._finish(document_id, record, terminal_status(record.completed, record.failed))
        elif record.is_finished and record.end_time is None:
            self._finish(document_id, record, record.status)

        return record

    def complete_tracking(
        self, document_id: str, status: Optional[EmbeddingStatus] = None
    ) -> Optional[ProgressRecord]:
        """Force a record into a terminal state, whether or not the counters reached the total."""
        record = self._records.get(document_id)
        if record is None:
            logger.warning(f"No progress record for document {document_id}, ignoring completion")
            return None

        self._finish(
            document_id, record, status or terminal_status(record.completed, record.failed)
        )
        return record

    def _finish(self, document_id: str, record: ProgressRecord, status: EmbeddingStatus) -> None:
        record.status = status
        record.end_time = datetime.now(timezone.utc)
        self._schedule_cleanup(document_id)
        logger.info(
            f"Embedding progress finished for {document_id}: status={status.value}, "
            f"completed={record.completed}, failed={record.failed}, total={record.total}"
        )

    def get_progress(self, document_id: str) -> Optional[ProgressRecord]:
        """Get the current record for a document, if any."""
        return self._records.get(document_id)

    def get_percentage(self, document_id: str) -> int:
        record = self._records.get(document_id)
        return record.percentage if record else 0

    def active_documents(self) -> List[str]:
        """IDs of documents whose records have not finished yet."""
        return [doc_id for doc_id, rec in self._records.items() if rec.end_time is None]

    def _schedule_cleanup(self, document_id: str) -> None:
        self._cancel_cleanup(document_id)
        loop = asyncio.get_running_loop()
        self._cleanup_handles[document_id] = loop.call_later(
            self.settings.cleanup_delay, self._remove, document_id
        )

    def _cancel_cleanup(self, document_id: str) -> None:
        handle = self._cleanup_handles.pop(document_id, None)
        if handle is not None:
            handle.cancel()

    def _remove(self, document_id: str) -> None:
        self._cleanup_handles.pop(document_id, None)
        if self._records.pop(document_id, None) is not None:
            logger.debug(f"Cleaned up progress record for {document_id}")

    def clear(self) -> None:
        """Drop every record and cancel pending cleanups."""
        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()
        self._records.clear()
