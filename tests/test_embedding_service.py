import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from atlas_ingestion.models.document import EmbeddingStatus
from atlas_ingestion.models.embedding import RunOutcome
from atlas_ingestion.utils.errors import NotFoundError

from conftest import fake_vector, write_words


@pytest.fixture
async def ingested(service, project, docs_dir):
    """A document with three batches' worth of chunks and no embeddings yet."""
    service.ingestion.auto_embed = False
    path = write_words(docs_dir / "long.txt", 400)
    document = await service.create_document(project.id, str(path))
    await service.ingest_document(document.id)
    return document


class TestGenerateForDocument:
    async def test_one_failing_chunk_does_not_abort_the_run(self, service, ingested, fake_ollama):
        chunks = await service.list_chunks(ingested.id)
        assert len(chunks) > 2 * service.settings.embedding.batch_size
        fake_ollama.failing_texts.add(chunks[7].content)

        result = await service.generate_embeddings_for_document(ingested.id)

        assert result.outcome == RunOutcome.COMPLETED
        assert result.total == len(chunks)
        assert result.completed == len(chunks) - 1
        assert result.failed == 1

        stored = await service.get_document(ingested.id)
        assert stored.metadata.embedding_status == EmbeddingStatus.COMPLETED
        assert stored.metadata.embedding_progress.completed == len(chunks) - 1
        assert stored.metadata.embedding_progress.failed == 1
        assert stored.metadata.embedding_error is None

    async def test_first_batch_of_fifteen_splits_fourteen_one(self, service, ingested, fake_ollama):
        chunks = await service.list_chunks(ingested.id)
        fake_ollama.failing_texts.add(chunks[3].content)
        batches = []
        original = service.client.embed_batch

        async def recording_embed_batch(texts):
            result = await original(texts)
            batches.append((len(texts), result.succeeded))
            return result

        service.client.embed_batch = recording_embed_batch
        await service.generate_embeddings_for_document(ingested.id)

        assert batches[0] == (15, 14)
        assert all(size == succeeded for size, succeeded in batches[1:])
        assert sum(size for size, _ in batches) == len(chunks)

    async def test_progress_is_tracked(self, service, ingested):
        result = await service.generate_embeddings_for_document(ingested.id)

        view = service.get_embedding_progress(ingested.id)
        assert view.percentage == 100
        assert view.progress.status == EmbeddingStatus.COMPLETED
        assert view.progress.completed == result.completed
        assert view.progress.end_time is not None

    async def test_unknown_progress_is_empty(self, service):
        view = service.get_embedding_progress("nope")

        assert view.progress is None
        assert view.percentage == 0

    async def test_second_run_is_noop(self, service, ingested, fake_ollama):
        await service.generate_embeddings_for_document(ingested.id)
        requests = len(fake_ollama.requests)

        result = await service.generate_embeddings_for_document(ingested.id)

        assert result.outcome == RunOutcome.NOOP
        assert len(fake_ollama.requests) == requests

    async def test_failed_chunks_are_retried_by_next_run(self, service, ingested, fake_ollama):
        chunks = await service.list_chunks(ingested.id)
        fake_ollama.failing_texts.add(chunks[0].content)
        await service.generate_embeddings_for_document(ingested.id)

        fake_ollama.failing_texts.clear()
        result = await service.generate_embeddings_for_document(ingested.id)

        assert result.total == 1
        assert result.completed == 1

    async def test_concurrent_call_is_a_noop(self, service, ingested):
        first = asyncio.create_task(service.generate_embeddings_for_document(ingested.id))
        await asyncio.sleep(0)

        assert service.is_document_embedding_in_progress(ingested.id) is True
        second = await service.generate_embeddings_for_document(ingested.id)
        assert second.outcome == RunOutcome.ALREADY_IN_PROGRESS

        result = await first
        assert result.outcome == RunOutcome.COMPLETED
        assert service.is_document_embedding_in_progress(ingested.id) is False

    async def test_guard_released_after_error(self, service):
        with pytest.raises(NotFoundError):
            await service.generate_embeddings_for_document("missing")

        assert service.is_document_embedding_in_progress("missing") is False

    async def test_all_chunks_failing_marks_run_failed(self, service, ingested, fake_ollama):
        fake_ollama.should_fail = lambda text: True

        result = await service.generate_embeddings_for_document(ingested.id)

        assert result.outcome == RunOutcome.FAILED
        assert result.completed == 0
        stored = await service.get_document(ingested.id)
        assert stored.metadata.embedding_status == EmbeddingStatus.FAILED
        assert stored.metadata.embedding_error
        assert service.get_embedding_progress(ingested.id).progress.status == EmbeddingStatus.FAILED

    async def test_batch_exception_fails_only_that_batch(self, service, ingested):
        chunks = await service.list_chunks(ingested.id)
        original = service.client.embed_batch
        calls = []

        async def flaky_embed_batch(texts):
            calls.append(len(texts))
            if len(calls) == 2:
                raise RuntimeError("connection reset mid-batch")
            return await original(texts)

        with patch.object(
            service.client, "embed_batch", AsyncMock(side_effect=flaky_embed_batch)
        ) as mocked:
            result = await service.generate_embeddings_for_document(ingested.id)

        assert mocked.await_count == len(calls) >= 3
        assert result.failed == calls[1]
        assert result.completed == len(chunks) - calls[1]
        assert result.outcome == RunOutcome.COMPLETED

    async def test_vectors_are_searchable(self, service, ingested, project):
        await service.generate_embeddings_for_document(ingested.id)
        chunk = (await service.list_chunks(ingested.id))[5]

        results = await service.search(project.id, fake_vector(chunk.content), k=1)

        assert len(results) == 1
        assert results[0].distance == pytest.approx(0.0, abs=1e-5)
        assert service.vector_index.index_path(project.id).exists()


class TestGenerateForProject:
    async def test_backfills_every_document(self, service, project, docs_dir):
        service.ingestion.auto_embed = False
        totals = 0
        for name in ("a.txt", "b.md"):
            path = write_words(docs_dir / name, 80)
            document = await service.create_document(project.id, str(path))
            totals += await service.ingest_document(document.id)

        assert len(await service.embeddings.get_documents_with_pending_embeddings(project.id)) == 2

        result = await service.generate_embeddings_for_project(project.id)

        assert result.outcome == RunOutcome.COMPLETED
        assert result.total == result.completed == totals
        assert await service.embeddings.get_documents_with_pending_embeddings(project.id) == []
        stats = await service.get_project_index_stats(project.id)
        assert stats.element_count == totals

    async def test_nothing_pending(self, service, project):
        result = await service.generate_embeddings_for_project(project.id)

        assert result.outcome == RunOutcome.NOOP

    async def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            await service.generate_embeddings_for_project("missing")


class TestRebuildFromDatabase:
    async def test_rebuild_restores_index(self, service, ingested, project):
        result = await service.generate_embeddings_for_document(ingested.id)
        await service.vector_index.delete_project_index(project.id)

        count = await service.rebuild_vector_index_from_db(project.id)

        assert count == result.completed
        chunk = (await service.list_chunks(ingested.id))[0]
        nearest = await service.search(project.id, fake_vector(chunk.content), k=1)
        assert nearest[0].distance == pytest.approx(0.0, abs=1e-5)

    async def test_rebuild_without_embeddings(self, service, project):
        assert await service.rebuild_vector_index_from_db(project.id) == 0

    async def test_rebuild_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            await service.rebuild_vector_index_from_db("missing")
