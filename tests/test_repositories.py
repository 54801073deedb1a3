import pytest

from atlas_ingestion.models.document import DocumentMetadata, EmbeddingProgress, EmbeddingStatus
from atlas_ingestion.repositories import (
    ChunkRepository,
    DocumentRepository,
    EmbeddingRepository,
    ProjectRepository,
)
from atlas_ingestion.utils.errors import DatabaseError, NotFoundError


async def seed(database, chunk_count: int = 3):
    """One project, one document and ``chunk_count`` chunks. Returns (project_id, document_id, chunk_ids)."""
    async with database.session() as session:
        project = await ProjectRepository(session).create_project(name="repo-test")
        document = await DocumentRepository(session).create(
            project_id=project.id,
            name="a.txt",
            file_path="/data/a.txt",
            file_type="text",
            metadata_json={},
        )
        chunk_repo = ChunkRepository(session)
        chunk_ids = []
        for i in range(chunk_count):
            chunk = await chunk_repo.create_chunk(
                document_id=document.id,
                chunk_index=i,
                content=f"chunk {i}",
                start_char=i * 10,
                end_char=i * 10 + 7,
                metadata={"chunk_size": 7},
            )
            chunk_ids.append(chunk.id)
        return project.id, document.id, chunk_ids


class TestProjectRepository:
    async def test_create_with_explicit_id_and_lookup_by_name(self, database):
        async with database.session() as session:
            repo = ProjectRepository(session)
            project = await repo.create_project(name="alpha", id="fixed-id", settings={"chunk_size": 10})

        async with database.session() as session:
            repo = ProjectRepository(session)
            found = await repo.get_by_name("alpha")
            assert found.id == "fixed-id" == project.id
            assert found.settings == {"chunk_size": 10}
            assert await repo.get_by_name("beta") is None


class TestDocumentRepository:
    async def test_lookup_by_file_path_is_scoped_to_project(self, database):
        project_id, document_id, _ = await seed(database, 0)

        async with database.session() as session:
            repo = DocumentRepository(session)
            assert (await repo.get_by_file_path(project_id, "/data/a.txt")).id == document_id
            assert await repo.get_by_file_path("other-project", "/data/a.txt") is None
            assert [d.id for d in await repo.get_by_project(project_id)] == [document_id]

    async def test_file_path_is_unique_per_project(self, database):
        project_id, _, _ = await seed(database, 0)

        with pytest.raises(DatabaseError):
            async with database.session() as session:
                await DocumentRepository(session).create(
                    project_id=project_id,
                    name="a.txt",
                    file_path="/data/a.txt",
                    file_type="text",
                    metadata_json={},
                )

    async def test_update_metadata_merges_fields(self, database):
        _, document_id, _ = await seed(database, 0)

        async with database.session() as session:
            repo = DocumentRepository(session)
            await repo.update_metadata(document_id, chunk_count=4, page_count=2)
            await repo.update_metadata(
                document_id,
                embedding_status=EmbeddingStatus.PROCESSING,
                embedding_progress=EmbeddingProgress(total=4, completed=1),
            )

        async with database.session() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
            metadata = DocumentMetadata.model_validate(document.metadata_json)

        assert metadata.chunk_count == 4
        assert metadata.page_count == 2
        assert metadata.embedding_status == EmbeddingStatus.PROCESSING
        assert metadata.embedding_progress.completed == 1
        assert document.metadata_json["embedding_status"] == "processing"

    async def test_update_metadata_clears_none_fields(self, database):
        _, document_id, _ = await seed(database, 0)

        async with database.session() as session:
            repo = DocumentRepository(session)
            await repo.update_metadata(document_id, embedding_error="boom")
            await repo.update_metadata(document_id, embedding_error=None)
            document = await repo.get_by_id(document_id)

        assert "embedding_error" not in document.metadata_json

    async def test_update_metadata_unknown_document(self, database):
        async with database.session() as session:
            with pytest.raises(NotFoundError):
                await DocumentRepository(session).update_metadata("missing", chunk_count=1)


class TestChunkAndEmbeddingRepositories:
    async def test_chunks_without_embeddings(self, database):
        project_id, document_id, chunk_ids = await seed(database)

        async with database.session() as session:
            await EmbeddingRepository(session).create_embedding(chunk_ids[1], "m", [1.0, 2.0, 3.0, 4.0])

        async with database.session() as session:
            repo = ChunkRepository(session)
            pending = await repo.get_without_embeddings(document_id)
            by_project = await repo.get_without_embeddings_by_project(project_id)
            documents = await repo.get_document_ids_without_embeddings(project_id)

        assert [c.id for c in pending] == [chunk_ids[0], chunk_ids[2]]
        assert [c.id for c in by_project] == [chunk_ids[0], chunk_ids[2]]
        assert documents == [document_id]

    async def test_embeddings_decode_and_skip_corrupt_rows(self, database):
        project_id, _, chunk_ids = await seed(database)

        async with database.session() as session:
            repo = EmbeddingRepository(session)
            good = await repo.create_embedding(chunk_ids[0], "m", [0.5, 0.25, 0.0, 1.0])
            bad = await repo.create_embedding(chunk_ids[1], "m", [1.0, 1.0, 1.0, 1.0])
            assert good.dimension == 4
            await repo.update(bad.id, vector=b"\x00\x01\x02")

        async with database.session() as session:
            stored = await EmbeddingRepository(session).get_all_by_project(project_id)

        assert [e.chunk_id for e in stored] == [chunk_ids[0]]
        assert stored[0].vector == pytest.approx([0.5, 0.25, 0.0, 1.0])

    async def test_delete_by_document(self, database):
        _, document_id, chunk_ids = await seed(database)

        async with database.session() as session:
            await EmbeddingRepository(session).create_embedding(chunk_ids[0], "m", [1.0, 0.0, 0.0, 0.0])

        async with database.session() as session:
            assert await EmbeddingRepository(session).delete_by_document(document_id) == 1
            assert await ChunkRepository(session).delete_by_document(document_id) == 3
            assert await ChunkRepository(session).list_by_document(document_id) == []
