import asyncio
import json
import math

import pytest

from atlas_ingestion.config import VectorIndexSettings
from atlas_ingestion.services.vector_store_service import VectorIndexManager
from atlas_ingestion.utils.errors import (
    ConcurrencyConflictError,
    DimensionMismatchError,
    IndexIOError,
)

DIM = 4


def unit_vectors(count: int):
    """Distinct, well-separated vectors."""
    items = []
    for i in range(count):
        angle = 2 * math.pi * i / count
        items.append((f"chunk-{i}", [math.cos(angle), math.sin(angle), 0.1 * (i % 3), 1.0]))
    return items


@pytest.fixture
def index_settings(tmp_path):
    return VectorIndexSettings(path=str(tmp_path / "index"), initial_max_elements=16, resize_headroom=4)


@pytest.fixture
def manager(index_settings):
    return VectorIndexManager(index_settings, dimension=DIM)


class TestSearch:
    async def test_empty_index_returns_nothing(self, manager):
        for k in (0, 1, 5, 100):
            assert await manager.search("p1", [1.0, 0.0, 0.0, 0.0], k) == []

    async def test_nearest_neighbour_is_identical_vector(self, manager):
        items = unit_vectors(10)
        assert await manager.rebuild_project_index("p1", items) == 10

        chunk_id, vector = items[3]
        results = await manager.search("p1", vector, k=3)

        assert results[0].chunk_id == chunk_id
        assert results[0].distance == pytest.approx(0.0, abs=1e-5)
        assert [r.distance for r in results] == sorted(r.distance for r in results)

    async def test_k_is_clamped_to_element_count(self, manager):
        await manager.rebuild_project_index("p1", unit_vectors(3))

        results = await manager.search("p1", unit_vectors(3)[0][1], k=50)

        assert len(results) == 3

    async def test_wrong_query_dimension_raises(self, manager):
        with pytest.raises(DimensionMismatchError):
            await manager.search("p1", [1.0, 2.0], k=1)


class TestAdd:
    async def test_add_is_idempotent_per_chunk(self, manager):
        items = unit_vectors(5)

        first = await manager.add_embeddings_batch("p1", items)
        second = await manager.add_embeddings_batch("p1", items[:2] + unit_vectors(6)[5:])

        assert first.added_count == 5
        assert second.added_count == 1
        assert second.skipped_count == 2
        stats = await manager.get_project_index_stats("p1")
        assert stats.element_count == 6

    async def test_add_single(self, manager):
        assert await manager.add_embedding("p1", "a", [1.0, 0.0, 0.0, 0.0]) is True
        assert await manager.add_embedding("p1", "a", [1.0, 0.0, 0.0, 0.0]) is False

    async def test_wrong_dimension_adds_nothing(self, manager):
        items = unit_vectors(2) + [("bad", [1.0, 2.0, 3.0])]

        with pytest.raises(DimensionMismatchError):
            await manager.add_embeddings_batch("p1", items)

        stats = await manager.get_project_index_stats("p1")
        assert stats.element_count == 0

    async def test_crossing_threshold_doubles_capacity(self, manager, index_settings):
        initial = index_settings.initial_max_elements
        before = await manager.get_project_index_stats("p1")

        count = math.ceil(0.9 * initial) + 1
        await manager.add_embeddings_batch("p1", unit_vectors(count))

        after = await manager.get_project_index_stats("p1")
        assert before.max_elements == initial
        assert after.max_elements >= 2 * initial
        assert after.element_count == count

    async def test_projects_are_isolated(self, manager):
        await manager.add_embeddings_batch("p1", unit_vectors(3))

        assert await manager.search("p2", unit_vectors(3)[0][1], k=3) == []
        assert sorted(manager.loaded_projects()) == ["p1", "p2"]


class TestPersistence:
    async def test_save_and_reload(self, manager, index_settings):
        items = unit_vectors(8)
        await manager.add_embeddings_batch("p1", items)
        assert await manager.save_index("p1") is True

        mapping = json.loads(manager.mapping_path("p1").read_text())
        assert mapping["dimension"] == DIM
        assert len(mapping["id_to_label"]) == 8

        fresh = VectorIndexManager(index_settings, dimension=DIM)
        results = await fresh.search("p1", items[5][1], k=1)
        assert results[0].chunk_id == "chunk-5"

    async def test_save_without_loaded_index(self, manager):
        assert await manager.save_index("nothing") is False

    async def test_corrupt_files_fall_back_to_empty_index(self, manager, index_settings):
        manager.index_dir.mkdir(parents=True)
        manager.index_path("p1").write_bytes(b"not an index")
        manager.mapping_path("p1").write_text("{broken json")

        assert await manager.load_index("p1") is None
        stats = await manager.get_project_index_stats("p1")
        assert stats.element_count == 0
        assert stats.max_elements == index_settings.initial_max_elements

    async def test_persisted_dimension_mismatch_is_ignored(self, manager, index_settings):
        await manager.add_embeddings_batch("p1", unit_vectors(2))
        await manager.save_index("p1")

        other = VectorIndexManager(index_settings, dimension=DIM + 2)

        assert await other.load_index("p1") is None

    async def test_save_failure_raises_index_io_error(self, manager, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where the index directory should be")
        manager.index_dir = blocker / "index"
        await manager.add_embeddings_batch("p1", unit_vectors(2))

        with pytest.raises(IndexIOError):
            await manager.save_index("p1")

    async def test_clear_all_saves_and_forgets(self, manager):
        await manager.add_embeddings_batch("p1", unit_vectors(2))

        await manager.clear_all_indexes()

        assert manager.loaded_projects() == []
        assert manager.index_path("p1").exists()
        assert manager.mapping_path("p1").exists()

    async def test_delete_project_index_removes_files(self, manager):
        await manager.add_embeddings_batch("p1", unit_vectors(2))
        await manager.save_index("p1")

        await manager.delete_project_index("p1")

        assert not manager.index_path("p1").exists()
        assert not manager.mapping_path("p1").exists()
        assert manager.loaded_projects() == []


class TestRebuild:
    async def test_rebuild_replaces_previous_contents(self, manager):
        await manager.add_embeddings_batch("p1", unit_vectors(5))

        count = await manager.rebuild_project_index("p1", unit_vectors(3))

        assert count == 3
        stats = await manager.get_project_index_stats("p1")
        assert stats.element_count == 3
        assert manager.index_path("p1").exists()

    async def test_concurrent_rebuild_conflicts(self, manager):
        items = unit_vectors(4)

        results = await asyncio.gather(
            manager.rebuild_project_index("p1", items),
            manager.rebuild_project_index("p1", items),
            return_exceptions=True,
        )

        assert results[0] == 4
        assert isinstance(results[1], ConcurrencyConflictError)
        assert manager.is_index_rebuild_in_progress("p1") is False

    async def test_rebuild_flag_cleared_after_failure(self, manager):
        with pytest.raises(DimensionMismatchError):
            await manager.rebuild_project_index("p1", [("bad", [1.0])])

        assert manager.is_index_rebuild_in_progress("p1") is False
