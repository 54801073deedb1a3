"""Per-project HNSW vector index management (hnswlib)."""

import asyncio
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import hnswlib
import numpy as np

from atlas_ingestion.config import VectorIndexSettings
from atlas_ingestion.models.index import AddResult, IndexStats, SearchResult
from atlas_ingestion.utils.errors import (
    ConcurrencyConflictError,
    DimensionMismatchError,
    IndexIOError,
)
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("vector_store_service")

VectorItem = Tuple[str, Sequence[float]]


@dataclass
class ProjectIndex:
    """A loaded index plus its chunk ID <-> label mapping."""

    index: hnswlib.Index
    id_to_label: Dict[str, int] = field(default_factory=dict)
    label_to_id: Dict[int, str] = field(default_factory=dict)

    @property
    def element_count(self) -> int:
        return self.index.get_current_count()

    @property
    def max_elements(self) -> int:
        return self.index.get_max_elements()


class VectorIndexManager:
    """
    Owns one hnswlib index per project.

    Indexes are created or loaded lazily on first use, grown in one step per
    batch when they approach capacity, and persisted as two files per project:
    the native index and a JSON side-car holding the chunk ID mapping.
    """

    def __init__(self, settings: VectorIndexSettings, dimension: int):
        """
        Initialize the manager.

        Args:
            settings: Index parameters and storage directory
            dimension: Embedding dimension every vector must have
        """
        self.settings = settings
        self.dimension = dimension
        self.index_dir = Path(settings.path)
        self._indexes: Dict[str, ProjectIndex] = {}
        self._init_locks: Dict[str, asyncio.Lock] = {}
        self._rebuilds_in_progress: Set[str] = set()

    # ------------------------------------------------------------------ paths

    def index_path(self, project_id: str) -> Path:
        return self.index_dir / f"project-{project_id}.hnsw"

    def mapping_path(self, project_id: str) -> Path:
        return self.index_dir / f"project-{project_id}.mapping.json"

    # ---------------------------------------------------------- construction

    def _create_index(self, max_elements: Optional[int] = None) -> ProjectIndex:
        index = hnswlib.Index(space=self.settings.space, dim=self.dimension)
        index.init_index(
            max_elements=max_elements or self.settings.initial_max_elements,
            ef_construction=self.settings.ef_construction,
            M=self.settings.m,
        )
        index.set_ef(self.settings.ef_search)
        return ProjectIndex(index=index)

    def _read_from_disk(self, project_id: str) -> Optional[ProjectIndex]:
        index_file = self.index_path(project_id)
        mapping_file = self.mapping_path(project_id)
        if not index_file.exists() or not mapping_file.exists():
            return None

        mapping = json.loads(mapping_file.read_text(encoding="utf-8"))
        stored_dimension = mapping.get("dimension", self.dimension)
        if stored_dimension != self.dimension:
            raise DimensionMismatchError(
                expected=self.dimension,
                actual=stored_dimension,
                message=f"Persisted index for project {project_id} has dimension {stored_dimension}",
            )

        index = hnswlib.Index(space=self.settings.space, dim=self.dimension)
        index.load_index(str(index_file))
        index.set_ef(self.settings.ef_search)

        id_to_label = {str(k): int(v) for k, v in mapping.get("id_to_label", {}).items()}
        label_to_id = {label: chunk_id for chunk_id, label in id_to_label.items()}
        return ProjectIndex(index=index, id_to_label=id_to_label, label_to_id=label_to_id)

    async def load_index(self, project_id: str) -> Optional[ProjectIndex]:
        """
        Load a project's persisted index from disk.

        Returns:
            The loaded index, or None when nothing usable is on disk. A corrupt
            or unreadable pair of files is logged and treated as absent.
        """
        try:
            project_index = await asyncio.to_thread(self._read_from_disk, project_id)
        except Exception as e:
            logger.warning(
                f"Failed to load vector index for project {project_id}, starting fresh: {e}"
            )
            return None

        if project_index is not None:
            logger.info(
                f"Loaded vector index for project {project_id} "
                f"({project_index.element_count} elements)"
            )
        return project_index

    async def get_index(self, project_id: str) -> ProjectIndex:
        """Get a project's index, loading or creating it on first use."""
        existing = self._indexes.get(project_id)
        if existing is not None:
            return existing

        lock = self._init_locks.setdefault(project_id, asyncio.Lock())
        async with lock:
            existing = self._indexes.get(project_id)
            if existing is not None:
                return existing

            project_index = await self.load_index(project_id)
            if project_index is None:
                project_index = self._create_index()
                logger.info(f"Created vector index for project {project_id}")
            self._indexes[project_id] = project_index
            return project_index

    # ------------------------------------------------------------- insertion

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(expected=self.dimension, actual=len(vector))

    def _ensure_capacity(self, project_index: ProjectIndex, incoming: int) -> None:
        current = project_index.element_count
        max_elements = project_index.max_elements
        if current + incoming <= self.settings.resize_threshold * max_elements:
            return

        new_max = max(2 * max_elements, current + incoming + self.settings.resize_headroom)
        project_index.index.resize_index(new_max)
        logger.info(f"Resized vector index from {max_elements} to {new_max} elements")

    def _add_items(self, project_index: ProjectIndex, items: Iterable[VectorItem]) -> AddResult:
        chunk_ids: List[str] = []
        vectors: List[Sequence[float]] = []
        skipped = 0
        seen: Set[str] = set()

        for chunk_id, vector in items:
            self._check_dimension(vector)
            if chunk_id in project_index.id_to_label or chunk_id in seen:
                skipped += 1
                continue
            seen.add(chunk_id)
            chunk_ids.append(chunk_id)
            vectors.append(vector)

        if not chunk_ids:
            return AddResult(added_count=0, skipped_count=skipped)

        self._ensure_capacity(project_index, len(chunk_ids))

        first_label = project_index.element_count
        labels = np.arange(first_label, first_label + len(chunk_ids), dtype=np.int64)
        project_index.index.add_items(np.asarray(vectors, dtype=np.float32), labels)

        for chunk_id, label in zip(chunk_ids, labels.tolist()):
            project_index.id_to_label[chunk_id] = label
            project_index.label_to_id[label] = chunk_id

        return AddResult(added_count=len(chunk_ids), skipped_count=skipped)

    async def add_embeddings_batch(self, project_id: str, items: Sequence[VectorItem]) -> AddResult:
        """
        Add several (chunk_id, vector) pairs, resizing at most once.

        Chunk IDs already in the index are skipped silently.

        Raises:
            DimensionMismatchError: If any vector has the wrong length (nothing is added)
        """
        for _, vector in items:
            self._check_dimension(vector)

        project_index = await self.get_index(project_id)
        result = self._add_items(project_index, items)
        logger.debug(
            f"Added {result.added_count} vectors to project {project_id} "
            f"(skipped {result.skipped_count})"
        )
        return result

    async def add_embedding(self, project_id: str, chunk_id: str, vector: Sequence[float]) -> bool:
        """Add one vector. Returns False if the chunk was already indexed."""
        result = await self.add_embeddings_batch(project_id, [(chunk_id, vector)])
        return result.added_count == 1

    # ---------------------------------------------------------------- search

    async def search(
        self, project_id: str, query_vector: Sequence[float], k: int = 5
    ) -> List[SearchResult]:
        """
        Find the k nearest chunks to a query vector.

        Returns:
            Results ordered by increasing distance; empty for an empty index
        """
        self._check_dimension(query_vector)
        project_index = await self.get_index(project_id)

        count = project_index.element_count
        if count == 0 or k <= 0:
            return []

        k = min(k, count)
        try:
            project_index.index.set_ef(max(self.settings.ef_search, k))
            labels, distances = project_index.index.knn_query(
                np.asarray([query_vector], dtype=np.float32), k=k
            )
        except RuntimeError as e:
            logger.error(f"Vector search failed for project {project_id}: {e}")
            return []

        results = []
        for label, distance in zip(labels[0].tolist(), distances[0].tolist()):
            chunk_id = project_index.label_to_id.get(label)
            if chunk_id is None:
                logger.warning(f"Label {label} missing from mapping of project {project_id}")
                chunk_id = f"unknown-{label}"
            results.append(SearchResult(chunk_id=chunk_id, distance=float(distance)))
        return results

    # ----------------------------------------------------------- persistence

    def _write_to_disk(self, project_id: str, project_index: ProjectIndex) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        project_index.index.save_index(str(self.index_path(project_id)))

        mapping = {
            "dimension": self.dimension,
            "space": self.settings.space,
            "id_to_label": project_index.id_to_label,
        }
        mapping_file = self.mapping_path(project_id)
        tmp_file = mapping_file.with_suffix(".json.tmp")
        tmp_file.write_text(json.dumps(mapping), encoding="utf-8")
        os.replace(tmp_file, mapping_file)

    async def save_index(self, project_id: str) -> bool:
        """
        Persist a project's index and mapping.

        Returns:
            False when the project has no loaded index (nothing written)

        Raises:
            IndexIOError: If writing either file fails
        """
        project_index = self._indexes.get(project_id)
        if project_index is None:
            logger.debug(f"No loaded vector index for project {project_id}, nothing to save")
            return False

        try:
            await asyncio.to_thread(self._write_to_disk, project_id, project_index)
        except (OSError, RuntimeError) as e:
            raise IndexIOError(
                f"Failed to save vector index: {e}", project_id=project_id
            ) from e

        logger.info(
            f"Saved vector index for project {project_id} ({project_index.element_count} elements)"
        )
        return True

    # --------------------------------------------------------------- rebuild

    def is_index_rebuild_in_progress(self, project_id: str) -> bool:
        return project_id in self._rebuilds_in_progress

    async def rebuild_project_index(self, project_id: str, items: Sequence[VectorItem]) -> int:
        """
        Replace a project's index with one built from ``items``.

        The previous in-memory and on-disk state is discarded, never reloaded.

        Returns:
            Number of elements in the rebuilt index

        Raises:
            ConcurrencyConflictError: If a rebuild for the project is already running
            DimensionMismatchError: If any vector has the wrong length
            IndexIOError: If the rebuilt index cannot be saved
        """
        if project_id in self._rebuilds_in_progress:
            raise ConcurrencyConflictError(
                f"Index rebuild already in progress for project {project_id}",
                resource="vector_index",
                resource_id=project_id,
            )

        self._rebuilds_in_progress.add(project_id)
        try:
            for _, vector in items:
                self._check_dimension(vector)

            capacity = max(
                self.settings.initial_max_elements, len(items) + self.settings.resize_headroom
            )
            project_index = self._create_index(max_elements=capacity)
            self._add_items(project_index, items)
            self._indexes[project_id] = project_index

            logger.info(
                f"Rebuilt vector index for project {project_id} "
                f"({project_index.element_count} elements)"
            )
            await self.save_index(project_id)
            return project_index.element_count
        finally:
            self._rebuilds_in_progress.discard(project_id)

    # ----------------------------------------------------------------- stats

    async def get_project_index_stats(self, project_id: str) -> IndexStats:
        project_index = await self.get_index(project_id)
        return IndexStats(
            project_id=project_id,
            dimension=self.dimension,
            space=self.settings.space,
            m=self.settings.m,
            ef_construction=self.settings.ef_construction,
            element_count=project_index.element_count,
            max_elements=project_index.max_elements,
        )

    def loaded_projects(self) -> List[str]:
        return list(self._indexes)

    # -------------------------------------------------------------- teardown

    async def delete_project_index(self, project_id: str) -> None:
        """Forget a project's index and remove its files."""
        self._indexes.pop(project_id, None)
        self._init_locks.pop(project_id, None)

        def _remove_files() -> None:
            self.index_path(project_id).unlink(missing_ok=True)
            self.mapping_path(project_id).unlink(missing_ok=True)

        try:
            await asyncio.to_thread(_remove_files)
        except OSError as e:
            raise IndexIOError(
                f"Failed to delete vector index files: {e}", project_id=project_id
            ) from e
        logger.info(f"Deleted vector index for project {project_id}")

    async def clear_all_indexes(self) -> None:
        """Save every loaded index (best effort) and drop all in-memory state."""
        for project_id in list(self._indexes):
            try:
                await self.save_index(project_id)
            except IndexIOError as e:
                logger.error(f"Failed to save vector index for project {project_id}: {e.message}")

        self._indexes.clear()
        self._init_locks.clear()
        logger.info("Cleared all vector indexes")
