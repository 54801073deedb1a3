"""Vector index models."""

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One nearest neighbour returned by a vector search."""

    chunk_id: str
    distance: float


class AddResult(BaseModel):
    """Outcome of a batch insertion into a project index."""

    added_count: int = 0
    skipped_count: int = 0


class IndexStats(BaseModel):
    """Statistics for a project's vector index."""

    project_id: str
    dimension: int
    space: str
    m: int = Field(..., description="Graph degree")
    ef_construction: int
    element_count: int
    max_elements: int
