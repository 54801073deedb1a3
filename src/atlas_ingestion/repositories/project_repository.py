"""Project repository for data access operations."""

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas_ingestion.database.models import Project
from atlas_ingestion.repositories.base import BaseRepository
from atlas_ingestion.utils.errors import DatabaseError
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("repositories.project")


class ProjectRepository(BaseRepository[Project]):
    """Repository for project data access operations."""

    def __init__(self, session: AsyncSession):
        """Initialize project repository."""
        super().__init__(Project, session)

    async def create_project(
        self,
        name: str,
        watch_path: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
    ) -> Project:
        """Create a project, optionally with a caller-chosen ID."""
        kwargs: Dict[str, Any] = {"name": name, "watch_path": watch_path, "settings": settings}
        if id:
            kwargs["id"] = id
        return await self.create(**kwargs)

    async def get_by_name(self, name: str) -> Optional[Project]:
        """Get the first project with the given name."""
        try:
            result = await self.session.execute(
                select(Project).where(Project.name == name).order_by(Project.created_at).limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting project by name {name}: {e}")
            raise DatabaseError("Failed to retrieve project") from e
