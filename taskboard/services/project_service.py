"""
Project service for taskboard.

Creating a project also creates the creator's OWNER membership and the
project's default column, all in one unit of work.
"""

from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings, get_settings
from taskboard.database import ColumnORM, ProjectMemberORM, ProjectORM, atomic
from taskboard.logging_config import get_logger
from taskboard.models import Project, ProjectCreate, ProjectUpdate, Role
from taskboard.services.access import AccessGate, Action
from taskboard.services.errors import NotFoundError, ServiceError
from taskboard.services.serializers import PROJECT_LOAD_OPTIONS, project_to_model

logger = get_logger(__name__)


class ProjectService:
    """
    Service layer for project operations.

    Args:
        session: Active async database session
        settings: Settings supplying the default column name (defaults to
            the process-wide settings)
    """

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.access = AccessGate(session)

    async def _load_project(self, project_id: int) -> Project:
        result = await self.session.execute(
            select(ProjectORM)
            .options(*PROJECT_LOAD_OPTIONS)
            .where(ProjectORM.id == project_id)
            .execution_options(populate_existing=True)
        )
        project_orm = result.scalar_one_or_none()
        if project_orm is None:
            raise NotFoundError(f"Project with ID {project_id} not found")
        return project_to_model(project_orm)

    # ==============================================================================
    # CREATE / READ
    # ==============================================================================

    async def create_project(self, user_id: int, payload: ProjectCreate) -> Project:
        """
        Create a project owned by ``user_id`` with its default column.

        Args:
            user_id: User becoming the project's OWNER
            payload: Project name and description

        Returns:
            Created Project with one membership and one empty column at position 0
        """
        try:
            logger.debug(f"Creating project: name='{payload.name}', owner={user_id}")
            async with atomic(self.session):
                project_orm = ProjectORM(name=payload.name, description=payload.description)
                self.session.add(project_orm)
                await self.session.flush()

                self.session.add_all([
                    ProjectMemberORM(project_id=project_orm.id, user_id=user_id, role=Role.OWNER),
                    ColumnORM(
                        name=self.settings.default_column_name,
                        position=0,
                        project_id=project_orm.id,
                    ),
                ])
                await self.session.flush()

            project = await self._load_project(project_orm.id)
            logger.info(f"Created project: id={project.id}, name='{project.name}', owner={user_id}")
            return project
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to create project: {e}", exc_info=True)
            raise

    async def list_projects(self, user_id: int) -> List[Project]:
        """Get every project the user is a member of, oldest first."""
        result = await self.session.execute(
            select(ProjectORM)
            .options(*PROJECT_LOAD_OPTIONS)
            .join(ProjectMemberORM, ProjectMemberORM.project_id == ProjectORM.id)
            .where(ProjectMemberORM.user_id == user_id)
            .order_by(ProjectORM.created_at, ProjectORM.id)
            .execution_options(populate_existing=True)
        )
        return [project_to_model(p) for p in result.scalars().all()]

    async def get_project(self, project_id: int, user_id: int) -> Project:
        """
        Get a project with its members, columns, tasks and tags.

        Raises:
            NotFoundError: If the project does not exist or the user is not a member
        """
        await self.access.authorize(user_id, project_id, Action.VIEW)
        return await self._load_project(project_id)

    # ==============================================================================
    # UPDATE / DELETE
    # ==============================================================================

    async def update_project(self, project_id: int, user_id: int, payload: ProjectUpdate) -> Project:
        """
        Update a project's name and/or description.

        Raises:
            NotFoundError: If the user is not a member of the project
            ForbiddenError: If the user is not OWNER or ADMIN
        """
        changes = payload.model_dump(exclude_unset=True)
        try:
            async with atomic(self.session):
                await self.access.authorize(user_id, project_id, Action.UPDATE_PROJECT)
                project_orm = await self.session.get(ProjectORM, project_id)
                if project_orm is None:
                    raise NotFoundError(f"Project with ID {project_id} not found")

                if changes.get("name") is not None:
                    project_orm.name = changes["name"]
                if "description" in changes:
                    project_orm.description = changes["description"]
                await self.session.flush()

            logger.info(f"Updated project {project_id}: fields={sorted(changes)}")
            return await self._load_project(project_id)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update project {project_id}: {e}", exc_info=True)
            raise

    async def delete_project(self, project_id: int, user_id: int) -> Dict[str, str]:
        """
        Delete a project with all its memberships, columns, tasks and tags.

        Raises:
            NotFoundError: If the user is not a member of the project
            ForbiddenError: If the user is not the OWNER
        """
        try:
            async with atomic(self.session):
                await self.access.authorize(user_id, project_id, Action.DELETE_PROJECT)
                # Children go through ON DELETE CASCADE
                await self.session.execute(delete(ProjectORM).where(ProjectORM.id == project_id))

            logger.info(f"Deleted project {project_id}")
            return {"message": "Project deleted successfully"}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete project {project_id}: {e}", exc_info=True)
            raise
