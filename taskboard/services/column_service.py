"""
Column service for taskboard.

Implements CRUD and reordering for the columns (kanban lanes) of a project.
Column positions are kept contiguous per project by ``PositionReorderer``.
"""

from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import ColumnORM, ProjectORM, atomic
from taskboard.logging_config import get_logger
from taskboard.models import Column, ColumnCreate, ColumnUpdate
from taskboard.services.access import AccessGate, Action
from taskboard.services.errors import NotFoundError, ServiceError
from taskboard.services.ordering import PositionReorderer
from taskboard.services.serializers import COLUMN_LOAD_OPTIONS, column_to_model

logger = get_logger(__name__)


class ColumnService:
    """
    Service layer for column operations.

    Every operation checks the caller's project role through AccessGate and
    runs its writes as one atomic unit.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize column service with database session.

        Args:
            session: Active async database session
        """
        self.session = session
        self.access = AccessGate(session)
        self.reorderer = PositionReorderer(session, ColumnORM, "project_id", ProjectORM)

    # ==============================================================================
    # HELPERS
    # ==============================================================================

    async def _get_column_or_raise(self, column_id: int) -> ColumnORM:
        """
        Get a column by ID or raise an exception.

        Raises:
            NotFoundError: If the column does not exist
        """
        result = await self.session.execute(
            select(ColumnORM).where(ColumnORM.id == column_id)
        )
        column_orm = result.scalar_one_or_none()
        if column_orm is None:
            raise NotFoundError(f"Column with ID {column_id} not found")
        return column_orm

    async def _load_column(self, column_id: int) -> Column:
        result = await self.session.execute(
            select(ColumnORM)
            .options(*COLUMN_LOAD_OPTIONS)
            .where(ColumnORM.id == column_id)
            .execution_options(populate_existing=True)
        )
        return column_to_model(result.scalar_one())

    async def column_exists_in_project(self, column_id: int, project_id: int) -> bool:
        """
        Check whether a column belongs to the given project.

        Args:
            column_id: Column to look up
            project_id: Project it must belong to

        Returns:
            True if the column exists inside the project
        """
        result = await self.session.execute(
            select(ColumnORM.id).where(
                ColumnORM.id == column_id,
                ColumnORM.project_id == project_id,
            )
        )
        return result.scalar_one_or_none() is not None

    # ==============================================================================
    # CREATE / READ
    # ==============================================================================

    async def create_column(self, user_id: int, payload: ColumnCreate) -> Column:
        """
        Create a column in a project.

        Without a position the column is appended; with one, the column is
        inserted there and later siblings shift right.

        Args:
            user_id: Acting user
            payload: Column attributes and target project

        Returns:
            Created Column with an empty task list

        Raises:
            NotFoundError: If the user is not a member of the project
            ForbiddenError: If the user is not OWNER or ADMIN
            InvalidPositionError: If the requested position is negative
        """
        try:
            logger.debug(
                f"Creating column: name='{payload.name}', project_id={payload.project_id}, "
                f"position={payload.position}"
            )
            async with atomic(self.session):
                await self.access.authorize(user_id, payload.project_id, Action.CREATE_COLUMN)
                position = await self.reorderer.insert(payload.project_id, payload.position)

                column_orm = ColumnORM(
                    name=payload.name,
                    color=payload.color,
                    position=position,
                    project_id=payload.project_id,
                )
                self.session.add(column_orm)
                await self.session.flush()

            column = await self._load_column(column_orm.id)
            logger.info(f"Created column: id={column.id}, name='{column.name}', position={column.position}")
            return column
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to create column: {e}", exc_info=True)
            raise

    async def list_columns(self, user_id: int, project_id: int) -> List[Column]:
        """
        Get all columns of a project ordered by position, with their tasks.

        Raises:
            NotFoundError: If the user is not a member of the project
        """
        await self.access.authorize(user_id, project_id, Action.VIEW)

        result = await self.session.execute(
            select(ColumnORM)
            .options(*COLUMN_LOAD_OPTIONS)
            .where(ColumnORM.project_id == project_id)
            .order_by(ColumnORM.position)
            .execution_options(populate_existing=True)
        )
        return [column_to_model(column_orm) for column_orm in result.scalars().all()]

    async def get_column(self, user_id: int, column_id: int) -> Column:
        """
        Get a single column with its tasks.

        Raises:
            NotFoundError: If the column does not exist or the user is not a
                member of its project
        """
        column_orm = await self._get_column_or_raise(column_id)
        try:
            await self.access.authorize(user_id, column_orm.project_id, Action.VIEW)
        except NotFoundError:
            raise NotFoundError(f"Column with ID {column_id} not found or access denied")
        return await self._load_column(column_id)

    # ==============================================================================
    # UPDATE / DELETE
    # ==============================================================================

    async def update_column(self, user_id: int, column_id: int, payload: ColumnUpdate) -> Column:
        """
        Update a column's name, color and/or position.

        A position change moves the column and shifts the siblings between
        its old and new slots.

        Raises:
            NotFoundError: If the column does not exist or the user is not a member
            ForbiddenError: If the user is not OWNER or ADMIN
            InvalidPositionError: If the new position is outside the project's range
        """
        changes = payload.model_dump(exclude_unset=True)
        try:
            logger.debug(f"Updating column {column_id}: fields={sorted(changes)}")
            async with atomic(self.session):
                column_orm = await self._get_column_or_raise(column_id)
                await self.access.authorize(user_id, column_orm.project_id, Action.UPDATE_COLUMN)

                new_position = changes.pop("position", None)
                if new_position is not None:
                    await self.reorderer.move(column_orm.id, new_position)

                for field, value in changes.items():
                    if field == "name" and value is None:
                        continue
                    setattr(column_orm, field, value)
                await self.session.flush()

            column = await self._load_column(column_id)
            logger.info(f"Updated column: id={column_id}, name='{column.name}', position={column.position}")
            return column
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update column {column_id}: {e}", exc_info=True)
            raise

    async def delete_column(self, user_id: int, column_id: int) -> Dict[str, str]:
        """
        Delete a column with all its tasks and close the gap it leaves.

        Raises:
            NotFoundError: If the column does not exist or the user is not a member
            ForbiddenError: If the user is not OWNER or ADMIN
        """
        try:
            logger.debug(f"Deleting column {column_id}")
            async with atomic(self.session):
                column_orm = await self._get_column_or_raise(column_id)
                await self.access.authorize(user_id, column_orm.project_id, Action.DELETE_COLUMN)

                project_id, position = await self.reorderer.remove(column_orm.id)

            logger.info(f"Deleted column: id={column_id}, project_id={project_id}, position={position}")
            return {"message": "Column deleted successfully"}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete column {column_id}: {e}", exc_info=True)
            raise
