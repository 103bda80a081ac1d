"""
Task service for taskboard.

Implements CRUD for tasks plus moving them within a column and across
columns of the same project. Task positions are scoped by column and kept
contiguous by ``PositionReorderer``.
"""

from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskboard.database import ColumnORM, ProjectMemberORM, TagORM, TaskORM, atomic
from taskboard.logging_config import get_logger
from taskboard.models import Role, Task, TaskCreate, TaskUpdate
from taskboard.services.access import AccessGate, Action
from taskboard.services.column_service import ColumnService
from taskboard.services.errors import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
)
from taskboard.services.ordering import PositionReorderer
from taskboard.services.serializers import TASK_LOAD_OPTIONS, task_to_model

logger = get_logger(__name__)

# Fields an unassigned MEMBER may change
MEMBER_UPDATABLE_FIELDS = frozenset({"status"})

# Columns that cannot be cleared by an explicit None in an update
NON_NULLABLE_FIELDS = frozenset({"title", "type", "status", "priority"})


class TaskService:
    """
    Service layer for task operations.

    Handles business logic for tasks including:
    - Creating tasks at a requested or appended position in a column
    - Moving tasks within a column or into another column of the project
    - Replacing the tag set and assignee of a task
    - Role checks, with MEMBERs restricted to status changes on tasks
      they are not assigned to
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize task service with database session.

        Args:
            session: Active async database session
        """
        self.session = session
        self.access = AccessGate(session)
        self.columns = ColumnService(session)
        self.reorderer = PositionReorderer(session, TaskORM, "column_id", ColumnORM)

    # ==============================================================================
    # HELPERS
    # ==============================================================================

    async def _get_task_or_raise(self, task_id: int) -> TaskORM:
        """
        Get a task (with its tags loaded) by ID or raise an exception.

        Raises:
            NotFoundError: If the task does not exist
        """
        result = await self.session.execute(
            select(TaskORM)
            .options(selectinload(TaskORM.tags))
            .where(TaskORM.id == task_id)
        )
        task_orm = result.scalar_one_or_none()
        if task_orm is None:
            raise NotFoundError(f"Task with ID {task_id} not found")
        return task_orm

    async def _load_task(self, task_id: int) -> Task:
        result = await self.session.execute(
            select(TaskORM)
            .options(*TASK_LOAD_OPTIONS)
            .where(TaskORM.id == task_id)
            .execution_options(populate_existing=True)
        )
        return task_to_model(result.scalar_one())

    async def _ensure_column_in_project(self, column_id: int, project_id: int) -> None:
        if not await self.columns.column_exists_in_project(column_id, project_id):
            raise NotFoundError(f"Column with ID {column_id} not found in project {project_id}")

    async def _ensure_assignee_is_member(self, assignee_id: int, project_id: int) -> None:
        result = await self.session.execute(
            select(ProjectMemberORM.id).where(
                ProjectMemberORM.project_id == project_id,
                ProjectMemberORM.user_id == assignee_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"User {assignee_id} is not a member of project {project_id}")

    async def _resolve_tags(self, tag_ids: Sequence[int], project_id: int) -> List[TagORM]:
        """
        Load the tags with the given ids, all of which must belong to the project.

        Raises:
            NotFoundError: If any id is unknown or belongs to another project
        """
        wanted = set(tag_ids)
        if not wanted:
            return []
        result = await self.session.execute(
            select(TagORM).where(TagORM.id.in_(sorted(wanted)), TagORM.project_id == project_id)
        )
        tags = list(result.scalars().all())
        missing = wanted - {tag.id for tag in tags}
        if missing:
            raise NotFoundError(
                f"Tags not found in project {project_id}: {sorted(missing)}"
            )
        return tags

    # ==============================================================================
    # CREATE / READ
    # ==============================================================================

    async def create_task(self, user_id: int, payload: TaskCreate) -> Task:
        """
        Create a task in a column.

        Args:
            user_id: Acting user
            payload: Task attributes, target project and column

        Returns:
            Created Task with its tags, assignee and column summary

        Raises:
            NotFoundError: If the caller is not a member, the column is not in
                the project, a tag id is unknown, or the assignee is not a member
            ForbiddenError: If the caller is a VIEWER
            InvalidPositionError: If the requested position is negative
        """
        try:
            logger.debug(
                f"Creating task: title='{payload.title}', project_id={payload.project_id}, "
                f"column_id={payload.column_id}, position={payload.position}"
            )
            async with atomic(self.session):
                await self.access.authorize(user_id, payload.project_id, Action.CREATE_TASK)
                await self._ensure_column_in_project(payload.column_id, payload.project_id)
                if payload.assignee_id is not None:
                    await self._ensure_assignee_is_member(payload.assignee_id, payload.project_id)
                tags = await self._resolve_tags(payload.tag_ids or [], payload.project_id)

                position = await self.reorderer.insert(payload.column_id, payload.position)

                task_orm = TaskORM(
                    title=payload.title,
                    description=payload.description,
                    type=payload.type,
                    status=payload.status,
                    priority=payload.priority,
                    start_date=payload.start_date,
                    end_date=payload.end_date,
                    due_date=payload.due_date,
                    position=position,
                    project_id=payload.project_id,
                    column_id=payload.column_id,
                    assignee_id=payload.assignee_id,
                    tags=tags,
                )
                self.session.add(task_orm)
                await self.session.flush()

            task = await self._load_task(task_orm.id)
            logger.info(
                f"Created task: id={task.id}, title='{task.title}', "
                f"column_id={task.column_id}, position={task.position}"
            )
            return task
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to create task: {e}", exc_info=True)
            raise

    async def list_tasks(self, user_id: int, project_id: int) -> List[Task]:
        """
        Get all tasks of a project ordered by column then position.

        Raises:
            NotFoundError: If the user is not a member of the project
        """
        await self.access.authorize(user_id, project_id, Action.VIEW)

        result = await self.session.execute(
            select(TaskORM)
            .options(*TASK_LOAD_OPTIONS)
            .where(TaskORM.project_id == project_id)
            .order_by(TaskORM.column_id, TaskORM.position)
            .execution_options(populate_existing=True)
        )
        return [task_to_model(task_orm) for task_orm in result.scalars().all()]

    async def list_tasks_for_column(self, user_id: int, column_id: int) -> List[Task]:
        """
        Get the tasks of one column ordered by position.

        Raises:
            NotFoundError: If the column does not exist or the user is not a member
        """
        result = await self.session.execute(
            select(ColumnORM.project_id).where(ColumnORM.id == column_id)
        )
        project_id = result.scalar_one_or_none()
        if project_id is None:
            raise NotFoundError(f"Column with ID {column_id} not found")
        await self.access.authorize(user_id, project_id, Action.VIEW)

        result = await self.session.execute(
            select(TaskORM)
            .options(*TASK_LOAD_OPTIONS)
            .where(TaskORM.column_id == column_id)
            .order_by(TaskORM.position)
            .execution_options(populate_existing=True)
        )
        return [task_to_model(task_orm) for task_orm in result.scalars().all()]

    async def get_task(self, user_id: int, task_id: int) -> Task:
        """
        Get a single task.

        Raises:
            NotFoundError: If the task does not exist or the user is not a member
        """
        task_orm = await self._get_task_or_raise(task_id)
        try:
            await self.access.authorize(user_id, task_orm.project_id, Action.VIEW)
        except NotFoundError:
            raise NotFoundError(f"Task with ID {task_id} not found or access denied")
        return await self._load_task(task_id)

    # ==============================================================================
    # UPDATE / MOVE
    # ==============================================================================

    def _check_member_update(self, role: Role, task_orm: TaskORM, user_id: int, fields: Sequence[str]) -> None:
        """
        Restrict a MEMBER who is not the assignee to status-only updates.

        Raises:
            ForbiddenError: If other fields are being changed
        """
        if role != Role.MEMBER or task_orm.assignee_id == user_id:
            return
        disallowed = set(fields) - MEMBER_UPDATABLE_FIELDS
        if disallowed:
            logger.warning(
                f"Access denied: member {user_id} tried to update {sorted(disallowed)} "
                f"on unassigned task {task_orm.id}"
            )
            raise ForbiddenError("Members can only update the status of tasks not assigned to them")

    async def _relocate(
        self,
        task_orm: TaskORM,
        column_id: Optional[int],
        position: Optional[int],
    ) -> None:
        """
        Apply a column and/or position change through the reorderer.

        The task's current column and position are read by the reorderer
        under the column lock, not taken from ``task_orm``.
        """
        if column_id is not None:
            await self._ensure_column_in_project(column_id, task_orm.project_id)
            await self.reorderer.move_across_scope(task_orm.id, column_id, position)
        elif position is not None:
            await self.reorderer.move(task_orm.id, position)

    async def update_task(self, user_id: int, task_id: int, payload: TaskUpdate) -> Task:
        """
        Update a task's fields, tags, assignee, column and/or position.

        Only fields explicitly set on ``payload`` are applied. ``tag_ids``
        replaces the whole tag set. A different ``column_id`` moves the task
        to that column (appended unless ``position`` is given); a
        ``position`` alone moves it within its column.

        Args:
            user_id: Acting user
            task_id: Task to update
            payload: Partial update

        Returns:
            Updated Task

        Raises:
            NotFoundError: If the task, target column, a tag or the assignee
                cannot be found in the task's project
            ForbiddenError: If the caller is a VIEWER, or a MEMBER changing
                more than the status of a task not assigned to them
            InvalidPositionError: If the target position is out of range
            BadRequestError: If the resulting start date is after the end date
        """
        changes = payload.model_dump(exclude_unset=True)
        try:
            logger.debug(f"Updating task {task_id}: fields={sorted(changes)}")
            async with atomic(self.session):
                task_orm = await self._get_task_or_raise(task_id)
                membership = await self.access.authorize(
                    user_id, task_orm.project_id, Action.UPDATE_TASK
                )
                self._check_member_update(membership.role, task_orm, user_id, list(changes))

                column_id = changes.pop("column_id", None)
                position = changes.pop("position", None)
                await self._relocate(task_orm, column_id, position)

                tag_ids = changes.pop("tag_ids", None)
                if tag_ids is not None:
                    task_orm.tags = await self._resolve_tags(tag_ids, task_orm.project_id)

                if changes.get("assignee_id") is not None:
                    await self._ensure_assignee_is_member(changes["assignee_id"], task_orm.project_id)

                for field, value in changes.items():
                    if value is None and field in NON_NULLABLE_FIELDS:
                        continue
                    setattr(task_orm, field, value)

                if task_orm.start_date and task_orm.end_date and task_orm.start_date > task_orm.end_date:
                    raise BadRequestError("start_date must not be later than end_date")
                await self.session.flush()

            task = await self._load_task(task_id)
            logger.info(
                f"Updated task: id={task_id}, column_id={task.column_id}, position={task.position}"
            )
            return task
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update task {task_id}: {e}", exc_info=True)
            raise

    # ==============================================================================
    # DELETE
    # ==============================================================================

    async def delete_task(self, user_id: int, task_id: int) -> Dict[str, str]:
        """
        Delete a task and close the gap in its column.

        Raises:
            NotFoundError: If the task does not exist or the user is not a member
            ForbiddenError: If the user is not OWNER or ADMIN
        """
        try:
            logger.debug(f"Deleting task {task_id}")
            async with atomic(self.session):
                task_orm = await self._get_task_or_raise(task_id)
                await self.access.authorize(user_id, task_orm.project_id, Action.DELETE_TASK)

                column_id, position = await self.reorderer.remove(task_orm.id)

            logger.info(f"Deleted task: id={task_id}, column_id={column_id}, position={position}")
            return {"message": "Task deleted successfully"}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete task {task_id}: {e}", exc_info=True)
            raise
