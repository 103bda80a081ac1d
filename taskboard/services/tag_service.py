"""
Tag service for taskboard.

Tags are project-scoped labels attached to tasks. Names are unique within
a project; the database enforces it and the service reports a clash as a
ConflictError.
"""

from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import TagORM, atomic
from taskboard.logging_config import get_logger
from taskboard.models import Tag, TagCreate, TagUpdate
from taskboard.services.access import AccessGate, Action
from taskboard.services.errors import ConflictError, NotFoundError, ServiceError
from taskboard.services.serializers import tag_to_model

logger = get_logger(__name__)


class TagService:
    """Service layer for tag operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.access = AccessGate(session)

    async def _get_tag_or_raise(self, tag_id: int) -> TagORM:
        tag_orm = await self.session.get(TagORM, tag_id)
        if tag_orm is None:
            raise NotFoundError(f"Tag with ID {tag_id} not found")
        return tag_orm

    async def _ensure_name_free(self, project_id: int, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(TagORM.id).where(TagORM.project_id == project_id, TagORM.name == name)
        if exclude_id is not None:
            stmt = stmt.where(TagORM.id != exclude_id)
        result = await self.session.execute(stmt)
        if result.first() is not None:
            raise ConflictError(f"Tag '{name}' already exists in project {project_id}")

    async def _flush_unique(self, project_id: int, name: str) -> None:
        """Flush pending changes, reporting a unique-name violation as a conflict."""
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Tag name clash in project {project_id}: {e.orig}")
            raise ConflictError(f"Tag '{name}' already exists in project {project_id}") from e

    # ==============================================================================
    # CRUD
    # ==============================================================================

    async def create_tag(self, user_id: int, payload: TagCreate) -> Tag:
        """
        Create a tag in a project.

        Raises:
            NotFoundError: If the user is not a member of the project
            ForbiddenError: If the user is not OWNER or ADMIN
            ConflictError: If the project already has a tag with this name
        """
        try:
            async with atomic(self.session):
                await self.access.authorize(user_id, payload.project_id, Action.CREATE_TAG)
                await self._ensure_name_free(payload.project_id, payload.name)

                tag_orm = TagORM(name=payload.name, color=payload.color, project_id=payload.project_id)
                self.session.add(tag_orm)
                await self._flush_unique(payload.project_id, payload.name)

            logger.info(f"Created tag: id={tag_orm.id}, name='{tag_orm.name}', project_id={tag_orm.project_id}")
            return tag_to_model(tag_orm)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to create tag: {e}", exc_info=True)
            raise

    async def list_tags(self, user_id: int, project_id: int) -> List[Tag]:
        """Get the tags of a project ordered by name."""
        await self.access.authorize(user_id, project_id, Action.VIEW)
        result = await self.session.execute(
            select(TagORM).where(TagORM.project_id == project_id).order_by(TagORM.name)
        )
        return [tag_to_model(tag) for tag in result.scalars().all()]

    async def get_tag(self, user_id: int, tag_id: int) -> Tag:
        tag_orm = await self._get_tag_or_raise(tag_id)
        await self.access.authorize(user_id, tag_orm.project_id, Action.VIEW)
        return tag_to_model(tag_orm)

    async def update_tag(self, user_id: int, tag_id: int, payload: TagUpdate) -> Tag:
        """
        Rename and/or recolor a tag.

        Raises:
            NotFoundError: If the tag does not exist or the user is not a member
            ForbiddenError: If the user is not OWNER or ADMIN
            ConflictError: If another tag of the project already has the new name
        """
        try:
            async with atomic(self.session):
                tag_orm = await self._get_tag_or_raise(tag_id)
                await self.access.authorize(user_id, tag_orm.project_id, Action.UPDATE_TAG)

                if payload.name is not None and payload.name != tag_orm.name:
                    await self._ensure_name_free(tag_orm.project_id, payload.name, exclude_id=tag_id)
                    tag_orm.name = payload.name
                if payload.color is not None:
                    tag_orm.color = payload.color
                await self._flush_unique(tag_orm.project_id, tag_orm.name)

            logger.info(f"Updated tag: id={tag_id}, name='{tag_orm.name}', color={tag_orm.color}")
            return tag_to_model(tag_orm)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update tag {tag_id}: {e}", exc_info=True)
            raise

    async def delete_tag(self, user_id: int, tag_id: int) -> Dict[str, str]:
        """
        Delete a tag; it is detached from every task carrying it.

        Raises:
            NotFoundError: If the tag does not exist or the user is not a member
            ForbiddenError: If the user is not OWNER or ADMIN
        """
        try:
            async with atomic(self.session):
                tag_orm = await self._get_tag_or_raise(tag_id)
                await self.access.authorize(user_id, tag_orm.project_id, Action.DELETE_TAG)
                await self.session.delete(tag_orm)
                await self.session.flush()

            logger.info(f"Deleted tag {tag_id}")
            return {"message": "Tag deleted successfully"}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete tag {tag_id}: {e}", exc_info=True)
            raise
