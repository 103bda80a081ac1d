"""
Membership service for taskboard.

Manages who belongs to a project and with which role. A project always
keeps at least one OWNER, and only an OWNER may hand out or take away the
OWNER role.
"""

from typing import Dict, List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskboard.database import ProjectMemberORM, TaskORM, UserORM, atomic
from taskboard.logging_config import get_logger
from taskboard.models import MemberAdd, Membership, Role
from taskboard.services.access import AccessGate, Action
from taskboard.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
)
from taskboard.services.serializers import membership_to_model

logger = get_logger(__name__)


class MemberService:
    """
    Service layer for project memberships.

    Args:
        session: Active async database session
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.access = AccessGate(session)

    # ==============================================================================
    # HELPERS
    # ==============================================================================

    async def _get_member_or_raise(self, project_id: int, member_user_id: int) -> ProjectMemberORM:
        result = await self.session.execute(
            select(ProjectMemberORM).where(
                ProjectMemberORM.project_id == project_id,
                ProjectMemberORM.user_id == member_user_id,
            )
        )
        member_orm = result.scalar_one_or_none()
        if member_orm is None:
            raise NotFoundError(f"User {member_user_id} is not a member of project {project_id}")
        return member_orm

    async def _load_member(self, member_id: int) -> Membership:
        result = await self.session.execute(
            select(ProjectMemberORM)
            .options(selectinload(ProjectMemberORM.user))
            .where(ProjectMemberORM.id == member_id)
            .execution_options(populate_existing=True)
        )
        return membership_to_model(result.scalar_one())

    async def _resolve_user(self, payload: MemberAdd) -> UserORM:
        """
        Find the user to add, by id first and by email otherwise.

        Raises:
            BadRequestError: If neither user_id nor email is given
            NotFoundError: If no such user exists
        """
        if payload.user_id is not None:
            user_orm = await self.session.get(UserORM, payload.user_id)
            lookup = f"id {payload.user_id}"
        elif payload.email:
            result = await self.session.execute(
                select(UserORM).where(UserORM.email == payload.email)
            )
            user_orm = result.scalar_one_or_none()
            lookup = f"email '{payload.email}'"
        else:
            raise BadRequestError("Either user_id or email is required")

        if user_orm is None:
            raise NotFoundError(f"User with {lookup} not found")
        return user_orm

    async def _owner_count(self, project_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ProjectMemberORM)
            .where(
                ProjectMemberORM.project_id == project_id,
                ProjectMemberORM.role == Role.OWNER,
            )
        )
        return result.scalar_one()

    async def _ensure_not_last_owner(self, member_orm: ProjectMemberORM) -> None:
        if member_orm.role == Role.OWNER and await self._owner_count(member_orm.project_id) <= 1:
            raise ConflictError("A project must keep at least one owner")

    @staticmethod
    def _ensure_can_manage_owner(acting: ProjectMemberORM) -> None:
        if acting.role != Role.OWNER:
            logger.warning(
                f"Access denied: user {acting.user_id} ({acting.role.value}) "
                f"tried to change an OWNER membership in project {acting.project_id}"
            )
            raise ForbiddenError("Only an owner can grant or revoke the owner role")

    # ==============================================================================
    # OPERATIONS
    # ==============================================================================

    async def list_members(self, user_id: int, project_id: int) -> List[Membership]:
        """
        Get the memberships of a project, oldest first.

        Raises:
            NotFoundError: If the user is not a member of the project
        """
        await self.access.authorize(user_id, project_id, Action.VIEW)
        result = await self.session.execute(
            select(ProjectMemberORM)
            .options(selectinload(ProjectMemberORM.user))
            .where(ProjectMemberORM.project_id == project_id)
            .order_by(ProjectMemberORM.created_at, ProjectMemberORM.id)
            .execution_options(populate_existing=True)
        )
        return [membership_to_model(m) for m in result.scalars().all()]

    async def add_member(self, user_id: int, project_id: int, payload: MemberAdd) -> Membership:
        """
        Add a user to a project.

        Args:
            user_id: Acting user
            project_id: Project to add to
            payload: Target user (by id or email) and role

        Returns:
            The new Membership

        Raises:
            NotFoundError: If the caller is not a member or the target user does not exist
            ForbiddenError: If the caller cannot manage members, or grants OWNER
                without being one
            BadRequestError: If no target user is given
            ConflictError: If the user is already a member
        """
        try:
            async with atomic(self.session):
                acting = await self.access.authorize(user_id, project_id, Action.MANAGE_MEMBERS)
                if payload.role == Role.OWNER:
                    self._ensure_can_manage_owner(acting)

                user_orm = await self._resolve_user(payload)
                result = await self.session.execute(
                    select(ProjectMemberORM.id).where(
                        ProjectMemberORM.project_id == project_id,
                        ProjectMemberORM.user_id == user_orm.id,
                    )
                )
                if result.scalar_one_or_none() is not None:
                    raise ConflictError(f"User {user_orm.id} is already a member of project {project_id}")

                member_orm = ProjectMemberORM(
                    project_id=project_id, user_id=user_orm.id, role=payload.role
                )
                self.session.add(member_orm)
                await self.session.flush()

            logger.info(
                f"Added member: user_id={user_orm.id}, project_id={project_id}, role={payload.role.value}"
            )
            return await self._load_member(member_orm.id)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to add member to project {project_id}: {e}", exc_info=True)
            raise

    async def update_member_role(
        self,
        user_id: int,
        project_id: int,
        member_user_id: int,
        role: Role,
    ) -> Membership:
        """
        Change a member's role.

        Raises:
            NotFoundError: If the caller or the target is not a member
            ForbiddenError: If the caller cannot manage members, or touches
                the OWNER role without being an owner
            ConflictError: If the last owner would be demoted
        """
        try:
            async with atomic(self.session):
                acting = await self.access.authorize(user_id, project_id, Action.MANAGE_MEMBERS)
                member_orm = await self._get_member_or_raise(project_id, member_user_id)
                if Role.OWNER in (member_orm.role, role):
                    self._ensure_can_manage_owner(acting)
                if role != Role.OWNER:
                    await self._ensure_not_last_owner(member_orm)

                previous = member_orm.role
                member_orm.role = role
                await self.session.flush()

            logger.info(
                f"Changed role of user {member_user_id} in project {project_id}: "
                f"{previous.value} -> {role.value}"
            )
            return await self._load_member(member_orm.id)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update role in project {project_id}: {e}", exc_info=True)
            raise

    async def remove_member(self, user_id: int, project_id: int, member_user_id: int) -> Dict[str, str]:
        """
        Remove a user from a project.

        Any member may remove themselves; removing someone else requires
        MANAGE_MEMBERS. Tasks assigned to the removed user become unassigned.

        Raises:
            NotFoundError: If the caller or the target is not a member
            ForbiddenError: If the caller may not remove the target
            ConflictError: If the last owner would be removed
        """
        try:
            async with atomic(self.session):
                if member_user_id == user_id:
                    acting = await self.access.get_membership(user_id, project_id)
                else:
                    acting = await self.access.authorize(user_id, project_id, Action.MANAGE_MEMBERS)
                member_orm = await self._get_member_or_raise(project_id, member_user_id)
                if member_orm.role == Role.OWNER and member_user_id != user_id:
                    self._ensure_can_manage_owner(acting)
                await self._ensure_not_last_owner(member_orm)

                await self.session.execute(
                    update(TaskORM)
                    .where(
                        TaskORM.project_id == project_id,
                        TaskORM.assignee_id == member_user_id,
                    )
                    .values(assignee_id=None)
                    .execution_options(synchronize_session="fetch")
                )
                await self.session.delete(member_orm)
                await self.session.flush()

            logger.info(f"Removed user {member_user_id} from project {project_id}")
            return {"message": "Member removed successfully"}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to remove member from project {project_id}: {e}", exc_info=True)
            raise
