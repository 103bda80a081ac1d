"""
Role-based access control for project resources.

Every service resolves the caller's membership through ``AccessGate``
before reading or mutating anything inside a project. Non-members get
``NotFoundError`` so the existence of a project is never leaked; members
whose role is not allowed get ``ForbiddenError``.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import ProjectMemberORM
from taskboard.logging_config import get_logger
from taskboard.models import Role
from taskboard.services.errors import ForbiddenError, NotFoundError

logger = get_logger(__name__)


class Action(str, Enum):
    """Operations guarded by the access gate."""
    VIEW = "view"
    CREATE_COLUMN = "create_column"
    UPDATE_COLUMN = "update_column"
    DELETE_COLUMN = "delete_column"
    CREATE_TAG = "create_tag"
    UPDATE_TAG = "update_tag"
    DELETE_TAG = "delete_tag"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    UPDATE_PROJECT = "update_project"
    DELETE_PROJECT = "delete_project"
    MANAGE_MEMBERS = "manage_members"


ALL_ROLES: FrozenSet[Role] = frozenset(Role)
MANAGERS: FrozenSet[Role] = frozenset({Role.OWNER, Role.ADMIN})

# Permissions differ per resource type (a MEMBER may create tasks but not
# columns), so they are listed explicitly rather than derived from a ranking.
PERMISSIONS: Dict[Action, FrozenSet[Role]] = {
    Action.VIEW: ALL_ROLES,
    Action.CREATE_COLUMN: MANAGERS,
    Action.UPDATE_COLUMN: MANAGERS,
    Action.DELETE_COLUMN: MANAGERS,
    Action.CREATE_TAG: MANAGERS,
    Action.UPDATE_TAG: MANAGERS,
    Action.DELETE_TAG: MANAGERS,
    Action.CREATE_TASK: frozenset({Role.OWNER, Role.ADMIN, Role.MEMBER}),
    # MEMBER is narrowed further by TaskService (assignee or status-only)
    Action.UPDATE_TASK: frozenset({Role.OWNER, Role.ADMIN, Role.MEMBER}),
    Action.DELETE_TASK: MANAGERS,
    Action.UPDATE_PROJECT: MANAGERS,
    Action.DELETE_PROJECT: frozenset({Role.OWNER}),
    Action.MANAGE_MEMBERS: MANAGERS,
}


class AccessGate:
    """
    Resolves a user's role within a project and enforces allow-lists.

    Read-only: never writes to the store.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the access gate.

        Args:
            session: Active async database session
        """
        self.session = session

    async def get_membership(self, user_id: int, project_id: int) -> ProjectMemberORM:
        """
        Look up the (user, project) membership.

        Raises:
            NotFoundError: If the user is not a member of the project
        """
        result = await self.session.execute(
            select(ProjectMemberORM).where(
                ProjectMemberORM.project_id == project_id,
                ProjectMemberORM.user_id == user_id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            logger.warning(f"Access denied: user {user_id} is not a member of project {project_id}")
            raise NotFoundError("Project not found or access denied")
        return membership

    async def check_access(
        self,
        user_id: int,
        project_id: int,
        allowed_roles: Iterable[Role],
    ) -> ProjectMemberORM:
        """
        Verify the user holds one of ``allowed_roles`` in the project.

        Args:
            user_id: Acting user
            project_id: Project the resource belongs to
            allowed_roles: Roles permitted for the operation

        Returns:
            The caller's membership row

        Raises:
            NotFoundError: If the user is not a member of the project
            ForbiddenError: If the membership role is not allowed
        """
        membership = await self.get_membership(user_id, project_id)
        allowed = frozenset(allowed_roles)
        if membership.role not in allowed:
            required = ", ".join(sorted(role.value for role in allowed))
            logger.warning(
                f"Access denied: user {user_id} has role {membership.role.value} "
                f"in project {project_id}, requires one of: {required}"
            )
            raise ForbiddenError(f"Insufficient permissions. Required roles: {required}")
        return membership

    async def authorize(self, user_id: int, project_id: int, action: Action) -> ProjectMemberORM:
        """Check access using the allow-list registered for ``action``."""
        return await self.check_access(user_id, project_id, PERMISSIONS[action])
