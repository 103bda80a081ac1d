"""
Pytest configuration and fixtures for taskboard tests.

Provides database fixtures, seeded users with one membership per role, and
a project factory.
"""

from types import SimpleNamespace

import pytest
import pytest_asyncio

from taskboard.config import Settings
from taskboard.database import DatabaseManager, ProjectMemberORM, UserORM
from taskboard.models import ColumnCreate, ProjectCreate, Role
from taskboard.services.column_service import ColumnService
from taskboard.services.project_service import ProjectService


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session for tests.

    Example:
        async def test_something(db_session):
            result = await db_session.execute(select(TaskORM))
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def settings():
    """Settings with defaults only, independent of the local config file."""
    return Settings()


@pytest_asyncio.fixture
async def users(db_session):
    """
    Create one user per role plus an outsider.

    Returns:
        Namespace of user ids: owner, admin, member, viewer, outsider

    Ids are plain ints so they stay usable after a failed unit of work
    expires the session's ORM instances.
    """
    names = ["owner", "admin", "member", "viewer", "outsider"]
    rows = [UserORM(email=f"{name}@example.com", name=name.title()) for name in names]
    db_session.add_all(rows)
    await db_session.commit()
    return SimpleNamespace(**{name: row.id for name, row in zip(names, rows)})


@pytest_asyncio.fixture
async def project(db_session, users, settings):
    """
    Create a project owned by ``users.owner`` with ADMIN, MEMBER and VIEWER members.

    Returns:
        Project read model as returned by ProjectService.create_project
    """
    created = await ProjectService(db_session, settings).create_project(
        users.owner, ProjectCreate(name="Sprint")
    )
    db_session.add_all([
        ProjectMemberORM(project_id=created.id, user_id=users.admin, role=Role.ADMIN),
        ProjectMemberORM(project_id=created.id, user_id=users.member, role=Role.MEMBER),
        ProjectMemberORM(project_id=created.id, user_id=users.viewer, role=Role.VIEWER),
    ])
    await db_session.commit()
    return created


@pytest_asyncio.fixture
async def board(db_session, users, project):
    """
    Give the project three columns: the default one plus "Doing" and "Done".

    Returns:
        Namespace with project_id and column ids todo, doing, done
    """
    service = ColumnService(db_session)
    doing = await service.create_column(
        users.owner, ColumnCreate(name="Doing", project_id=project.id)
    )
    done = await service.create_column(
        users.owner, ColumnCreate(name="Done", project_id=project.id)
    )
    await db_session.commit()
    return SimpleNamespace(
        project_id=project.id,
        todo=project.columns[0].id,
        doing=doing.id,
        done=done.id,
    )

