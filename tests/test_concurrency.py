"""
Tests for concurrent writers on the same ordering scope.

Uses a file database so each session gets its own connection.
"""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from taskboard.config import Settings
from taskboard.database import ColumnORM, DatabaseManager, TaskORM, UserORM
from taskboard.models import ColumnCreate, ColumnUpdate, ProjectCreate, TaskCreate, TaskUpdate
from taskboard.services.column_service import ColumnService
from taskboard.services.project_service import ProjectService
from taskboard.services.task_service import TaskService
from tests.helpers import assert_contiguous, column_positions, create_tasks, task_positions


@pytest_asyncio.fixture
async def file_db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def seeded(file_db):
    """Create an owner and a project; return (owner id, project id, first column id)."""
    async with file_db.get_session() as session:
        owner = UserORM(email="owner@example.com")
        session.add(owner)
        await session.commit()
        project = await ProjectService(session, Settings()).create_project(
            owner.id, ProjectCreate(name="Race")
        )
    return owner.id, project.id, project.columns[0].id


@pytest_asyncio.fixture
async def lanes(file_db, seeded):
    """Add "Doing" and "Done" lanes to the seeded project; todo holds 6 tasks, doing 4."""
    owner_id, project_id, todo = seeded
    async with file_db.get_session() as session:
        service = ColumnService(session)
        doing = (await service.create_column(owner_id, ColumnCreate(name="Doing", project_id=project_id))).id
        done = (await service.create_column(owner_id, ColumnCreate(name="Done", project_id=project_id))).id
        todo_tasks = await create_tasks(
            session, owner_id, project_id, todo, [f"T{i}" for i in range(6)]
        )
        doing_tasks = await create_tasks(
            session, owner_id, project_id, doing, [f"D{i}" for i in range(4)]
        )
    return SimpleNamespace(
        owner=owner_id,
        project_id=project_id,
        todo=todo,
        doing=doing,
        done=done,
        todo_tasks=todo_tasks,
        doing_tasks=doing_tasks,
    )


class TestConcurrentWriters:
    """Writers on one scope are serialised and keep positions contiguous."""

    @pytest.mark.asyncio
    async def test_parallel_column_inserts(self, file_db, seeded):
        owner_id, project_id, _ = seeded

        async def add_column(name, position):
            async with file_db.get_session() as session:
                await ColumnService(session).create_column(
                    owner_id, ColumnCreate(name=name, position=position, project_id=project_id)
                )

        await asyncio.gather(*(add_column(f"C{i}", i % 2) for i in range(6)))

        async with file_db.get_session() as session:
            positions = await column_positions(session, project_id)
        assert len(positions) == 7
        assert_contiguous(positions)

    @pytest.mark.asyncio
    async def test_parallel_task_inserts(self, file_db, seeded):
        owner_id, project_id, column_id = seeded

        async def add_task(title):
            async with file_db.get_session() as session:
                await TaskService(session).create_task(
                    owner_id, TaskCreate(title=title, project_id=project_id, column_id=column_id)
                )

        await asyncio.gather(*(add_task(f"T{i}") for i in range(5)))

        async with file_db.get_session() as session:
            positions = await task_positions(session, column_id)
        assert len(positions) == 5
        assert_contiguous(positions)

    @pytest.mark.asyncio
    async def test_parallel_column_moves_deletes_and_inserts(self, file_db, seeded):
        owner_id, project_id, first = seeded
        async with file_db.get_session() as session:
            service = ColumnService(session)
            for i in range(5):
                await service.create_column(
                    owner_id, ColumnCreate(name=f"C{i}", project_id=project_id)
                )
            ids = [c.id for c in await service.list_columns(owner_id, project_id)]

        async def move(column_id, position):
            async with file_db.get_session() as session:
                await ColumnService(session).update_column(
                    owner_id, column_id, ColumnUpdate(position=position)
                )

        async def remove(column_id):
            async with file_db.get_session() as session:
                await ColumnService(session).delete_column(owner_id, column_id)

        async def add(name, position):
            async with file_db.get_session() as session:
                await ColumnService(session).create_column(
                    owner_id, ColumnCreate(name=name, position=position, project_id=project_id)
                )

        await asyncio.gather(
            move(ids[5], 0),
            remove(ids[1]),
            move(ids[0], 1),
            add("New1", 2),
            remove(ids[3]),
            move(ids[4], 0),
            add("New2", 0),
        )

        async with file_db.get_session() as session:
            positions = await column_positions(session, project_id)
        assert len(positions) == 6
        assert ids[1] not in positions and ids[3] not in positions
        assert_contiguous(positions)

    @pytest.mark.asyncio
    async def test_parallel_task_moves_across_columns(self, file_db, lanes):
        t, d = lanes.todo_tasks, lanes.doing_tasks

        async def update(task_id, **fields):
            async with file_db.get_session() as session:
                await TaskService(session).update_task(lanes.owner, task_id, TaskUpdate(**fields))

        async def remove(task_id):
            async with file_db.get_session() as session:
                await TaskService(session).delete_task(lanes.owner, task_id)

        async def add(column_id, position):
            async with file_db.get_session() as session:
                await TaskService(session).create_task(
                    lanes.owner,
                    TaskCreate(
                        title="New", project_id=lanes.project_id, column_id=column_id, position=position
                    ),
                )

        await asyncio.gather(
            update(t[0], column_id=lanes.doing, position=0),
            add(lanes.doing, 1),
            update(t[1], column_id=lanes.doing, position=0),
            remove(t[4]),
            update(t[5], position=0),
            update(d[3], column_id=lanes.done),
            remove(d[0]),
            update(t[2], column_id=lanes.done, position=0),
            add(lanes.todo, 0),
            update(d[1], position=0),
        )

        async with file_db.get_session() as session:
            todo = await task_positions(session, lanes.todo)
            doing = await task_positions(session, lanes.doing)
            done = await task_positions(session, lanes.done)
        assert set(todo) >= {t[3], t[5]} and len(todo) == 3
        assert set(doing) >= {t[0], t[1], d[1], d[2]} and len(doing) == 5
        assert set(done) == {d[3], t[2]}
        for positions in (todo, doing, done):
            assert_contiguous(positions)


class TestStaleSessionState:
    """Moves and deletes use the stored slot, not one a session read earlier."""

    @pytest.mark.asyncio
    async def test_column_move_after_another_writer_moved(self, file_db, seeded):
        owner_id, project_id, a = seeded
        async with file_db.get_session() as session:
            service = ColumnService(session)
            b = (await service.create_column(owner_id, ColumnCreate(name="B", project_id=project_id))).id
            c = (await service.create_column(owner_id, ColumnCreate(name="C", project_id=project_id))).id

        async with file_db.get_session() as stale:
            loaded = await stale.get(ColumnORM, b)
            assert loaded.position == 1
            await stale.commit()

            async with file_db.get_session() as other:
                await ColumnService(other).update_column(owner_id, a, ColumnUpdate(position=2))

            await ColumnService(stale).update_column(owner_id, b, ColumnUpdate(position=2))

        async with file_db.get_session() as session:
            assert await column_positions(session, project_id) == {c: 0, a: 1, b: 2}

    @pytest.mark.asyncio
    async def test_task_delete_after_another_writer_deleted(self, file_db, lanes):
        t = lanes.todo_tasks

        async with file_db.get_session() as stale:
            loaded = await stale.get(TaskORM, t[3])
            assert loaded.position == 3
            await stale.commit()

            async with file_db.get_session() as other:
                await TaskService(other).delete_task(lanes.owner, t[0])

            await TaskService(stale).delete_task(lanes.owner, t[3])

        async with file_db.get_session() as session:
            assert await task_positions(session, lanes.todo) == {t[1]: 0, t[2]: 1, t[4]: 2, t[5]: 3}

    @pytest.mark.asyncio
    async def test_task_column_move_after_another_writer_moved_it(self, file_db, lanes):
        t = lanes.todo_tasks

        async with file_db.get_session() as stale:
            loaded = await stale.get(TaskORM, t[1])
            assert loaded.column_id == lanes.todo
            await stale.commit()

            async with file_db.get_session() as other:
                await TaskService(other).update_task(
                    lanes.owner, t[1], TaskUpdate(column_id=lanes.doing, position=0)
                )

            await TaskService(stale).update_task(
                lanes.owner, t[1], TaskUpdate(column_id=lanes.done)
            )

        async with file_db.get_session() as session:
            todo = await task_positions(session, lanes.todo)
            doing = await task_positions(session, lanes.doing)
            done = await task_positions(session, lanes.done)
        assert done == {t[1]: 0}
        assert len(todo) == 5 and len(doing) == 4
        assert_contiguous(todo)
        assert_contiguous(doing)
