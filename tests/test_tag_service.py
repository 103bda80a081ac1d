"""
Tests for TagService - tag CRUD and the per-project unique name rule.
"""

import pytest
from sqlalchemy import select

from taskboard.database import task_tags
from taskboard.models import TagCreate, TagUpdate, TaskCreate
from taskboard.services.errors import ConflictError, ForbiddenError, NotFoundError
from taskboard.services.tag_service import TagService
from taskboard.services.task_service import TaskService


class TestTagService:
    """Tests for tag operations."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, db_session, users, project):
        service = TagService(db_session)

        await service.create_tag(users.admin, TagCreate(name="ui", color="#00f", project_id=project.id))
        await service.create_tag(users.admin, TagCreate(name="bug", color="#f00", project_id=project.id))

        tags = await service.list_tags(users.viewer, project.id)
        assert [(t.name, t.color) for t in tags] == [("bug", "#f00"), ("ui", "#00f")]

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, db_session, users, project):
        service = TagService(db_session)
        await service.create_tag(users.owner, TagCreate(name="bug", color="#f00", project_id=project.id))

        with pytest.raises(ConflictError):
            await service.create_tag(users.owner, TagCreate(name="bug", color="#0f0", project_id=project.id))

    @pytest.mark.asyncio
    async def test_rename_onto_existing_name_conflicts(self, db_session, users, project):
        service = TagService(db_session)
        await service.create_tag(users.owner, TagCreate(name="bug", color="#f00", project_id=project.id))
        ui = await service.create_tag(users.owner, TagCreate(name="ui", color="#00f", project_id=project.id))

        with pytest.raises(ConflictError):
            await service.update_tag(users.owner, ui.id, TagUpdate(name="bug"))

    @pytest.mark.asyncio
    async def test_update_color(self, db_session, users, project):
        service = TagService(db_session)
        tag = await service.create_tag(users.owner, TagCreate(name="bug", color="#f00", project_id=project.id))

        updated = await service.update_tag(users.admin, tag.id, TagUpdate(color="#a0a0a0"))

        assert updated.name == "bug"
        assert updated.color == "#a0a0a0"

    @pytest.mark.asyncio
    async def test_member_cannot_create(self, db_session, users, project):
        service = TagService(db_session)

        with pytest.raises(ForbiddenError):
            await service.create_tag(users.member, TagCreate(name="x", color="#fff", project_id=project.id))

    @pytest.mark.asyncio
    async def test_get_tag_as_outsider(self, db_session, users, project):
        service = TagService(db_session)
        tag = await service.create_tag(users.owner, TagCreate(name="x", color="#fff", project_id=project.id))

        with pytest.raises(NotFoundError):
            await service.get_tag(users.outsider, tag.id)

    @pytest.mark.asyncio
    async def test_delete_detaches_from_tasks(self, db_session, users, project):
        service = TagService(db_session)
        tag = await service.create_tag(users.owner, TagCreate(name="x", color="#fff", project_id=project.id))
        await TaskService(db_session).create_task(
            users.owner,
            TaskCreate(
                title="A", project_id=project.id, column_id=project.columns[0].id, tag_ids=[tag.id]
            ),
        )

        result = await service.delete_tag(users.admin, tag.id)

        assert result == {"message": "Tag deleted successfully"}
        links = await db_session.execute(select(task_tags.c.task_id).where(task_tags.c.tag_id == tag.id))
        assert links.all() == []
        with pytest.raises(NotFoundError):
            await service.get_tag(users.owner, tag.id)
