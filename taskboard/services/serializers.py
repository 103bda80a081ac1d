"""
Conversion helpers from ORM rows to the pydantic read models.

Async sessions cannot lazy-load, so every query that feeds these helpers
eager-loads exactly the relationships the helper touches; the matching
loader options live next to the helpers.
"""

from typing import List

from sqlalchemy.orm import selectinload

from taskboard.database import (
    ColumnORM,
    ProjectMemberORM,
    ProjectORM,
    TagORM,
    TaskORM,
    UserORM,
)
from taskboard.models import (
    Column,
    ColumnSummary,
    Membership,
    Project,
    Tag,
    Task,
    UserSummary,
)

# Loader options for a task with its tags, assignee and column
TASK_LOAD_OPTIONS = (
    selectinload(TaskORM.tags),
    selectinload(TaskORM.assignee),
    selectinload(TaskORM.column),
)

# Loader options for a column with its ordered tasks
COLUMN_LOAD_OPTIONS = (
    selectinload(ColumnORM.tasks).selectinload(TaskORM.tags),
    selectinload(ColumnORM.tasks).selectinload(TaskORM.assignee),
)

# Loader options for a project with members, columns (+ tasks) and tags
PROJECT_LOAD_OPTIONS = (
    selectinload(ProjectORM.members).selectinload(ProjectMemberORM.user),
    selectinload(ProjectORM.columns).selectinload(ColumnORM.tasks).selectinload(TaskORM.tags),
    selectinload(ProjectORM.columns).selectinload(ColumnORM.tasks).selectinload(TaskORM.assignee),
    selectinload(ProjectORM.tags),
)


def user_summary(user_orm: UserORM) -> UserSummary:
    return UserSummary(id=user_orm.id, email=user_orm.email, name=user_orm.name)


def tag_to_model(tag_orm: TagORM) -> Tag:
    return Tag.model_validate(tag_orm)


def column_summary(column_orm: ColumnORM) -> ColumnSummary:
    return ColumnSummary.model_validate(column_orm)


def task_to_model(task_orm: TaskORM, include_column: bool = True) -> Task:
    """
    Convert TaskORM to the Task read model.

    Args:
        task_orm: Task with tags and assignee loaded (and column, when
            ``include_column`` is True)
        include_column: Attach a summary of the owning column

    Returns:
        Pydantic Task instance
    """
    return Task(
        id=task_orm.id,
        title=task_orm.title,
        description=task_orm.description,
        type=task_orm.type,
        status=task_orm.status,
        priority=task_orm.priority,
        start_date=task_orm.start_date,
        end_date=task_orm.end_date,
        due_date=task_orm.due_date,
        position=task_orm.position,
        project_id=task_orm.project_id,
        column_id=task_orm.column_id,
        assignee_id=task_orm.assignee_id,
        assignee=user_summary(task_orm.assignee) if task_orm.assignee else None,
        tags=[tag_to_model(tag) for tag in sorted(task_orm.tags, key=lambda t: t.id)],
        column=column_summary(task_orm.column) if include_column else None,
        created_at=task_orm.created_at,
        updated_at=task_orm.updated_at,
    )


def column_to_model(column_orm: ColumnORM) -> Column:
    """Convert ColumnORM (with tasks loaded) to the Column read model."""
    return Column(
        id=column_orm.id,
        name=column_orm.name,
        color=column_orm.color,
        position=column_orm.position,
        project_id=column_orm.project_id,
        tasks=[
            task_to_model(task, include_column=False)
            for task in sorted(column_orm.tasks, key=lambda t: t.position)
        ],
    )


def membership_to_model(member_orm: ProjectMemberORM) -> Membership:
    return Membership(
        id=member_orm.id,
        project_id=member_orm.project_id,
        user_id=member_orm.user_id,
        role=member_orm.role,
        user=user_summary(member_orm.user),
        created_at=member_orm.created_at,
    )


def project_to_model(project_orm: ProjectORM) -> Project:
    """Convert ProjectORM (loaded with PROJECT_LOAD_OPTIONS) to the Project read model."""
    columns: List[Column] = [
        column_to_model(column)
        for column in sorted(project_orm.columns, key=lambda c: c.position)
    ]
    return Project(
        id=project_orm.id,
        name=project_orm.name,
        description=project_orm.description,
        created_at=project_orm.created_at,
        updated_at=project_orm.updated_at,
        members=[membership_to_model(m) for m in project_orm.members],
        columns=columns,
        tags=[tag_to_model(tag) for tag in project_orm.tags],
    )
