"""
Pydantic models for the taskboard service layer.

Defines the closed enumerations (roles, task status/type/priority), the
input payloads accepted by the services, and the read models they return.
"""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")


class Role(str, Enum):
    """Role of a user within one project."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


class TaskType(str, Enum):
    TASK = "TASK"
    BUG = "BUG"
    FEATURE = "FEATURE"
    STORY = "STORY"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


def _validate_hex_color(v: Optional[str]) -> Optional[str]:
    if v is not None and not HEX_COLOR_PATTERN.match(v):
        raise ValueError(f"Invalid hex color: '{v}'")
    return v


# ==============================================================================
# INPUT PAYLOADS
# ==============================================================================


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class ColumnCreate(BaseModel):
    """Payload for creating a column.

    Leaving ``position`` unset appends the column; an explicit position
    (including 0) inserts it and shifts later siblings.
    """

    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = None
    position: Optional[int] = None
    project_id: int

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hex_color(v)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = None
    position: Optional[int] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hex_color(v)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=10000)
    type: TaskType = TaskType.TASK
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    project_id: int
    column_id: int
    assignee_id: Optional[int] = None
    tag_ids: Optional[List[int]] = None
    position: Optional[int] = None

    @model_validator(mode="after")
    def validate_date_range(self) -> "TaskCreate":
        """
        Validate that the start date does not come after the end date.

        Raises:
            ValueError: If start_date is later than end_date
        """
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be later than end_date")
        return self


class TaskUpdate(BaseModel):
    """Partial task update.

    Only fields explicitly set by the caller are applied, which is also
    what the MEMBER status-only rule inspects.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=10000)
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    column_id: Optional[int] = None
    assignee_id: Optional[int] = None
    tag_ids: Optional[List[int]] = None
    position: Optional[int] = None


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str
    project_id: int

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hex_color(v)


class TagUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _validate_hex_color(v)


class MemberAdd(BaseModel):
    """Add a user to a project, identified by id or by email."""

    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Role = Role.MEMBER


# ==============================================================================
# READ MODELS
# ==============================================================================


class UserSummary(BaseModel):
    id: int
    email: str
    name: Optional[str] = None

    class Config:
        from_attributes = True


class Tag(BaseModel):
    id: int
    name: str
    color: str
    project_id: int

    class Config:
        from_attributes = True


class ColumnSummary(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    position: int

    class Config:
        from_attributes = True


class Task(BaseModel):
    """A task as returned by the services, with its tags, assignee and column."""

    id: int
    title: str
    description: Optional[str] = None
    type: TaskType
    status: TaskStatus
    priority: Priority
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    position: int = Field(..., ge=0)
    project_id: int
    column_id: int
    assignee_id: Optional[int] = None
    assignee: Optional[UserSummary] = None
    tags: List[Tag] = Field(default_factory=list)
    column: Optional[ColumnSummary] = None
    created_at: datetime
    updated_at: datetime


class Column(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    position: int = Field(..., ge=0)
    project_id: int
    tasks: List[Task] = Field(default_factory=list)


class Membership(BaseModel):
    id: int
    project_id: int
    user_id: int
    role: Role
    user: Optional[UserSummary] = None
    created_at: datetime


class Project(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    members: List[Membership] = Field(default_factory=list)
    columns: List[Column] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
