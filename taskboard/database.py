"""
Database layer for taskboard.

Provides SQLAlchemy ORM models, async engine/session management, the
``atomic`` unit-of-work helper, and database initialization.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from taskboard.config import DEFAULT_DATABASE_URL
from taskboard.logging_config import get_logger
from taskboard.models import Priority, Role, TaskStatus, TaskType

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class UserORM(Base):
    """
    SQLAlchemy ORM model for users.

    Users are created by the auth subsystem; this package only references
    them through memberships and task assignment.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    memberships: Mapped[list["ProjectMemberORM"]] = relationship(
        "ProjectMemberORM",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<UserORM(id={self.id}, email={self.email})>"


class ProjectORM(Base):
    """
    SQLAlchemy ORM model for projects.

    A project exclusively owns its memberships, columns, tasks and tags;
    deleting it cascades to all of them.
    """
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    members: Mapped[list["ProjectMemberORM"]] = relationship(
        "ProjectMemberORM",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    columns: Mapped[list["ColumnORM"]] = relationship(
        "ColumnORM",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ColumnORM.position",
    )
    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tags: Mapped[list["TagORM"]] = relationship(
        "TagORM",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ProjectORM(id={self.id}, name={self.name})>"


class ProjectMemberORM(Base):
    """
    SQLAlchemy ORM model for project memberships.

    Exactly one row per (project, user); the role governs every access
    decision inside the project.
    """
    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[Role] = mapped_column(SQLEnum(Role), nullable=False, default=Role.MEMBER)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    project: Mapped["ProjectORM"] = relationship("ProjectORM", back_populates="members")
    user: Mapped["UserORM"] = relationship("UserORM", back_populates="memberships")

    def __repr__(self) -> str:
        return f"<ProjectMemberORM(project_id={self.project_id}, user_id={self.user_id}, role={self.role})>"


class ColumnORM(Base):
    """
    SQLAlchemy ORM model for board columns.

    ``position`` values of the columns of one project always form the
    contiguous range 0..N-1 once a unit of work commits.
    """
    __tablename__ = "board_columns"
    __table_args__ = (
        Index("ix_board_columns_project_position", "project_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    project: Mapped["ProjectORM"] = relationship("ProjectORM", back_populates="columns")
    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        back_populates="column",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskORM.position",
    )

    def __repr__(self) -> str:
        return f"<ColumnORM(id={self.id}, name={self.name}, position={self.position})>"


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    ``position`` is scoped by ``column_id``; a task can be re-parented to
    another column of the same project.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_column_position", "column_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[TaskType] = mapped_column(SQLEnum(TaskType), nullable=False, default=TaskType.TASK)
    status: Mapped[TaskStatus] = mapped_column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.TODO)
    priority: Mapped[Priority] = mapped_column(SQLEnum(Priority), nullable=False, default=Priority.MEDIUM)

    # Scheduling
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Ordering
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    column_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False
    )
    assignee_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    project: Mapped["ProjectORM"] = relationship("ProjectORM", back_populates="tasks")
    column: Mapped["ColumnORM"] = relationship("ColumnORM", back_populates="tasks")
    assignee: Mapped[Optional["UserORM"]] = relationship("UserORM")
    tags: Mapped[list["TagORM"]] = relationship(
        "TagORM",
        secondary=task_tags,
        back_populates="tasks",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<TaskORM(id={self.id}, title={self.title}, column_id={self.column_id}, position={self.position})>"


class TagORM(Base):
    """
    SQLAlchemy ORM model for tags.

    Tag names are unique within a project at the database level.
    """
    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_tag_project_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )

    project: Mapped["ProjectORM"] = relationship("ProjectORM", back_populates="tags")
    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        secondary=task_tags,
        back_populates="tags",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<TagORM(id={self.id}, name={self.name})>"


def _configure_sqlite(engine: AsyncEngine) -> None:
    """
    Install connection hooks that make SQLite behave as a serialisable store.

    SQLAlchemy emits BEGIN itself (as BEGIN IMMEDIATE) so concurrent writers
    queue on the database lock instead of interleaving, SAVEPOINT works, and
    foreign keys are enforced so ON DELETE CASCADE applies.

    Every transaction takes the write lock, including one that only runs
    ``list_*`` or ``get_*`` calls. The lock is held until that transaction
    ends, so a session used for reads should be closed (or committed)
    promptly; other writers wait on it up to the driver's busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy async database URL (default: local SQLite file)
            echo: Log every emitted SQL statement
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.

        Creates the async engine, session maker, and all tables defined
        in the Base metadata.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")
            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
            )
            if self.engine.dialect.name == "sqlite":
                _configure_sqlite(self.engine)

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            # Create all tables
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                project = await ProjectService(session).create_project(user_id, payload)
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}", exc_info=True)
                await session.rollback()
                raise


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block as one all-or-nothing unit against the store.

    Opens a transaction when none is active (committed on success), or a
    SAVEPOINT inside the active one, so a failing step rolls back every
    write of the block and leaves the caller's session usable.

    Example:
        async with atomic(session):
            await reorderer.move(column_id, 2)
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            yield session

