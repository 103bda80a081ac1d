"""Entry point for taskboard maintenance commands.

This module allows running taskboard as a module:
    python -m taskboard init-db
    python -m taskboard check

Or as an installed command:
    taskboard check --database-url sqlite+aiosqlite:///board.db
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import get_settings
from taskboard.database import ColumnORM, DatabaseManager, TaskORM
from taskboard.logging_config import get_logger, setup_logging
from taskboard.services.ordering import is_contiguous

# Initialize logger for this module
logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskboard", description="Taskboard maintenance commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create the database tables")
    init_db.add_argument("--database-url", help="Async SQLAlchemy URL (defaults to settings)")

    check = subparsers.add_parser("check", help="Verify column and task positions are contiguous")
    check.add_argument("--database-url", help="Async SQLAlchemy URL (defaults to settings)")
    return parser


async def find_ordering_violations(session: AsyncSession) -> List[Tuple[str, int, List[int]]]:
    """
    Scan every project's columns and every column's tasks for gaps or duplicates.

    Returns:
        List of (scope kind, scope id, sorted positions) for each broken scope
    """
    violations: List[Tuple[str, int, List[int]]] = []
    for kind, scope_column, position_column in (
        ("project", ColumnORM.project_id, ColumnORM.position),
        ("column", TaskORM.column_id, TaskORM.position),
    ):
        result = await session.execute(
            select(scope_column, position_column).order_by(scope_column, position_column)
        )
        scopes = {}
        for scope_id, position in result.all():
            scopes.setdefault(scope_id, []).append(position)
        for scope_id, positions in scopes.items():
            if not is_contiguous(positions):
                violations.append((kind, scope_id, positions))
    return violations


async def _run(command: str, database_url: str, echo: bool) -> int:
    db_manager = DatabaseManager(database_url, echo=echo)
    await db_manager.initialize()
    try:
        if command == "init-db":
            print(f"Database ready: {database_url}")
            return 0

        async with db_manager.get_session() as session:
            violations = await find_ordering_violations(session)
        for kind, scope_id, positions in violations:
            logger.warning(f"Non-contiguous positions in {kind} {scope_id}: {positions}")
            print(f"{kind} {scope_id}: positions {positions} are not contiguous")
        if violations:
            return 1
        print("All positions are contiguous")
        return 0
    finally:
        await db_manager.close()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for taskboard.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]
    options = build_parser().parse_args(args)

    settings = get_settings()
    # Initialize logging before any other operations
    setup_logging(settings.log_level, console=True)
    database_url = options.database_url or settings.database_url

    try:
        return asyncio.run(_run(options.command, database_url, settings.sql_echo))
    except KeyboardInterrupt:
        logger.info("taskboard interrupted by user (Ctrl+C)")
        return 130
    except Exception:
        logger.error(f"taskboard {options.command} failed", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
