"""Test helper utilities for taskboard service tests."""

from tests.helpers.board_helpers import (
    # Seeding Helpers
    create_tasks,

    # Position Helpers
    column_positions,
    task_positions,
    assert_contiguous,
)

__all__ = [
    "create_tasks",
    "column_positions",
    "task_positions",
    "assert_contiguous",
]
