"""
Tests for the position planners and PositionReorderer.

Tests cover:
- Insert, remove and move planning on in-memory position maps
- Range validation of requested positions
- Store application of inserts, removals and moves
"""

import pytest

from taskboard.database import ColumnORM, ProjectORM, TaskORM
from taskboard.services.errors import BadRequestError, InvalidPositionError, NotFoundError
from taskboard.services.ordering import (
    PositionReorderer,
    RangeShift,
    insert_shift,
    is_contiguous,
    plan_insert,
    plan_move,
    plan_move_across,
    plan_remove,
)
from tests.helpers import assert_contiguous, column_positions, create_tasks, task_positions


def _board(*items):
    return {item: position for position, item in enumerate(items)}


class TestPlanInsert:
    """Tests for choosing the slot of a new item."""

    def test_append_when_no_position_requested(self):
        assert plan_insert(3) == 3

    def test_explicit_zero_is_honoured(self):
        assert plan_insert(3, 0) == 0

    def test_request_past_end_is_clamped(self):
        assert plan_insert(2, 10) == 2

    def test_negative_request_rejected(self):
        with pytest.raises(InvalidPositionError):
            plan_insert(2, -1)

    def test_invalid_position_is_bad_request(self):
        assert issubclass(InvalidPositionError, BadRequestError)
        assert InvalidPositionError.status_code == 400

    def test_insert_then_remove_restores_positions(self):
        before = _board("a", "b", "c", "d")
        opened = insert_shift(plan_insert(len(before), 1)).apply(before)
        opened["new"] = 1
        assert is_contiguous(opened.values())
        assert opened["b"] == 2

        del opened["new"]
        assert plan_remove(1).apply(opened) == before


class TestPlanMove:
    """Tests for moves inside one scope."""

    def test_forward_move(self):
        positions = _board("t1", "t2", "t3")
        shift = plan_move(3, 0, 2)
        assert shift == RangeShift(lower=1, upper=2, delta=-1)

        moved = shift.apply({k: v for k, v in positions.items() if k != "t1"})
        moved["t1"] = 2
        assert moved == {"t2": 0, "t3": 1, "t1": 2}

    def test_backward_move(self):
        positions = _board("a", "b", "c", "d")
        shift = plan_move(4, 3, 1)
        assert shift == RangeShift(lower=1, upper=2, delta=1)

        moved = shift.apply({k: v for k, v in positions.items() if k != "d"})
        moved["d"] = 1
        assert moved == {"a": 0, "d": 1, "b": 2, "c": 3}

    def test_same_position_is_noop(self):
        assert plan_move(3, 1, 1) is None

    @pytest.mark.parametrize("new_position", [-1, 3])
    def test_out_of_range_rejected(self, new_position):
        with pytest.raises(InvalidPositionError):
            plan_move(3, 0, new_position)


class TestPlanMoveAcross:
    """Tests for moves between two scopes."""

    def test_conserves_items(self):
        source = _board("a", "b", "c")
        target = _board("x", "y")
        close_gap, open_slot = plan_move_across(len(target), 1, 0)

        source = close_gap.apply({k: v for k, v in source.items() if k != "b"})
        target = open_slot.apply(target)
        target["b"] = 0

        assert source == {"a": 0, "c": 1}
        assert target == {"b": 0, "x": 1, "y": 2}
        assert len(source) + len(target) == 5

    def test_append_to_empty_target(self):
        close_gap, open_slot = plan_move_across(0, 0, 0)
        assert close_gap == RangeShift(lower=1, upper=None, delta=-1)
        assert open_slot == RangeShift(lower=0, upper=None, delta=1)

    def test_past_target_end_rejected(self):
        with pytest.raises(InvalidPositionError):
            plan_move_across(2, 0, 3)


class TestIsContiguous:
    """Tests for the contiguity check."""

    @pytest.mark.parametrize("positions,expected", [
        ([], True),
        ([0], True),
        ([2, 0, 1], True),
        ([0, 2], False),
        ([0, 1, 1], False),
        ([1, 2], False),
    ])
    def test_contiguity(self, positions, expected):
        assert is_contiguous(positions) is expected


class TestPositionReorderer:
    """Tests applying plans to stored rows."""

    @pytest.mark.asyncio
    async def test_insert_in_middle_shifts_later_columns(self, db_session, board):
        reorderer = PositionReorderer(db_session, ColumnORM, "project_id", ProjectORM)

        position = await reorderer.insert(board.project_id, 1)
        db_session.add(ColumnORM(name="Review", position=position, project_id=board.project_id))
        await db_session.flush()

        positions = await column_positions(db_session, board.project_id)
        assert position == 1
        assert positions[board.todo] == 0
        assert positions[board.doing] == 2
        assert positions[board.done] == 3
        assert_contiguous(positions)

    @pytest.mark.asyncio
    async def test_count(self, db_session, board):
        reorderer = PositionReorderer(db_session, ColumnORM, "project_id", ProjectORM)
        assert await reorderer.count(board.project_id) == 3

    @pytest.mark.asyncio
    async def test_move_backward(self, db_session, users, board):
        t1, t2, t3 = await create_tasks(
            db_session, users.owner, board.project_id, board.todo, ["T1", "T2", "T3"]
        )
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        await reorderer.move(t3, 0)

        assert await task_positions(db_session, board.todo) == {t3: 0, t1: 1, t2: 2}

    @pytest.mark.asyncio
    async def test_failed_move_changes_nothing(self, db_session, users, board):
        ids = await create_tasks(
            db_session, users.owner, board.project_id, board.todo, ["T1", "T2"]
        )
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        with pytest.raises(InvalidPositionError):
            await reorderer.move(ids[0], 5)

        assert await task_positions(db_session, board.todo) == {ids[0]: 0, ids[1]: 1}

    @pytest.mark.asyncio
    async def test_lock_item_reads_stored_slot(self, db_session, users, board):
        ids = await create_tasks(
            db_session, users.owner, board.project_id, board.doing, ["T1", "T2"]
        )
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        assert await reorderer.lock_item(ids[1]) == (board.doing, 1)

    @pytest.mark.asyncio
    async def test_lock_item_missing(self, db_session, board):
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        with pytest.raises(NotFoundError):
            await reorderer.lock_item(4242)

    @pytest.mark.asyncio
    async def test_remove_deletes_and_closes_gap(self, db_session, board):
        reorderer = PositionReorderer(db_session, ColumnORM, "project_id", ProjectORM)

        assert await reorderer.remove(board.todo) == (board.project_id, 0)

        assert await column_positions(db_session, board.project_id) == {board.doing: 0, board.done: 1}

    @pytest.mark.asyncio
    async def test_move_across_scope_appends_by_default(self, db_session, users, board):
        t1, t2 = await create_tasks(db_session, users.owner, board.project_id, board.todo, ["T1", "T2"])
        (d1,) = await create_tasks(db_session, users.owner, board.project_id, board.done, ["D1"])
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        await reorderer.move_across_scope(t1, board.done)

        assert await task_positions(db_session, board.todo) == {t2: 0}
        assert await task_positions(db_session, board.done) == {d1: 0, t1: 1}

    @pytest.mark.asyncio
    async def test_move_across_into_own_scope_is_plain_move(self, db_session, users, board):
        t1, t2 = await create_tasks(db_session, users.owner, board.project_id, board.todo, ["T1", "T2"])
        reorderer = PositionReorderer(db_session, TaskORM, "column_id", ColumnORM)

        await reorderer.move_across_scope(t1, board.todo)
        assert await task_positions(db_session, board.todo) == {t1: 0, t2: 1}

        await reorderer.move_across_scope(t1, board.todo, 1)
        assert await task_positions(db_session, board.todo) == {t2: 0, t1: 1}
