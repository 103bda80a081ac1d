"""
Ordered-collection reordering for taskboard.

Columns (scoped by project) and tasks (scoped by column) both carry a dense,
zero-based ``position``. This module keeps those positions a contiguous
permutation of 0..N-1 across inserts, removals, moves inside a scope and
moves between scopes.

The algorithm lives in pure planner functions that only look at counts and
positions, so it can be tested without a database. ``PositionReorderer``
applies those plans to the store as range UPDATEs inside one atomic unit,
after locking the scope's parent row(s).
"""

from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Mapping, Optional, Set, Tuple, Type

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import Base, atomic
from taskboard.logging_config import get_logger
from taskboard.services.errors import InvalidPositionError, NotFoundError

logger = get_logger(__name__)

# Out-of-range slot an item is parked in while its siblings shift
SENTINEL_POSITION = -1


@dataclass(frozen=True)
class RangeShift:
    """Shift every position in ``[lower, upper]`` by ``delta``.

    ``upper`` of None means unbounded.
    """

    lower: int
    upper: Optional[int]
    delta: int

    def covers(self, position: int) -> bool:
        if position < self.lower:
            return False
        return self.upper is None or position <= self.upper

    def apply(self, positions: Mapping[Hashable, int]) -> Dict[Hashable, int]:
        """Return a copy of ``positions`` with this shift applied."""
        return {
            item: position + self.delta if self.covers(position) else position
            for item, position in positions.items()
        }


# ==============================================================================
# PURE PLANNERS
# ==============================================================================


def plan_insert(count: int, requested: Optional[int] = None) -> int:
    """
    Decide where a new item goes in a scope of ``count`` items.

    Appends when no position is requested. A request past the end is
    clamped to ``count`` so no gap can open.

    Raises:
        InvalidPositionError: If the requested position is negative
    """
    if requested is None:
        return count
    if requested < 0:
        raise InvalidPositionError(f"Position must be non-negative, got {requested}")
    return min(requested, count)


def insert_shift(position: int) -> RangeShift:
    """Shift that opens a slot at ``position``."""
    return RangeShift(lower=position, upper=None, delta=1)


def plan_remove(removed_position: int) -> RangeShift:
    """Shift that closes the gap left at ``removed_position``."""
    return RangeShift(lower=removed_position + 1, upper=None, delta=-1)


def plan_move(count: int, old_position: int, new_position: int) -> Optional[RangeShift]:
    """
    Plan a move inside one scope of ``count`` items.

    Returns None for a no-op move. Moving forward pulls ``(old, new]`` down
    by one; moving backward pushes ``[new, old)`` up by one.

    Raises:
        InvalidPositionError: If ``new_position`` is outside ``[0, count-1]``
    """
    if new_position < 0 or new_position >= count:
        raise InvalidPositionError(
            f"Invalid position {new_position}: must be between 0 and {count - 1}"
        )
    if old_position == new_position:
        return None
    if old_position < new_position:
        return RangeShift(lower=old_position + 1, upper=new_position, delta=-1)
    return RangeShift(lower=new_position, upper=old_position - 1, delta=1)


def plan_move_across(
    target_count: int,
    old_position: int,
    new_position: int,
) -> Tuple[RangeShift, RangeShift]:
    """
    Plan a move from one scope into another holding ``target_count`` items.

    Returns the shift closing the gap in the source scope and the shift
    opening a slot in the target scope.

    Raises:
        InvalidPositionError: If ``new_position`` is outside ``[0, target_count]``
    """
    if new_position < 0 or new_position > target_count:
        raise InvalidPositionError(
            f"Invalid position {new_position}: must be between 0 and {target_count}"
        )
    return plan_remove(old_position), insert_shift(new_position)


def is_contiguous(positions: Iterable[int]) -> bool:
    """Check that ``positions`` is exactly {0, ..., N-1}."""
    ordered = sorted(positions)
    return ordered == list(range(len(ordered)))


# ==============================================================================
# STORE APPLICATION
# ==============================================================================


class PositionReorderer:
    """
    Applies position plans to one ordered ORM model.

    Every operation locks the scope's parent row before it reads a count or
    an item's current slot, so plans are always made from the state the
    lock protects. Callers pass item ids, never positions they read earlier.

    Args:
        session: Active async database session
        model: ORM class carrying ``id`` and ``position`` columns
        scope_attr: Name of the model attribute holding the scope id
        parent_model: ORM class the scope id refers to; its rows are locked
            to serialise writers on the same scope

    Example:
        reorderer = PositionReorderer(session, ColumnORM, "project_id", ProjectORM)
        position = await reorderer.insert(project_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        model: Type[Base],
        scope_attr: str,
        parent_model: Type[Base],
    ) -> None:
        self.session = session
        self.model = model
        self.scope_column = getattr(model, scope_attr)
        self.scope_attr = scope_attr
        self.parent_model = parent_model

    async def lock_scope(self, *scope_ids: int) -> None:
        """
        Lock the parent rows of the given scopes until the unit of work ends.

        Rows are locked in ascending id order so two cross-scope moves can
        never deadlock on each other.
        """
        for scope_id in sorted(set(scope_ids)):
            await self.session.execute(
                select(self.parent_model.id)
                .where(self.parent_model.id == scope_id)
                .with_for_update()
            )

    async def count(self, scope_id: int) -> int:
        """Number of items currently in the scope."""
        result = await self.session.execute(
            select(func.count()).select_from(self.model).where(self.scope_column == scope_id)
        )
        return result.scalar_one()

    async def _current_slot(self, item_id: int) -> Tuple[int, int]:
        result = await self.session.execute(
            select(self.scope_column, self.model.position).where(self.model.id == item_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(f"{self.model.__tablename__} row {item_id} not found")
        return row[0], row[1]

    async def lock_item(self, item_id: int, *other_scope_ids: int) -> Tuple[int, int]:
        """
        Lock the item's scope (plus ``other_scope_ids``) and return its slot.

        The slot is read again once the lock is held. If another writer
        re-parented the item in between, the new scope is locked too and the
        read repeats.

        Returns:
            (scope id, position) of the item as seen under the lock

        Raises:
            NotFoundError: If the item no longer exists
        """
        locked: Set[int] = set()
        scope_id, _ = await self._current_slot(item_id)
        while True:
            wanted = {scope_id, *other_scope_ids} - locked
            await self.lock_scope(*wanted)
            locked |= wanted
            current_scope_id, position = await self._current_slot(item_id)
            if current_scope_id == scope_id:
                return scope_id, position
            scope_id = current_scope_id

    async def _shift(self, scope_id: int, shift: RangeShift, exclude_id: Optional[int] = None) -> None:
        position = self.model.position
        stmt = (
            update(self.model)
            .where(self.scope_column == scope_id)
            .where(position >= shift.lower)
        )
        if shift.upper is not None:
            stmt = stmt.where(position <= shift.upper)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        await self.session.execute(
            stmt.values(position=position + shift.delta)
            .execution_options(synchronize_session="fetch")
        )

    async def _set_position(self, item_id: int, position: int, scope_id: Optional[int] = None) -> None:
        values = {"position": position}
        if scope_id is not None:
            values[self.scope_attr] = scope_id
        await self.session.execute(
            update(self.model)
            .where(self.model.id == item_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )

    async def insert(self, scope_id: int, requested: Optional[int] = None) -> int:
        """
        Open a slot for a new item and return its position.

        The caller creates the item with the returned position inside the
        same unit of work.

        Raises:
            InvalidPositionError: If the requested position is negative
        """
        async with atomic(self.session):
            await self.lock_scope(scope_id)
            count = await self.count(scope_id)
            position = plan_insert(count, requested)
            if position < count:
                await self._shift(scope_id, insert_shift(position))
            logger.debug(
                f"Reserved position {position} in {self.model.__tablename__} "
                f"scope {scope_id} (count={count})"
            )
            return position

    async def remove(self, item_id: int) -> Tuple[int, int]:
        """
        Delete an item and close the gap it leaves in its scope.

        Rows that reference the item go with it through ON DELETE CASCADE.

        Returns:
            (scope id, position) the item held when it was deleted

        Raises:
            NotFoundError: If the item no longer exists
        """
        async with atomic(self.session):
            scope_id, position = await self.lock_item(item_id)
            await self.session.execute(
                delete(self.model)
                .where(self.model.id == item_id)
                .execution_options(synchronize_session="fetch")
            )
            await self._shift(scope_id, plan_remove(position))
            logger.debug(
                f"Removed {self.model.__tablename__} {item_id}, closed gap at {position} "
                f"in scope {scope_id}"
            )
            return scope_id, position

    async def move(self, item_id: int, new_position: int) -> None:
        """
        Move an item inside its scope.

        Raises:
            NotFoundError: If the item no longer exists
            InvalidPositionError: If ``new_position`` is outside ``[0, count-1]``
        """
        async with atomic(self.session):
            scope_id, old_position = await self.lock_item(item_id)
            await self._move_within(scope_id, item_id, old_position, new_position)

    async def _move_within(self, scope_id: int, item_id: int, old_position: int, new_position: int) -> None:
        count = await self.count(scope_id)
        shift = plan_move(count, old_position, new_position)
        if shift is None:
            return

        await self._set_position(item_id, SENTINEL_POSITION)
        await self._shift(scope_id, shift, exclude_id=item_id)
        await self._set_position(item_id, new_position)
        logger.debug(
            f"Moved {self.model.__tablename__} {item_id} in scope {scope_id}: "
            f"{old_position} -> {new_position}"
        )

    async def move_across_scope(
        self,
        item_id: int,
        new_scope_id: int,
        new_position: Optional[int] = None,
    ) -> None:
        """
        Move an item into ``new_scope_id`` at ``new_position``.

        Without a position the item is appended. If the item already sits in
        ``new_scope_id`` this is a plain move (or nothing, without a position).
        Otherwise the item is evacuated, the gap in the old scope is closed,
        a slot is opened in the new scope, and the item is re-parented into it.

        Raises:
            NotFoundError: If the item no longer exists
            InvalidPositionError: If ``new_position`` is outside ``[0, count(new scope)]``
        """
        async with atomic(self.session):
            old_scope_id, old_position = await self.lock_item(item_id, new_scope_id)
            if old_scope_id == new_scope_id:
                if new_position is not None:
                    await self._move_within(old_scope_id, item_id, old_position, new_position)
                return

            target_count = await self.count(new_scope_id)
            if new_position is None:
                new_position = target_count
            close_gap, open_slot = plan_move_across(target_count, old_position, new_position)

            await self._set_position(item_id, SENTINEL_POSITION)
            await self._shift(old_scope_id, close_gap, exclude_id=item_id)
            await self._shift(new_scope_id, open_slot)
            await self._set_position(item_id, new_position, scope_id=new_scope_id)
            logger.debug(
                f"Moved {self.model.__tablename__} {item_id} from scope {old_scope_id}@{old_position} "
                f"to scope {new_scope_id}@{new_position}"
            )
