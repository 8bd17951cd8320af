"""Dense ``display_order`` sequencing shared by categories and products.

A *scope* is a list of WHERE clauses selecting one sibling group (categories
under one parent, or products under one category-or-subcategory). Shifts are
applied row by row through the unit of work rather than as one bulk UPDATE,
so each sibling is moved to a position nobody else holds.
"""

import uuid
from typing import Any, Optional, Sequence

from libs.common.errors import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


async def scope_rows(
    db: AsyncSession,
    model: Any,
    scope: Sequence[Any],
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> list:
    await db.flush()
    stmt = select(model).where(*scope)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    stmt = stmt.order_by(
        model.display_order.asc().nulls_last(), model.created_at.asc(), model.id
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def max_order(
    db: AsyncSession,
    model: Any,
    scope: Sequence[Any],
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> int:
    await db.flush()
    stmt = select(func.coalesce(func.max(model.display_order), 0)).where(*scope)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    return int((await db.execute(stmt)).scalar_one())


def validate_position(position: int, upper: int) -> None:
    if position < 1 or position > upper:
        raise ValidationError(
            f"Display order must be between 1 and {upper}", field="display_order"
        )


async def shift_for_insert(
    db: AsyncSession,
    model: Any,
    scope: Sequence[Any],
    position: int,
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> int:
    """Open ``position`` for a newcomer: every sibling at ``>= position`` moves up one."""
    rows = await scope_rows(db, model, scope, exclude_id=exclude_id)
    to_shift = [r for r in rows if r.display_order is not None and r.display_order >= position]
    for row in sorted(to_shift, key=lambda r: r.display_order, reverse=True):
        row.display_order += 1
    await db.flush()
    return len(to_shift)


async def shift_for_move(
    db: AsyncSession,
    model: Any,
    scope: Sequence[Any],
    old_position: int,
    new_position: int,
    *,
    exclude_id: uuid.UUID,
) -> int:
    """Reposition within one scope without double-shifting.

    Moving later shifts ``(old, new]`` down by one; moving earlier shifts
    ``[new, old)`` up by one.
    """
    if old_position == new_position:
        return 0
    rows = await scope_rows(db, model, scope, exclude_id=exclude_id)
    if new_position > old_position:
        to_shift = [
            r
            for r in rows
            if r.display_order is not None and old_position < r.display_order <= new_position
        ]
        for row in sorted(to_shift, key=lambda r: r.display_order):
            row.display_order -= 1
    else:
        to_shift = [
            r
            for r in rows
            if r.display_order is not None and new_position <= r.display_order < old_position
        ]
        for row in sorted(to_shift, key=lambda r: r.display_order, reverse=True):
            row.display_order += 1
    await db.flush()
    return len(to_shift)


async def close_gap(
    db: AsyncSession,
    model: Any,
    scope: Sequence[Any],
    vacated_position: int,
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> int:
    """Pull every sibling after ``vacated_position`` down by one."""
    rows = await scope_rows(db, model, scope, exclude_id=exclude_id)
    to_shift = [
        r for r in rows if r.display_order is not None and r.display_order > vacated_position
    ]
    for row in sorted(to_shift, key=lambda r: r.display_order):
        row.display_order -= 1
    await db.flush()
    return len(to_shift)


async def renumber(db: AsyncSession, model: Any, scope: Sequence[Any]) -> int:
    """Rewrite the scope to exactly 1..N, keeping current relative order.

    Returns the number of rows whose position changed; zero means the scope
    was already dense.
    """
    rows = await scope_rows(db, model, scope)
    changed = 0
    for position, row in enumerate(rows, start=1):
        if row.display_order != position:
            row.display_order = position
            changed += 1
    if changed:
        await db.flush()
    return changed
