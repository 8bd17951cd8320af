"""Category forest operations.

The tree is stored as parent pointers plus a denormalised ``level``. Sibling
groups (same parent, not deleted, quarantine excluded) keep ``display_order``
dense from 1..N. Deleting a category never drops rows: the subtree is
flattened under the reserved quarantine category, and only nodes already in
quarantine are soft-deleted.

Subtree walks are iterative breadth-first with a depth guard of MAX_DEPTH.
"""

import uuid
from collections import deque
from datetime import timedelta
from typing import Any, Optional

from libs.common.cache import Cache
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    BoundaryReached,
    ConflictError,
    DuplicateCategoryName,
    MaxDepthExceeded,
    NotFoundError,
    ValidationError,
)
from libs.common.logging import get_logger
from services.commerce_service.models import Category, Product, ReorderDirection
from services.commerce_service.schemas import CategoryProductCount, CategoryResponse
from services.commerce_service.services import ordering
from services.commerce_service.services.catalog_cache import (
    CATEGORIES_CACHE_KEY,
    invalidate_category_cache,
    invalidate_special_sets,
)
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_DEPTH = 4
REPAIR_THROTTLE_KEY = "maintenance:display-order-repair"


def quarantine_id() -> uuid.UUID:
    return uuid.UUID(get_settings().QUARANTINE_CATEGORY_ID)


def sibling_scope(parent_id: Optional[uuid.UUID]) -> list[Any]:
    """WHERE clauses selecting the live siblings under ``parent_id``."""
    parent_clause = (
        Category.parent_id.is_(None)
        if parent_id is None
        else Category.parent_id == parent_id
    )
    return [
        parent_clause,
        Category.is_deleted.is_(False),
        Category.id != quarantine_id(),
    ]


def _level_under(parent: Optional[Category]) -> int:
    # Quarantine holds a flat list of level-1 nodes
    if parent is None or parent.id == quarantine_id():
        return 1
    return parent.level + 1


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def _load(db: AsyncSession, category_id: uuid.UUID) -> Category:
    category = await db.get(Category, category_id)
    if category is None or category.is_deleted:
        raise NotFoundError("Category", category_id)
    return category


async def get_category(db: AsyncSession, category_id: uuid.UUID) -> Category:
    return await _load(db, category_id)


async def ensure_quarantine(db: AsyncSession) -> Category:
    """Return the reserved quarantine category, creating it on first use."""
    settings = get_settings()
    qid = quarantine_id()
    category = await db.get(Category, qid)
    if category is not None:
        return category

    category = Category(
        id=qid,
        name=settings.QUARANTINE_CATEGORY_NAME,
        title="Deleted categories",
        parent_id=None,
        level=1,
        display_order=0,
        has_children=False,
    )
    db.add(category)
    await db.flush()
    logger.info("Created quarantine category %s", qid)
    return category


async def subtree(
    db: AsyncSession, root_id: uuid.UUID, *, include_deleted: bool = False
) -> list[tuple[uuid.UUID, int]]:
    """(id, depth) for ``root_id`` and every descendant, breadth first.

    ``depth`` is 0 for the root. Walking stops at MAX_DEPTH levels below the
    root; anything deeper indicates corrupt data and is logged.
    """
    await db.flush()
    found: list[tuple[uuid.UUID, int]] = [(root_id, 0)]
    queue: deque[tuple[uuid.UUID, int]] = deque([(root_id, 0)])
    seen = {root_id}
    while queue:
        parent_id, depth = queue.popleft()
        stmt = select(Category.id).where(Category.parent_id == parent_id)
        if not include_deleted:
            stmt = stmt.where(Category.is_deleted.is_(False))
        child_ids = (await db.execute(stmt)).scalars().all()
        if child_ids and depth + 1 >= MAX_DEPTH:
            logger.warning(
                "Category %s has descendants beyond depth %d; not descending",
                parent_id,
                MAX_DEPTH,
            )
            continue
        for child_id in child_ids:
            if child_id in seen:
                continue
            seen.add(child_id)
            found.append((child_id, depth + 1))
            queue.append((child_id, depth + 1))
    return found


async def subtree_ids(db: AsyncSession, root_id: uuid.UUID) -> list[uuid.UUID]:
    return [node_id for node_id, _ in await subtree(db, root_id)]


async def list_children(db: AsyncSession, parent_id: uuid.UUID) -> list[Category]:
    return await ordering.scope_rows(db, Category, sibling_scope(parent_id))


async def category_path(db: AsyncSession, category_id: uuid.UUID) -> list[Category]:
    """Ancestors from the root down to ``category_id``.

    The walk stops early at a soft-deleted ancestor.
    """
    current = await _load(db, category_id)
    path = [current]
    for _ in range(MAX_DEPTH):
        if current.parent_id is None:
            break
        parent = await db.get(Category, current.parent_id)
        if parent is None or parent.is_deleted:
            break
        path.append(parent)
        current = parent
    path.reverse()
    return path


async def list_public(db: AsyncSession, cache: Cache) -> list[CategoryResponse]:
    """Live categories outside quarantine, by (level, display_order). Cached."""
    cached = await cache.get(CATEGORIES_CACHE_KEY)
    if cached is not None:
        return [CategoryResponse.model_validate(item) for item in cached]

    qid = quarantine_id()
    result = await db.execute(
        select(Category)
        .where(
            Category.is_deleted.is_(False),
            Category.id != qid,
            or_(Category.parent_id.is_(None), Category.parent_id != qid),
        )
        .order_by(Category.level, Category.display_order, Category.name)
    )
    categories = [CategoryResponse.model_validate(c) for c in result.scalars().all()]

    await cache.set(
        CATEGORIES_CACHE_KEY,
        [c.model_dump(mode="json") for c in categories],
        ttl=get_settings().CATEGORY_CACHE_TTL_SECONDS,
    )
    return categories


async def list_admin(db: AsyncSession) -> list[Category]:
    """Every category including quarantine and soft-deleted nodes."""
    result = await db.execute(
        select(Category).order_by(
            Category.level, Category.parent_id, Category.display_order
        )
    )
    return list(result.scalars().all())


async def product_counts(db: AsyncSession) -> list[CategoryProductCount]:
    """Live product count across each root category's subtree."""
    roots = await ordering.scope_rows(db, Category, sibling_scope(None))
    counts = []
    for root in roots:
        ids = await subtree_ids(db, root.id)
        total = await db.execute(
            select(func.count(Product.id)).where(
                Product.is_deleted.is_(False),
                or_(Product.category_id.in_(ids), Product.sub_category_id.in_(ids)),
            )
        )
        counts.append(
            CategoryProductCount(
                category_id=root.id, name=root.name, product_count=total.scalar_one()
            )
        )
    return counts


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


async def _assert_name_free(
    db: AsyncSession,
    name: str,
    level: int,
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    # Quarantined nodes sit at level 1 but no longer hold their names
    qid = quarantine_id()
    stmt = select(Category.id).where(
        func.lower(Category.name) == name.strip().lower(),
        Category.level == level,
        Category.is_deleted.is_(False),
        Category.id != qid,
        or_(Category.parent_id.is_(None), Category.parent_id != qid),
    )
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    if (await db.execute(stmt.limit(1))).first() is not None:
        raise DuplicateCategoryName(name.strip(), level)


async def _resolve_parent(
    db: AsyncSession, parent_id: Optional[uuid.UUID]
) -> Optional[Category]:
    if parent_id is None:
        return None
    if parent_id == quarantine_id():
        raise ValidationError(
            "Categories cannot be placed under the quarantine category",
            field="parent_id",
        )
    parent = await db.get(Category, parent_id)
    if parent is None or parent.is_deleted:
        raise NotFoundError("Parent category", parent_id)
    return parent


async def _refresh_has_children(db: AsyncSession, category_id: Optional[uuid.UUID]) -> None:
    if category_id is None:
        return
    category = await db.get(Category, category_id)
    if category is None:
        return
    await db.flush()
    remaining = await db.execute(
        select(func.count(Category.id)).where(
            Category.parent_id == category_id, Category.is_deleted.is_(False)
        )
    )
    category.has_children = remaining.scalar_one() > 0


# ---------------------------------------------------------------------------
# Create / update / move / reorder
# ---------------------------------------------------------------------------


async def create_category(
    db: AsyncSession,
    cache: Cache,
    *,
    name: str,
    parent_id: Optional[uuid.UUID] = None,
    display_order: Optional[int] = None,
    **fields: Any,
) -> Category:
    """Create a category under ``parent_id`` (root when None).

    With ``display_order`` the siblings at or after that slot shift up one;
    otherwise the category is appended after the last sibling.
    """
    if not name or not name.strip():
        raise ValidationError("Category name is required", field="name")

    parent = await _resolve_parent(db, parent_id)
    level = _level_under(parent)
    if level > MAX_DEPTH:
        raise MaxDepthExceeded(MAX_DEPTH)

    await _assert_name_free(db, name, level)

    scope = sibling_scope(parent_id)
    last = await ordering.max_order(db, Category, scope)
    if display_order is not None:
        ordering.validate_position(display_order, last + 1)
        await ordering.shift_for_insert(db, Category, scope, display_order)
        position = display_order
    else:
        position = last + 1

    category = Category(
        name=name.strip(),
        parent_id=parent_id,
        level=level,
        display_order=position,
        has_children=False,
        **fields,
    )
    db.add(category)
    if parent is not None:
        parent.has_children = True

    await db.commit()
    await db.refresh(category)
    await invalidate_category_cache(cache)

    logger.info(
        "Created category %s (%s) level=%d order=%d",
        category.id,
        category.name,
        category.level,
        category.display_order,
    )
    return category


async def reorder_category(
    db: AsyncSession,
    cache: Cache,
    *,
    category_id: uuid.UUID,
    direction: ReorderDirection,
) -> Category:
    """Swap display_order with the adjacent sibling in ``direction``."""
    category = await _load(db, category_id)
    if category.id == quarantine_id():
        raise ConflictError("The quarantine category cannot be reordered")

    stmt = select(Category).where(*sibling_scope(category.parent_id))
    if direction == ReorderDirection.UP:
        stmt = stmt.where(Category.display_order < category.display_order).order_by(
            Category.display_order.desc()
        )
    else:
        stmt = stmt.where(Category.display_order > category.display_order).order_by(
            Category.display_order.asc()
        )
    neighbour = (await db.execute(stmt.limit(1))).scalar_one_or_none()
    if neighbour is None:
        raise BoundaryReached(direction.value)

    category.display_order, neighbour.display_order = (
        neighbour.display_order,
        category.display_order,
    )
    await db.commit()
    await db.refresh(category)
    await invalidate_category_cache(cache)
    return category


async def _apply_levels(db: AsyncSession, root: Category, root_level: int) -> None:
    """Recompute ``level`` for ``root`` and every descendant."""
    nodes = await subtree(db, root.id)
    for node_id, depth in nodes:
        node = await db.get(Category, node_id)
        node.level = root_level + depth


async def move_category(
    db: AsyncSession,
    cache: Cache,
    *,
    category_id: uuid.UUID,
    new_parent_id: Optional[uuid.UUID],
    display_order: Optional[int] = None,
    commit: bool = True,
) -> Category:
    """Re-parent a category with its subtree, recomputing levels."""
    category = await _load(db, category_id)
    qid = quarantine_id()
    if category.id == qid:
        raise ConflictError("The quarantine category cannot be moved")

    new_parent = await _resolve_parent(db, new_parent_id)
    old_parent_id = category.parent_id
    if new_parent_id == old_parent_id:
        if display_order is not None:
            await reposition_category(db, category, display_order)
        if commit:
            await db.commit()
            await invalidate_category_cache(cache)
        return category

    nodes = await subtree(db, category.id)
    if new_parent_id is not None and new_parent_id in {n for n, _ in nodes}:
        raise ValidationError(
            "A category cannot be moved beneath itself", field="parent_id"
        )

    new_level = _level_under(new_parent)
    deepest = max(depth for _, depth in nodes)
    if new_level + deepest > MAX_DEPTH:
        raise MaxDepthExceeded(MAX_DEPTH)
    await _assert_name_free(db, category.name, new_level, exclude_id=category.id)

    # Leave the old sibling group without a gap
    old_scope = sibling_scope(old_parent_id)
    if old_parent_id != qid:
        await ordering.close_gap(
            db, Category, old_scope, category.display_order, exclude_id=category.id
        )

    new_scope = sibling_scope(new_parent_id)
    last = await ordering.max_order(db, Category, new_scope, exclude_id=category.id)
    if display_order is not None:
        ordering.validate_position(display_order, last + 1)
        await ordering.shift_for_insert(
            db, Category, new_scope, display_order, exclude_id=category.id
        )
        category.display_order = display_order
    else:
        category.display_order = last + 1

    category.parent_id = new_parent_id
    await _apply_levels(db, category, new_level)

    if new_parent is not None:
        new_parent.has_children = True
    await _refresh_has_children(db, old_parent_id)
    if old_parent_id == qid:
        await ordering.renumber(db, Category, _quarantine_scope())

    if commit:
        await db.commit()
        await db.refresh(category)
        await invalidate_category_cache(cache)

    logger.info(
        "Moved category %s from %s to %s (level %d)",
        category.id,
        old_parent_id,
        new_parent_id,
        category.level,
    )
    return category


async def reposition_category(
    db: AsyncSession, category: Category, display_order: int
) -> None:
    scope = sibling_scope(category.parent_id)
    last = await ordering.max_order(db, Category, scope)
    ordering.validate_position(display_order, last)
    await ordering.shift_for_move(
        db,
        Category,
        scope,
        category.display_order,
        display_order,
        exclude_id=category.id,
    )
    category.display_order = display_order


_PARENT_UNSET = object()


async def update_category(
    db: AsyncSession,
    cache: Cache,
    *,
    category_id: uuid.UUID,
    changes: dict[str, Any],
) -> Category:
    """Partial update. ``parent_id`` in ``changes`` triggers a move."""
    category = await _load(db, category_id)
    if category.id == quarantine_id():
        raise ConflictError("The quarantine category cannot be modified")

    changes = dict(changes)
    new_parent = changes.pop("parent_id", _PARENT_UNSET)
    display_order = changes.pop("display_order", None)

    name = changes.pop("name", None)
    if name is not None:
        if not name.strip():
            raise ValidationError("Category name is required", field="name")
        await _assert_name_free(db, name, category.level, exclude_id=category.id)
        category.name = name.strip()

    for field, value in changes.items():
        if field in {"model_numbers", "attributes"} and value is None:
            continue
        setattr(category, field, value)

    if new_parent is not _PARENT_UNSET and new_parent != category.parent_id:
        await move_category(
            db,
            cache,
            category_id=category.id,
            new_parent_id=new_parent,
            display_order=display_order,
            commit=False,
        )
    elif display_order is not None:
        await reposition_category(db, category, display_order)

    await db.commit()
    await db.refresh(category)
    await invalidate_category_cache(cache)
    return category


# ---------------------------------------------------------------------------
# Delete (quarantine)
# ---------------------------------------------------------------------------


def _quarantine_scope() -> list[Any]:
    return [Category.parent_id == quarantine_id(), Category.is_deleted.is_(False)]


def _quarantined_products() -> list[Any]:
    return [
        Product.category_id == quarantine_id(),
        Product.sub_category_id.is_(None),
        Product.is_deleted.is_(False),
    ]


async def delete_category(
    db: AsyncSession, cache: Cache, *, category_id: uuid.UUID
) -> Category:
    """Quarantine a subtree, or soft-delete a node already in quarantine."""
    qid = quarantine_id()
    if category_id == qid:
        raise ConflictError("The quarantine category cannot be deleted")

    category = await _load(db, category_id)
    quarantine = await ensure_quarantine(db)

    if category.parent_id == qid:
        category.is_deleted = True
        retired = await db.execute(
            update(Product)
            .where(
                or_(
                    Product.quarantined_from_id == category.id,
                    Product.category_id == category.id,
                    Product.sub_category_id == category.id,
                ),
                Product.is_deleted.is_(False),
            )
            .values(is_deleted=True)
            .execution_options(synchronize_session=False)
        )
        await ordering.renumber(db, Category, _quarantine_scope())
        await _refresh_has_children(db, qid)
        await ordering.renumber(db, Product, _quarantined_products())
        await db.commit()
        await db.refresh(category)
        await invalidate_category_cache(cache)
        await invalidate_special_sets(cache)
        logger.info(
            "Soft-deleted quarantined category %s and %d products",
            category.id,
            retired.rowcount,
        )
        return category

    old_parent_id = category.parent_id
    ids = [node_id for node_id, _ in await subtree(db, category.id)]

    # Flatten the whole subtree under quarantine at level 1, in BFS order
    next_slot = await ordering.max_order(db, Category, _quarantine_scope()) + 1
    for node_id in ids:
        node = await db.get(Category, node_id)
        node.parent_id = qid
        node.level = 1
        node.has_children = False
        node.display_order = next_slot
        next_slot += 1

    # Each product remembers the node it was filed under, the deepest one
    moved = await db.execute(
        update(Product)
        .where(
            or_(Product.category_id.in_(ids), Product.sub_category_id.in_(ids))
        )
        .values(
            category_id=qid,
            sub_category_id=None,
            quarantined_from_id=case(
                (Product.sub_category_id.in_(ids), Product.sub_category_id),
                else_=Product.category_id,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    quarantine.has_children = True

    await ordering.renumber(db, Category, sibling_scope(old_parent_id))
    await _refresh_has_children(db, old_parent_id)
    await ordering.renumber(db, Product, _quarantined_products())

    await db.commit()
    await db.refresh(category)
    await invalidate_category_cache(cache)
    await invalidate_special_sets(cache)

    logger.info(
        "Quarantined category %s with %d nodes; reassigned %d products",
        category_id,
        len(ids),
        moved.rowcount,
    )
    return category


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def validate_and_repair_ordering(
    db: AsyncSession, *, parent_id: Optional[uuid.UUID], commit: bool = True
) -> int:
    """Renumber one sibling group to a dense 1..N. Idempotent."""
    scope = (
        _quarantine_scope() if parent_id == quarantine_id() else sibling_scope(parent_id)
    )
    changed = await ordering.renumber(db, Category, scope)
    if commit:
        await db.commit()
    if changed:
        logger.info("Repaired display order under %s (%d rows)", parent_id, changed)
    return changed


async def repair_all(db: AsyncSession) -> int:
    """Repair every sibling group in the forest."""
    result = await db.execute(
        select(Category.parent_id)
        .where(Category.is_deleted.is_(False), Category.parent_id.is_not(None))
        .distinct()
    )
    parents: list[Optional[uuid.UUID]] = [None, *result.scalars().all()]
    changed = 0
    for parent_id in parents:
        changed += await validate_and_repair_ordering(db, parent_id=parent_id, commit=False)
    await db.commit()
    return changed


async def repair_all_if_due(db: AsyncSession, cache: Cache) -> Optional[int]:
    """Run ``repair_all`` at most once per configured interval.

    Returns None when skipped.
    """
    if await cache.get(REPAIR_THROTTLE_KEY) is not None:
        return None
    interval = timedelta(hours=get_settings().DISPLAY_ORDER_REPAIR_INTERVAL_HOURS)
    await cache.set(
        REPAIR_THROTTLE_KEY,
        utc_now().isoformat(),
        ttl=int(interval.total_seconds()),
    )
    changed = await repair_all(db)
    if changed:
        await invalidate_category_cache(cache)
    return changed
