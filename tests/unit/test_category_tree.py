"""Unit tests for the category forest.

Service functions are called directly with the db_session fixture; every
test starts from an empty database holding only the quarantine category.
"""

import uuid

import pytest
from libs.common.errors import (
    BoundaryReached,
    ConflictError,
    DuplicateCategoryName,
    MaxDepthExceeded,
    NotFoundError,
    ValidationError,
)
from services.commerce_service.models import Category, Product, ReorderDirection, Tier
from services.commerce_service.services import category_tree, ordering, product_catalog
from sqlalchemy import select
from tests.factories import ProductFactory

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _orders_under(db, parent_id):
    rows = await ordering.scope_rows(
        db, Category, category_tree.sibling_scope(parent_id)
    )
    return [row.display_order for row in rows]


async def _reload(db, model, row_id):
    result = await db.execute(
        select(model).where(model.id == row_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _add_product(db, **overrides):
    product = ProductFactory.create(**overrides)
    db.add(product)
    await db.commit()
    return product


# ---------------------------------------------------------------------------
# create_category
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_root_categories_append(db_session, cache, quarantine):
    first = await category_tree.create_category(db_session, cache, name="Engines")
    second = await category_tree.create_category(db_session, cache, name="Brakes")

    assert first.level == 1 and first.display_order == 1
    assert second.display_order == 2
    assert await _orders_under(db_session, None) == [1, 2]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_at_position_shifts_siblings(db_session, cache, quarantine):
    a = await category_tree.create_category(db_session, cache, name="A")
    b = await category_tree.create_category(db_session, cache, name="B")

    c = await category_tree.create_category(db_session, cache, name="C", display_order=1)

    assert c.display_order == 1
    assert (await _reload(db_session, Category, a.id)).display_order == 2
    assert (await _reload(db_session, Category, b.id)).display_order == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_child_sets_level_and_parent_flag(db_session, cache, quarantine):
    root = await category_tree.create_category(db_session, cache, name="Engines")
    child = await category_tree.create_category(
        db_session, cache, name="Pistons", parent_id=root.id
    )

    assert child.level == 2
    assert child.display_order == 1
    assert (await _reload(db_session, Category, root.id)).has_children is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_name_same_level_is_case_insensitive(db_session, cache, quarantine):
    await category_tree.create_category(db_session, cache, name="Engines")

    with pytest.raises(DuplicateCategoryName):
        await category_tree.create_category(db_session, cache, name="  engines ")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_name_allowed_at_different_level(db_session, cache, quarantine):
    root = await category_tree.create_category(db_session, cache, name="Parts")
    child = await category_tree.create_category(
        db_session, cache, name="Parts", parent_id=root.id
    )
    assert child.level == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_depth_limit(db_session, cache, quarantine):
    parent_id = None
    for level in range(1, 5):
        node = await category_tree.create_category(
            db_session, cache, name=f"Level {level}", parent_id=parent_id
        )
        parent_id = node.id

    with pytest.raises(MaxDepthExceeded):
        await category_tree.create_category(
            db_session, cache, name="Level 5", parent_id=parent_id
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_parent_is_not_found(db_session, cache, quarantine):
    with pytest.raises(NotFoundError):
        await category_tree.create_category(
            db_session, cache, name="Orphan", parent_id=uuid.uuid4()
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quarantine_cannot_be_a_parent(db_session, cache, quarantine):
    with pytest.raises(ValidationError):
        await category_tree.create_category(
            db_session, cache, name="Hidden", parent_id=quarantine.id
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_blank_name_rejected(db_session, cache, quarantine):
    with pytest.raises(ValidationError):
        await category_tree.create_category(db_session, cache, name="   ")


# ---------------------------------------------------------------------------
# reorder / update
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reorder_swaps_with_neighbour(db_session, cache, quarantine):
    a = await category_tree.create_category(db_session, cache, name="A")
    b = await category_tree.create_category(db_session, cache, name="B")

    moved = await category_tree.reorder_category(
        db_session, cache, category_id=b.id, direction=ReorderDirection.UP
    )

    assert moved.display_order == 1
    assert (await _reload(db_session, Category, a.id)).display_order == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reorder_at_boundary(db_session, cache, quarantine):
    a = await category_tree.create_category(db_session, cache, name="A")
    b = await category_tree.create_category(db_session, cache, name="B")

    with pytest.raises(BoundaryReached):
        await category_tree.reorder_category(
            db_session, cache, category_id=a.id, direction=ReorderDirection.UP
        )
    with pytest.raises(BoundaryReached):
        await category_tree.reorder_category(
            db_session, cache, category_id=b.id, direction=ReorderDirection.DOWN
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reposition_within_siblings_stays_dense(db_session, cache, quarantine):
    cats = [
        await category_tree.create_category(db_session, cache, name=name)
        for name in ("A", "B", "C", "D")
    ]

    await category_tree.update_category(
        db_session, cache, category_id=cats[0].id, changes={"display_order": 3}
    )

    orders = {
        c.name: (await _reload(db_session, Category, c.id)).display_order for c in cats
    }
    assert orders == {"B": 1, "C": 2, "A": 3, "D": 4}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_move_subtree_recomputes_levels(db_session, cache, quarantine):
    engines = await category_tree.create_category(db_session, cache, name="Engines")
    pistons = await category_tree.create_category(
        db_session, cache, name="Pistons", parent_id=engines.id
    )
    rings = await category_tree.create_category(
        db_session, cache, name="Rings", parent_id=pistons.id
    )
    brakes = await category_tree.create_category(db_session, cache, name="Brakes")

    await category_tree.update_category(
        db_session, cache, category_id=pistons.id, changes={"parent_id": brakes.id}
    )

    assert (await _reload(db_session, Category, pistons.id)).level == 2
    assert (await _reload(db_session, Category, rings.id)).level == 3
    assert (await _reload(db_session, Category, engines.id)).has_children is False
    assert (await _reload(db_session, Category, brakes.id)).has_children is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_move_beneath_own_descendant_rejected(db_session, cache, quarantine):
    root = await category_tree.create_category(db_session, cache, name="Root")
    child = await category_tree.create_category(
        db_session, cache, name="Child", parent_id=root.id
    )

    with pytest.raises(ValidationError):
        await category_tree.update_category(
            db_session, cache, category_id=root.id, changes={"parent_id": child.id}
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quarantine_is_immutable(db_session, cache, quarantine):
    with pytest.raises(ConflictError):
        await category_tree.update_category(
            db_session, cache, category_id=quarantine.id, changes={"name": "X"}
        )
    with pytest.raises(ConflictError):
        await category_tree.delete_category(db_session, cache, category_id=quarantine.id)


# ---------------------------------------------------------------------------
# delete_category
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_quarantines_subtree_and_products(db_session, cache, quarantine):
    """Root with two children and three products ends up flat under quarantine."""
    first = await category_tree.create_category(db_session, cache, name="First")
    doomed = await category_tree.create_category(db_session, cache, name="Doomed")
    last = await category_tree.create_category(db_session, cache, name="Last")
    child_a = await category_tree.create_category(
        db_session, cache, name="Child A", parent_id=doomed.id
    )
    child_b = await category_tree.create_category(
        db_session, cache, name="Child B", parent_id=doomed.id
    )
    products = [
        await _add_product(db_session, category_id=doomed.id, display_order=1),
        await _add_product(
            db_session, category_id=doomed.id, sub_category_id=child_a.id, display_order=1
        ),
        await _add_product(
            db_session, category_id=doomed.id, sub_category_id=child_b.id, display_order=1
        ),
    ]

    await category_tree.delete_category(db_session, cache, category_id=doomed.id)

    for node_id in (doomed.id, child_a.id, child_b.id):
        node = await _reload(db_session, Category, node_id)
        assert node.parent_id == quarantine.id
        assert node.level == 1
        assert node.is_deleted is False

    for product in products:
        moved = await _reload(db_session, Product, product.id)
        assert moved.category_id == quarantine.id
        assert moved.sub_category_id is None
    assert [
        (await _reload(db_session, Product, p.id)).quarantined_from_id for p in products
    ] == [doomed.id, child_a.id, child_b.id]

    assert (await _reload(db_session, Category, quarantine.id)).has_children is True
    # Surviving roots close the gap
    assert (await _reload(db_session, Category, first.id)).display_order == 1
    assert (await _reload(db_session, Category, last.id)).display_order == 2

    public = await category_tree.list_public(db_session, cache)
    assert {c.id for c in public} == {first.id, last.id}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_inside_quarantine_soft_deletes(db_session, cache, quarantine):
    doomed = await category_tree.create_category(db_session, cache, name="Doomed")
    product = await _add_product(db_session, category_id=doomed.id)
    await category_tree.delete_category(db_session, cache, category_id=doomed.id)

    await category_tree.delete_category(db_session, cache, category_id=doomed.id)

    assert (await _reload(db_session, Category, doomed.id)).is_deleted is True
    assert (await _reload(db_session, Product, product.id)).is_deleted is True
    with pytest.raises(NotFoundError):
        await category_tree.get_category(db_session, doomed.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_quarantined_child_retires_only_its_products(
    db_session, cache, quarantine
):
    doomed = await category_tree.create_category(db_session, cache, name="Doomed")
    child = await category_tree.create_category(
        db_session, cache, name="Child", parent_id=doomed.id
    )
    kept = await _add_product(db_session, category_id=doomed.id, display_order=1)
    retired = await _add_product(
        db_session, category_id=doomed.id, sub_category_id=child.id, display_order=1
    )
    await category_tree.delete_category(db_session, cache, category_id=doomed.id)

    await category_tree.delete_category(db_session, cache, category_id=child.id)

    assert (await _reload(db_session, Product, retired.id)).is_deleted is True
    survivor = await _reload(db_session, Product, kept.id)
    assert survivor.is_deleted is False
    assert survivor.category_id == quarantine.id
    assert survivor.display_order == 1
    assert (await _reload(db_session, Category, doomed.id)).is_deleted is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_category_drops_its_products_from_special_sets(
    db_session, cache, quarantine
):
    doomed = await category_tree.create_category(db_session, cache, name="Doomed")
    await _add_product(db_session, category_id=doomed.id, featured=True)
    before = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert len(before.featured) == 1

    await category_tree.delete_category(db_session, cache, category_id=doomed.id)

    after = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert after.featured == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_name_of_quarantined_category_can_be_reused(db_session, cache, quarantine):
    phones = await category_tree.create_category(db_session, cache, name="Phones")
    await category_tree.delete_category(db_session, cache, category_id=phones.id)

    again = await category_tree.create_category(db_session, cache, name="Phones")

    assert again.id != phones.id
    assert again.level == 1
    assert (await _reload(db_session, Category, phones.id)).parent_id == quarantine.id


# ---------------------------------------------------------------------------
# Reads and maintenance
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_category_path_from_root(db_session, cache, quarantine):
    a = await category_tree.create_category(db_session, cache, name="A")
    b = await category_tree.create_category(db_session, cache, name="B", parent_id=a.id)
    c = await category_tree.create_category(db_session, cache, name="C", parent_id=b.id)

    path = await category_tree.category_path(db_session, c.id)

    assert [node.name for node in path] == ["A", "B", "C"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_public_list_is_cached_until_write(db_session, cache, quarantine):
    await category_tree.create_category(db_session, cache, name="A")
    assert len(await category_tree.list_public(db_session, cache)) == 1
    assert await cache.get(category_tree.CATEGORIES_CACHE_KEY) is not None

    await category_tree.create_category(db_session, cache, name="B")

    assert await cache.get(category_tree.CATEGORIES_CACHE_KEY) is None
    assert len(await category_tree.list_public(db_session, cache)) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_repair_makes_sibling_orders_dense(db_session, cache, quarantine):
    root = await category_tree.create_category(db_session, cache, name="Root")
    for name, order in (("X", 3), ("Y", 7), ("Z", 7)):
        db_session.add(
            Category(
                name=name,
                parent_id=root.id,
                level=2,
                display_order=order,
                has_children=False,
            )
        )
    await db_session.commit()

    changed = await category_tree.validate_and_repair_ordering(db_session, parent_id=root.id)

    assert changed == 3
    assert await _orders_under(db_session, root.id) == [1, 2, 3]
    # Idempotent
    assert await category_tree.validate_and_repair_ordering(db_session, parent_id=root.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_repair_all_if_due_is_throttled(db_session, cache, quarantine):
    await category_tree.create_category(db_session, cache, name="Root")

    assert await category_tree.repair_all_if_due(db_session, cache) == 0
    assert await category_tree.repair_all_if_due(db_session, cache) is None
