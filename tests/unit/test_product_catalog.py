"""Unit tests for product_catalog: placement, updates, listing and bulk edits."""

import uuid
from decimal import Decimal

import pytest
from libs.common.errors import ConflictError, NotFoundError, ValidationError
from services.commerce_service.models import Brand, NotifyRequest, Product, Tier
from services.commerce_service.schemas import (
    BrandUpdate,
    DisplayOrderEntry,
    ProductCreate,
    ProductUpdate,
    TierPricing,
)
from services.commerce_service.services import category_tree, product_catalog
from sqlalchemy import select
from tests.factories import CategoryFactory, ProductFactory

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pricing(**overrides) -> TierPricing:
    values = {
        "retailer": Decimal("90"),
        "wholesale": Decimal("70"),
        "chain_store": Decimal("80"),
        "franchise": Decimal("95"),
    }
    values.update(overrides)
    return TierPricing(**values)


def _create_payload(category_id, **overrides) -> ProductCreate:
    values = {
        "name": "Brake pad",
        "description": "Ceramic brake pad",
        "category_id": category_id,
        "stock": 5,
        "price": Decimal("100"),
        "pricing": _pricing(),
    }
    values.update(overrides)
    return ProductCreate(**values)


async def _category(db, **overrides):
    category = CategoryFactory.create(**overrides)
    db.add(category)
    await db.commit()
    return category


async def _product(db, **overrides):
    product = ProductFactory.create(**overrides)
    db.add(product)
    await db.commit()
    return product


async def _reload(db, product_id):
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# create_product
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_product_appends_to_category_scope(db_session, cache):
    category = await _category(db_session)
    await _product(db_session, category_id=category.id, display_order=1)

    product = await product_catalog.create_product(
        db_session, cache, data=_create_payload(category.id)
    )

    assert product.display_order == 2
    assert product.product_code.startswith("#")
    assert len(product.product_code) == 7
    assert product.wholesale_price == Decimal("70.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_product_at_position_shifts_scope(db_session, cache):
    category = await _category(db_session)
    existing = await _product(db_session, category_id=category.id, display_order=1)

    product = await product_catalog.create_product(
        db_session, cache, data=_create_payload(category.id, display_order=1)
    )

    assert product.display_order == 1
    assert (await _reload(db_session, existing.id)).display_order == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_product_rejects_duplicate_name(db_session, cache):
    category = await _category(db_session)
    await _product(db_session, category_id=category.id, name="Brake pad")

    with pytest.raises(ConflictError):
        await product_catalog.create_product(
            db_session, cache, data=_create_payload(category.id, name="BRAKE PAD")
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_product_validates_prices(db_session, cache):
    category = await _category(db_session)

    with pytest.raises(ValidationError):
        await product_catalog.create_product(
            db_session,
            cache,
            data=_create_payload(category.id, pricing=_pricing(wholesale=Decimal("0"))),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_product_unknown_category(db_session, cache):
    missing = CategoryFactory.create()

    with pytest.raises(NotFoundError):
        await product_catalog.create_product(
            db_session, cache, data=_create_payload(missing.id)
        )


# ---------------------------------------------------------------------------
# update_product
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_scope_change_closes_gap_and_appends(db_session, cache, notifier):
    source = await _category(db_session)
    target = await _category(db_session)
    first = await _product(db_session, category_id=source.id, display_order=1)
    moving = await _product(db_session, category_id=source.id, display_order=2)
    last = await _product(db_session, category_id=source.id, display_order=3)
    await _product(db_session, category_id=target.id, display_order=1)

    updated = await product_catalog.update_product(
        db_session,
        cache,
        product_id=moving.id,
        data=ProductUpdate(category_id=target.id),
        notifier=notifier,
    )

    assert updated.category_id == target.id
    assert updated.display_order == 2
    assert (await _reload(db_session, first.id)).display_order == 1
    assert (await _reload(db_session, last.id)).display_order == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restock_fires_when_stock_returns(db_session, cache, notifier):
    category = await _category(db_session)
    product = await _product(db_session, category_id=category.id, stock=0)
    db_session.add(NotifyRequest(product_id=product.id, email="wait@test.com"))
    await db_session.commit()

    await product_catalog.update_product(
        db_session,
        cache,
        product_id=product.id,
        data=ProductUpdate(stock=4),
        notifier=notifier,
    )

    assert notifier.kinds() == ["restock_available"]
    result = await db_session.execute(select(NotifyRequest))
    assert result.scalar_one().notified is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restock_not_fired_when_already_in_stock(db_session, cache, notifier):
    category = await _category(db_session)
    product = await _product(db_session, category_id=category.id, stock=2)
    db_session.add(NotifyRequest(product_id=product.id, email="wait@test.com"))
    await db_session.commit()

    await product_catalog.update_product(
        db_session,
        cache,
        product_id=product.id,
        data=ProductUpdate(stock=9),
        notifier=notifier,
    )

    assert notifier.sent == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_flag_change_invalidates_special_sets(db_session, cache, notifier):
    category = await _category(db_session)
    product = await _product(db_session, category_id=category.id)

    before = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert before.featured == []

    await product_catalog.update_product(
        db_session,
        cache,
        product_id=product.id,
        data=ProductUpdate(featured=True),
        notifier=notifier,
    )

    after = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert [p.id for p in after.featured] == [product.id]
    assert after.featured[0].price == Decimal("90.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_edit_refreshes_special_sets(db_session, cache, notifier):
    category = await _category(db_session)
    product = await _product(db_session, category_id=category.id, featured=True)

    before = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert before.featured[0].price == Decimal("90.00")

    await product_catalog.update_product(
        db_session,
        cache,
        product_id=product.id,
        data=ProductUpdate(pricing=_pricing(retailer=Decimal("85"))),
        notifier=notifier,
    )

    after = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert after.featured[0].price == Decimal("85.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_moving_out_of_quarantine_forgets_origin(
    db_session, cache, notifier, quarantine
):
    origin = await _category(db_session)
    target = await _category(db_session)
    product = await _product(
        db_session, category_id=quarantine.id, quarantined_from_id=origin.id
    )

    updated = await product_catalog.update_product(
        db_session,
        cache,
        product_id=product.id,
        data=ProductUpdate(category_id=target.id),
        notifier=notifier,
    )

    assert updated.category_id == target.id
    assert updated.quarantined_from_id is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bulk_pricing_refreshes_special_sets(db_session, cache):
    category = await _category(db_session)
    product = await _product(
        db_session, category_id=category.id, featured=True, cost_price=Decimal("40")
    )
    await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)

    await product_catalog.bulk_update_pricing(
        db_session,
        cache,
        product_ids=[product.id],
        percents={Tier.RETAILER: Decimal("150")},
    )

    after = await product_catalog.special_sets(db_session, cache, tier=Tier.RETAILER)
    assert after.featured[0].price == Decimal("60.00")


# ---------------------------------------------------------------------------
# delete / listing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_product_renumbers_scope(db_session, cache):
    category = await _category(db_session)
    doomed = await _product(db_session, category_id=category.id, display_order=1)
    survivor = await _product(db_session, category_id=category.id, display_order=2)

    await product_catalog.delete_product(db_session, cache, product_id=doomed.id)

    assert await db_session.get(Product, doomed.id) is None
    assert (await _reload(db_session, survivor.id)).display_order == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_products_prices_for_tier_and_hides_unpublished(db_session, quarantine):
    category = await _category(db_session)
    visible = await _product(db_session, category_id=category.id, name="Visible pad")
    await _product(db_session, category_id=category.id, published=False)
    await _product(db_session, category_id=category_tree.quarantine_id())

    page = await product_catalog.list_products(db_session, tier=Tier.WHOLESALE)

    assert page.total == 1
    assert page.items[0].id == visible.id
    assert page.items[0].price == Decimal("70.00")
    assert page.items[0].tier is Tier.WHOLESALE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_products_category_filter_includes_subtree(db_session, quarantine):
    root = await _category(db_session)
    child = await _category(db_session, parent_id=root.id, level=2)
    other = await _category(db_session)
    in_child = await _product(db_session, category_id=root.id, sub_category_id=child.id)
    await _product(db_session, category_id=other.id)

    page = await product_catalog.list_products(
        db_session, tier=Tier.RETAILER, category_id=root.id
    )

    assert [p.id for p in page.items] == [in_child.id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_products_keyword_and_limit_cap(db_session, quarantine):
    category = await _category(db_session)
    await _product(db_session, category_id=category.id, name="Ceramic brake pad")
    await _product(db_session, category_id=category.id, name="Oil filter")

    page = await product_catalog.list_products(
        db_session, tier=Tier.RETAILER, keyword="brake", limit=500
    )

    assert page.total == 1
    assert page.limit == product_catalog.MAX_PAGE_SIZE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_products_rejects_unknown_sort(db_session):
    with pytest.raises(ValidationError):
        await product_catalog.list_products(db_session, tier=Tier.RETAILER, sort="cost_price")


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bulk_display_order_pins_and_fills(db_session, cache):
    category = await _category(db_session)
    a = await _product(db_session, category_id=category.id, display_order=1)
    b = await _product(db_session, category_id=category.id, display_order=2)
    c = await _product(db_session, category_id=category.id, display_order=3)

    rows = await product_catalog.bulk_update_display_order(
        db_session,
        cache,
        scope_id=category.id,
        entries=[DisplayOrderEntry(product_id=c.id, display_order=1)],
    )

    assert [row.id for row in rows] == [c.id, a.id, b.id]
    assert [row.display_order for row in rows] == [1, 2, 3]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bulk_pricing_skips_products_without_cost(db_session, cache):
    category = await _category(db_session)
    costed = await _product(db_session, category_id=category.id, cost_price=Decimal("40"))
    uncosted = await _product(db_session, category_id=category.id, cost_price=None)

    result = await product_catalog.bulk_update_pricing(
        db_session,
        cache,
        product_ids=[costed.id, uncosted.id],
        percents={Tier.RETAILER: Decimal("150")},
    )

    assert result == {"updated": [costed.id], "skipped": [uncosted.id]}
    assert (await _reload(db_session, costed.id)).retailer_price == Decimal("60.00")


# ---------------------------------------------------------------------------
# Brands
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_brand_defaults_title_and_checks_categories(db_session):
    category = await _category(db_session)

    brand = await product_catalog.create_brand(
        db_session, name=" Bosch ", category_ids=[category.id]
    )

    assert brand.name == "Bosch"
    assert brand.title == "Bosch"
    assert brand.category_ids == [str(category.id)]
    assert brand.is_active is True

    with pytest.raises(NotFoundError):
        await product_catalog.create_brand(
            db_session, name="Denso", category_ids=[uuid.uuid4()]
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_brand_names_are_unique_case_insensitively(db_session):
    await product_catalog.create_brand(db_session, name="Bosch")
    other = await product_catalog.create_brand(db_session, name="Denso")

    with pytest.raises(ConflictError):
        await product_catalog.create_brand(db_session, name="BOSCH")
    with pytest.raises(ConflictError):
        await product_catalog.update_brand(
            db_session, brand_id=other.id, update_in=BrandUpdate(name="bosch")
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_and_toggle_brand(db_session):
    brand = await product_catalog.create_brand(db_session, name="Bosch")

    updated = await product_catalog.update_brand(
        db_session,
        brand_id=brand.id,
        update_in=BrandUpdate(title="Bosch Automotive", is_featured=True),
    )
    assert updated.title == "Bosch Automotive"
    assert updated.is_featured is True

    toggled = await product_catalog.toggle_brand_status(db_session, brand_id=brand.id)
    assert toggled.is_active is False
    assert await product_catalog.list_brands(db_session, active=True) == []
    assert [b.id for b in await product_catalog.list_brands(db_session)] == [brand.id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_brands_filters_by_category_and_search(db_session):
    category = await _category(db_session)
    bosch = await product_catalog.create_brand(
        db_session, name="Bosch", title="Bosch Parts", category_ids=[category.id]
    )
    await product_catalog.create_brand(db_session, name="Denso")

    by_category = await product_catalog.list_brands(db_session, category_id=category.id)
    by_title = await product_catalog.list_brands(db_session, search="parts")

    assert [b.id for b in by_category] == [bosch.id]
    assert [b.id for b in by_title] == [bosch.id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_brand_detaches_products(db_session, cache):
    category = await _category(db_session)
    brand = await product_catalog.create_brand(db_session, name="Bosch")
    brand_id = brand.id
    product = await _product(db_session, category_id=category.id, brand_id=brand_id)

    detached = await product_catalog.delete_brand(db_session, cache, brand_id=brand_id)

    assert detached == 1
    assert (await _reload(db_session, product.id)).brand_id is None
    stored = (
        await db_session.execute(
            select(Brand)
            .where(Brand.id == brand_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert stored.is_deleted is True
    with pytest.raises(NotFoundError):
        await product_catalog.get_brand(db_session, brand_id)
