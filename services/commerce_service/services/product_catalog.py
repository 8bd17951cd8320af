"""Product catalog operations.

Products are ordered within a single scope: the sub-category when one is set,
otherwise the category. ``display_order`` is dense (1..N) across the
non-deleted products of a scope.
"""

import math
import secrets
import string
import uuid
from decimal import Decimal
from typing import Any, Optional

from libs.common.cache import Cache
from libs.common.config import get_settings
from libs.common.errors import ConflictError, NotFoundError, ValidationError
from libs.common.logging import get_logger
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
)
from services.commerce_service.models import Brand, Category, Product, Tier
from services.commerce_service.schemas import (
    BrandUpdate,
    DisplayOrderEntry,
    PricedProduct,
    ProductCreate,
    ProductPage,
    ProductUpdate,
    SpecialProductSets,
    TierPricing,
)
from services.commerce_service.services import category_tree, ordering, pricing
from services.commerce_service.services.catalog_cache import (
    SPECIAL_CACHE_PREFIX,
    invalidate_special_sets,
)
from services.commerce_service.services.restock import trigger_restock_notifications
from sqlalchemy import String, and_, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SPECIAL_SET_SIZE = 10
MAX_PAGE_SIZE = 50
PRODUCT_CODE_LENGTH = 6
SPECIAL_FLAGS = ("featured", "most_popular", "most_sold", "published")

SORT_FIELDS = {
    "display_order": Product.display_order,
    "name": Product.name,
    "price": Product.price,
    "stock": Product.stock,
    "created_at": Product.created_at,
}


def product_scope(scope_id: uuid.UUID) -> list[Any]:
    """WHERE clauses for the live products ordered under ``scope_id``."""
    return [
        or_(
            Product.sub_category_id == scope_id,
            and_(Product.sub_category_id.is_(None), Product.category_id == scope_id),
        ),
        Product.is_deleted.is_(False),
    ]


def priced_view(product: Product, tier: Tier) -> PricedProduct:
    return PricedProduct(
        id=product.id,
        product_code=product.product_code,
        name=product.name,
        description=product.description,
        sku=product.sku,
        price=pricing.price_for(product, tier),
        tier=tier,
        category_id=product.category_id,
        sub_category_id=product.sub_category_id,
        brand_id=product.brand_id,
        stock=product.stock,
        tags=product.tags or [],
        images=product.images or [],
        attributes=product.attributes or {},
        featured=product.featured,
        most_popular=product.most_popular,
        most_sold=product.most_sold,
        display_order=product.display_order,
    )


def _special_snapshot(product: Product) -> tuple:
    """Everything a cached special-product set shows or filters on."""
    return (
        [priced_view(product, tier) for tier in Tier],
        product.published,
        product.is_deleted,
    )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required", field=field)
    return value.strip()


def _validate_stock(stock: Any) -> int:
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError("Stock must be a non-negative integer", field="stock")
    return stock


def _validate_price(value: Decimal, field: str = "price") -> Decimal:
    if value is None or not Decimal(value).is_finite() or value <= 0:
        raise ValidationError(f"{field} must be greater than 0", field=field)
    return pricing.quantize(Decimal(value))


def _validate_tier_pricing(table: TierPricing) -> dict[Tier, Decimal]:
    return {
        tier: _validate_price(value, field=f"pricing.{tier.value}")
        for tier, value in table.as_mapping().items()
    }


async def _validate_category(
    db: AsyncSession, category_id: uuid.UUID, field: str
) -> Category:
    category = await db.get(Category, category_id)
    if category is None or category.is_deleted:
        raise NotFoundError("Category", category_id, message=f"{field} not found")
    return category


async def _validate_brand(db: AsyncSession, brand_id: uuid.UUID) -> None:
    brand = await db.get(Brand, brand_id)
    if brand is None or brand.is_deleted:
        raise NotFoundError("Brand", brand_id)


async def _assert_unique(
    db: AsyncSession,
    *,
    name: Optional[str] = None,
    sku: Optional[str] = None,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    if name is not None:
        stmt = select(Product.id).where(func.lower(Product.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if (await db.execute(stmt.limit(1))).first() is not None:
            raise ConflictError(f"Product name '{name}' already exists", field="name")
    if sku is not None:
        stmt = select(Product.id).where(Product.sku == sku)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if (await db.execute(stmt.limit(1))).first() is not None:
            raise ConflictError(f"SKU '{sku}' already exists", field="sku")


async def _generate_product_code(db: AsyncSession) -> str:
    alphabet = string.ascii_lowercase + string.digits
    for _ in range(20):
        code = "#" + "".join(secrets.choice(alphabet) for _ in range(PRODUCT_CODE_LENGTH))
        exists = await db.execute(
            select(Product.id).where(Product.product_code == code).limit(1)
        )
        if exists.first() is None:
            return code
    raise ConflictError("Could not allocate a unique product code")


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------


async def create_product(
    db: AsyncSession, cache: Cache, *, data: ProductCreate
) -> Product:
    name = _require_text(data.name, "name")
    description = _require_text(data.description, "description")
    stock = _validate_stock(data.stock)
    price = _validate_price(data.price)
    tier_prices = _validate_tier_pricing(data.pricing)
    sku = data.sku.strip() if data.sku and data.sku.strip() else None

    await _validate_category(db, data.category_id, "Category")
    if data.sub_category_id is not None:
        await _validate_category(db, data.sub_category_id, "Sub-category")
    if data.brand_id is not None:
        await _validate_brand(db, data.brand_id)
    if data.parent_id is not None and await db.get(Product, data.parent_id) is None:
        raise NotFoundError("Parent product", data.parent_id)
    await _assert_unique(db, name=name, sku=sku)

    scope = product_scope(data.sub_category_id or data.category_id)
    last = await ordering.max_order(db, Product, scope)
    if data.display_order is not None:
        ordering.validate_position(data.display_order, last + 1)
        await ordering.shift_for_insert(db, Product, scope, data.display_order)
        position = data.display_order
    else:
        position = last + 1

    product = Product(
        product_code=await _generate_product_code(db),
        name=name,
        description=description,
        sku=sku,
        price=price,
        cost_price=data.cost_price,
        category_id=data.category_id,
        sub_category_id=data.sub_category_id,
        brand_id=data.brand_id,
        parent_id=data.parent_id,
        stock=stock,
        tags=data.tags,
        models=data.models,
        images=data.images,
        attributes=data.attributes,
        published=data.published,
        featured=data.featured,
        most_popular=data.most_popular,
        most_sold=data.most_sold,
        display_order=position,
    )
    for tier, value in tier_prices.items():
        product.set_tier_price(tier, value)
    db.add(product)

    await db.commit()
    await db.refresh(product)

    if data.featured or data.most_popular or data.most_sold:
        await invalidate_special_sets(cache)

    logger.info(
        "Created product %s (%s) in scope %s at %d",
        product.product_code,
        product.id,
        product.order_scope_id,
        position,
    )
    return product


async def _load_live(db: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await db.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product", product_id)
    return product


async def update_product(
    db: AsyncSession,
    cache: Cache,
    *,
    product_id: uuid.UUID,
    data: ProductUpdate,
    notifier: NotificationDispatcher,
) -> Product:
    """Partial update; only supplied fields are validated and written.

    Changing category/sub-category moves the product to the end of its new
    scope (or to ``display_order`` when also supplied). Stock going from
    zero to positive fires restock alerts after the update is committed.
    """
    product = await _load_live(db, product_id)
    changes = data.model_dump(exclude_unset=True)

    old_scope = product.order_scope_id
    old_position = product.display_order
    old_stock = product.stock
    shown_before = _special_snapshot(product)
    requested_position = changes.pop("display_order", None)

    if "name" in changes:
        name = _require_text(changes.pop("name"), "name")
        await _assert_unique(db, name=name, exclude_id=product.id)
        product.name = name
    if "description" in changes:
        product.description = _require_text(changes.pop("description"), "description")
    if "stock" in changes:
        product.stock = _validate_stock(changes.pop("stock"))
    if "price" in changes:
        product.price = _validate_price(changes.pop("price"))
    if "pricing" in changes:
        changes.pop("pricing")
        if data.pricing is None:
            raise ValidationError("All tier prices must be numeric", field="pricing")
        for tier, value in _validate_tier_pricing(data.pricing).items():
            product.set_tier_price(tier, value)
    if "cost_price" in changes:
        cost = changes.pop("cost_price")
        if cost is not None and cost < 0:
            raise ValidationError("Cost price cannot be negative", field="cost_price")
        product.cost_price = cost
    if "sku" in changes:
        sku = changes.pop("sku")
        sku = sku.strip() if sku and sku.strip() else None
        if sku is not None:
            await _assert_unique(db, sku=sku, exclude_id=product.id)
        product.sku = sku
    if "category_id" in changes:
        category_id = changes.pop("category_id")
        if category_id is None:
            raise ValidationError("Category is required", field="category_id")
        await _validate_category(db, category_id, "Category")
        product.category_id = category_id
        if category_id != category_tree.quarantine_id():
            product.quarantined_from_id = None
    if "sub_category_id" in changes:
        sub_category_id = changes.pop("sub_category_id")
        if sub_category_id is not None:
            await _validate_category(db, sub_category_id, "Sub-category")
        product.sub_category_id = sub_category_id
    if "brand_id" in changes:
        brand_id = changes.pop("brand_id")
        if brand_id is not None:
            await _validate_brand(db, brand_id)
        product.brand_id = brand_id

    for field, value in changes.items():
        if value is None and field in {"tags", "models", "images", "attributes"}:
            continue
        if value is None and field in SPECIAL_FLAGS:
            continue
        setattr(product, field, value)

    new_scope = product.order_scope_id
    if new_scope != old_scope:
        if old_position is not None:
            await ordering.close_gap(
                db, Product, product_scope(old_scope), old_position, exclude_id=product.id
            )
        scope = product_scope(new_scope)
        last = await ordering.max_order(db, Product, scope, exclude_id=product.id)
        if requested_position is not None:
            ordering.validate_position(requested_position, last + 1)
            await ordering.shift_for_insert(
                db, Product, scope, requested_position, exclude_id=product.id
            )
            product.display_order = requested_position
        else:
            product.display_order = last + 1
    elif requested_position is not None and requested_position != old_position:
        scope = product_scope(new_scope)
        last = await ordering.max_order(db, Product, scope, exclude_id=product.id)
        if old_position is None:
            ordering.validate_position(requested_position, last + 1)
            await ordering.shift_for_insert(
                db, Product, scope, requested_position, exclude_id=product.id
            )
        else:
            ordering.validate_position(requested_position, last + 1)
            await ordering.shift_for_move(
                db,
                Product,
                scope,
                old_position,
                requested_position,
                exclude_id=product.id,
            )
        product.display_order = requested_position

    await db.commit()
    await db.refresh(product)

    if _special_snapshot(product) != shown_before:
        await invalidate_special_sets(cache)

    if old_stock <= 0 < product.stock:
        try:
            await trigger_restock_notifications(
                db, product_id=product.id, notifier=notifier
            )
        except Exception as e:
            logger.error("Restock notification for %s failed: %s", product.id, e)

    return product


async def delete_product(
    db: AsyncSession, cache: Cache, *, product_id: uuid.UUID
) -> None:
    """Hard-delete a product and its variations, then renumber its scope.

    The renumber runs after the delete is committed and only logs on
    failure.
    """
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    scope_id = product.order_scope_id

    variations = await db.execute(
        delete(Product)
        .where(Product.parent_id == product_id)
        .execution_options(synchronize_session=False)
    )
    await db.delete(product)
    await db.commit()
    await invalidate_special_sets(cache)
    logger.info(
        "Deleted product %s and %d variations", product_id, variations.rowcount
    )

    try:
        await ordering.renumber(db, Product, product_scope(scope_id))
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Renumbering scope %s after delete failed: %s", scope_id, e)


async def toggle_published(
    db: AsyncSession, cache: Cache, *, product_id: uuid.UUID
) -> Product:
    product = await _load_live(db, product_id)
    product.published = not product.published
    await db.commit()
    await db.refresh(product)
    await invalidate_special_sets(cache)
    return product


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    return await _load_live(db, product_id)


async def get_priced_product(
    db: AsyncSession, *, product_id: uuid.UUID, tier: Tier
) -> PricedProduct:
    product = await _load_live(db, product_id)
    if not product.published:
        raise NotFoundError("Product", product_id)
    return priced_view(product, tier)


def _visible_clauses() -> list[Any]:
    return [
        Product.published.is_(True),
        Product.is_deleted.is_(False),
        Product.category_id != category_tree.quarantine_id(),
    ]


def _keyword_clause(keyword: str) -> Any:
    pattern = f"%{keyword}%"
    return or_(
        Product.name.ilike(pattern),
        Product.sku.ilike(pattern),
        Product.description.ilike(pattern),
        cast(Product.tags, String).ilike(pattern),
        cast(Product.models, String).ilike(pattern),
    )


async def list_products(
    db: AsyncSession,
    *,
    tier: Tier,
    category_id: Optional[uuid.UUID] = None,
    brand_id: Optional[uuid.UUID] = None,
    tag: Optional[str] = None,
    keyword: Optional[str] = None,
    attributes: Optional[dict[str, str]] = None,
    sort: str = "display_order",
    order: str = "asc",
    page: int = 1,
    limit: int = 20,
) -> ProductPage:
    """Published products matching every supplied filter, priced for ``tier``.

    A category filter includes its whole subtree. Every whitespace-separated
    keyword must match at least one of name, SKU, description, tags or
    models (case-insensitive).
    """
    if sort not in SORT_FIELDS:
        raise ValidationError(
            f"Unsupported sort field '{sort}'", field="sort"
        )
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    clauses = _visible_clauses()
    if category_id is not None:
        ids = await category_tree.subtree_ids(db, category_id)
        clauses.append(
            or_(Product.category_id.in_(ids), Product.sub_category_id.in_(ids))
        )
    if brand_id is not None:
        clauses.append(Product.brand_id == brand_id)
    if tag:
        clauses.append(cast(Product.tags, String).ilike(f"%{tag.strip()}%"))
    if keyword:
        for word in keyword.split():
            clauses.append(_keyword_clause(word))
    for key, value in (attributes or {}).items():
        clauses.append(Product.attributes[key].as_string() == value)

    total = (
        await db.execute(select(func.count(Product.id)).where(*clauses))
    ).scalar_one()

    column = SORT_FIELDS[sort]
    direction = column.desc() if order == "desc" else column.asc()
    stmt = (
        select(Product)
        .where(*clauses)
        .order_by(direction.nulls_last(), Product.created_at.desc(), Product.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    products = (await db.execute(stmt)).scalars().all()

    return ProductPage(
        items=[priced_view(p, tier) for p in products],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


async def _flagged(db: AsyncSession, flag_column: Any) -> list[Product]:
    result = await db.execute(
        select(Product)
        .where(*_visible_clauses(), flag_column.is_(True))
        .order_by(
            Product.display_order.asc().nulls_last(), Product.created_at.desc()
        )
        .limit(SPECIAL_SET_SIZE)
    )
    return list(result.scalars().all())


async def special_sets(
    db: AsyncSession, cache: Cache, *, tier: Tier
) -> SpecialProductSets:
    """Most-sold, most-popular and featured lists for ``tier``. Cached per tier."""
    key = f"{SPECIAL_CACHE_PREFIX}{tier.value}"
    cached = await cache.get(key)
    if cached is not None:
        return SpecialProductSets.model_validate(cached)

    sets = SpecialProductSets(
        tier=tier,
        most_sold=[priced_view(p, tier) for p in await _flagged(db, Product.most_sold)],
        most_popular=[
            priced_view(p, tier) for p in await _flagged(db, Product.most_popular)
        ],
        featured=[priced_view(p, tier) for p in await _flagged(db, Product.featured)],
    )
    await cache.set(
        key,
        sets.model_dump(mode="json"),
        ttl=get_settings().SPECIAL_PRODUCTS_CACHE_TTL_SECONDS,
    )
    return sets


async def product_count_by_category(db: AsyncSession, category_id: uuid.UUID) -> int:
    await category_tree.get_category(db, category_id)
    ids = await category_tree.subtree_ids(db, category_id)
    result = await db.execute(
        select(func.count(Product.id)).where(
            Product.is_deleted.is_(False),
            or_(Product.category_id.in_(ids), Product.sub_category_id.in_(ids)),
        )
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Bulk admin operations
# ---------------------------------------------------------------------------


async def bulk_update_display_order(
    db: AsyncSession,
    cache: Cache,
    *,
    scope_id: uuid.UUID,
    entries: list[DisplayOrderEntry],
) -> list[Product]:
    """Pin the given products to positions; the rest keep their relative order.

    The resulting scope is always exactly 1..N.
    """
    rows = await ordering.scope_rows(db, Product, product_scope(scope_id))
    by_id = {row.id: row for row in rows}
    total = len(rows)

    pinned: dict[uuid.UUID, int] = {}
    for entry in entries:
        if entry.product_id not in by_id:
            raise ValidationError(
                f"Product {entry.product_id} is not in scope {scope_id}",
                field="entries",
            )
        ordering.validate_position(entry.display_order, total)
        pinned[entry.product_id] = entry.display_order
    if len(set(pinned.values())) != len(pinned):
        raise ValidationError("Display orders must be unique", field="entries")

    free_slots = iter(sorted(set(range(1, total + 1)) - set(pinned.values())))
    for row in rows:
        row.display_order = pinned.get(row.id) or next(free_slots)

    await db.commit()
    await invalidate_special_sets(cache)
    return sorted(rows, key=lambda r: r.display_order)


async def bulk_update_pricing(
    db: AsyncSession,
    cache: Cache,
    *,
    product_ids: list[uuid.UUID],
    percents: dict[Tier, Decimal],
) -> dict[str, Any]:
    """Derive tier prices from each product's cost price."""
    if not percents:
        raise ValidationError("At least one tier percentage is required", field="percents")
    for tier, percent in percents.items():
        if percent <= 0:
            raise ValidationError(
                f"Percentage for {tier.value} must be greater than 0", field="percents"
            )

    result = await db.execute(
        select(Product).where(Product.id.in_(product_ids), Product.is_deleted.is_(False))
    )
    products = result.scalars().all()
    found = {p.id for p in products}

    updated: list[uuid.UUID] = []
    skipped: list[uuid.UUID] = [pid for pid in product_ids if pid not in found]
    for product in products:
        if product.cost_price is None:
            skipped.append(product.id)
            continue
        pricing.apply_percentages(product, percents)
        updated.append(product.id)

    await db.commit()
    await invalidate_special_sets(cache)
    logger.info("Bulk pricing updated %d products (%d skipped)", len(updated), len(skipped))
    return {"updated": updated, "skipped": skipped}


# ---------------------------------------------------------------------------
# Brands
# ---------------------------------------------------------------------------


async def _validate_brand_categories(
    db: AsyncSession, category_ids: list[uuid.UUID]
) -> list[str]:
    for category_id in category_ids:
        await _validate_category(db, category_id, "Brand category")
    return [str(category_id) for category_id in category_ids]


async def _assert_brand_name_free(
    db: AsyncSession, name: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(Brand.id).where(func.lower(Brand.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Brand.id != exclude_id)
    if (await db.execute(stmt.limit(1))).first() is not None:
        raise ConflictError(f"Brand '{name}' already exists", field="name")


async def create_brand(
    db: AsyncSession,
    *,
    name: str,
    title: Optional[str] = None,
    image: Optional[str] = None,
    category_ids: Optional[list[uuid.UUID]] = None,
    is_active: bool = True,
    is_featured: bool = False,
) -> Brand:
    name = _require_text(name, "name")
    await _assert_brand_name_free(db, name)
    brand = Brand(
        name=name,
        title=(title or "").strip() or name,
        image=image,
        category_ids=await _validate_brand_categories(db, category_ids or []),
        is_active=is_active,
        is_featured=is_featured,
    )
    db.add(brand)
    await db.commit()
    await db.refresh(brand)
    logger.info("Created brand %s (%s)", brand.name, brand.id)
    return brand


async def get_brand(db: AsyncSession, brand_id: uuid.UUID) -> Brand:
    brand = await db.get(Brand, brand_id)
    if brand is None or brand.is_deleted:
        raise NotFoundError("Brand", brand_id)
    return brand


async def list_brands(
    db: AsyncSession,
    *,
    active: Optional[bool] = None,
    category_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
) -> list[Brand]:
    stmt = select(Brand).where(Brand.is_deleted.is_(False))
    if active is not None:
        stmt = stmt.where(Brand.is_active.is_(active))
    if category_id is not None:
        stmt = stmt.where(cast(Brand.category_ids, String).ilike(f"%{category_id}%"))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Brand.name.ilike(pattern), Brand.title.ilike(pattern)))
    result = await db.execute(stmt.order_by(Brand.name))
    return list(result.scalars().all())


async def update_brand(
    db: AsyncSession, *, brand_id: uuid.UUID, update_in: BrandUpdate
) -> Brand:
    brand = await get_brand(db, brand_id)
    data = update_in.model_dump(exclude_unset=True)

    if "name" in data:
        name = _require_text(data.pop("name"), "name")
        await _assert_brand_name_free(db, name, exclude_id=brand.id)
        brand.name = name
    if "category_ids" in data:
        brand.category_ids = await _validate_brand_categories(
            db, data.pop("category_ids") or []
        )
    if "title" in data:
        brand.title = (data.pop("title") or "").strip() or brand.name
    for field, value in data.items():
        if value is None and field in ("is_active", "is_featured"):
            continue
        setattr(brand, field, value)

    await db.commit()
    await db.refresh(brand)
    return brand


async def toggle_brand_status(db: AsyncSession, *, brand_id: uuid.UUID) -> Brand:
    brand = await get_brand(db, brand_id)
    brand.is_active = not brand.is_active
    await db.commit()
    await db.refresh(brand)
    logger.info("Brand %s is now %s", brand.id, "active" if brand.is_active else "inactive")
    return brand


async def delete_brand(db: AsyncSession, cache: Cache, *, brand_id: uuid.UUID) -> int:
    """Soft-delete a brand and detach it from its products.

    Returns the number of products that lost the brand.
    """
    brand = await get_brand(db, brand_id)
    brand.is_deleted = True
    brand.is_active = False
    detached = await db.execute(
        update(Product)
        .where(Product.brand_id == brand.id)
        .values(brand_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await invalidate_special_sets(cache)
    logger.info("Deleted brand %s, detached %d products", brand_id, detached.rowcount)
    return detached.rowcount
