"""Public catalog router: categories, brands, tags, products, restock alerts."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from libs.common.cache import Cache
from libs.common.errors import NotFoundError
from libs.db.session import get_async_db
from services.commerce_service.integrations.mailing_list import (
    MailingListSync,
    get_mailing_list,
)
from services.commerce_service.models import Tier
from services.commerce_service.routers._helpers import get_cache, get_caller_tier
from services.commerce_service.schemas import (
    BrandResponse,
    CategoryResponse,
    PricedProduct,
    ProductPage,
    RestockSubscribe,
    SpecialProductSets,
    TagResponse,
)
from services.commerce_service.services import category_tree, product_catalog, tag_ops
from services.commerce_service.services.restock import subscribe_restock
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["commerce"])

# Query parameters that are not attribute filters
_RESERVED_PARAMS = {
    "category_id",
    "brand_id",
    "tag",
    "keyword",
    "sort",
    "order",
    "page",
    "limit",
}


# ============================================================================
# CATEGORIES
# ============================================================================


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """All live categories outside quarantine, ordered for display."""
    return await category_tree.list_public(db, cache)


@router.get("/categories/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    return await category_tree.get_category(db, category_id)


@router.get("/categories/{category_id}/children", response_model=list[CategoryResponse])
async def list_category_children(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    return await category_tree.list_children(db, category_id)


@router.get("/categories/{category_id}/path", response_model=list[CategoryResponse])
async def get_category_path(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    """Breadcrumb from the root down to this category."""
    return await category_tree.category_path(db, category_id)


@router.get("/categories/{category_id}/product-count")
async def get_category_product_count(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    count = await product_catalog.product_count_by_category(db, category_id)
    return {"category_id": category_id, "product_count": count}


# ============================================================================
# BRANDS
# ============================================================================


@router.get("/brands", response_model=list[BrandResponse])
async def list_brands(
    category_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_db),
):
    """Active brands only."""
    return await product_catalog.list_brands(
        db, active=True, category_id=category_id, search=search
    )


@router.get("/brands/{brand_id}", response_model=BrandResponse)
async def get_brand(brand_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    brand = await product_catalog.get_brand(db, brand_id)
    if not brand.is_active:
        raise NotFoundError("Brand", brand_id)
    return brand


# ============================================================================
# TAGS
# ============================================================================


@router.get("/tags", response_model=list[str])
async def list_tag_names(
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_db),
):
    return await tag_ops.list_tag_names(db, search=search)


@router.get("/tags/featured", response_model=list[TagResponse])
async def list_featured_tags(
    limit: int = Query(10, ge=1),
    db: AsyncSession = Depends(get_async_db),
):
    return await tag_ops.featured_tags(db, limit=limit)


# ============================================================================
# PRODUCTS
# ============================================================================


@router.get("/products", response_model=ProductPage)
async def list_products(
    request: Request,
    category_id: Optional[uuid.UUID] = Query(None),
    brand_id: Optional[uuid.UUID] = Query(None),
    tag: Optional[str] = Query(None),
    keyword: Optional[str] = Query(None),
    sort: str = Query("display_order"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    tier: Tier = Depends(get_caller_tier),
    db: AsyncSession = Depends(get_async_db),
):
    """Published products priced for the caller's tier.

    Any query parameter not listed above filters on a product attribute,
    e.g. ``?color=red``.
    """
    attributes = {
        key: value
        for key, value in request.query_params.items()
        if key not in _RESERVED_PARAMS
    }
    return await product_catalog.list_products(
        db,
        tier=tier,
        category_id=category_id,
        brand_id=brand_id,
        tag=tag,
        keyword=keyword,
        attributes=attributes,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )


@router.get("/products/special", response_model=SpecialProductSets)
async def get_special_products(
    tier: Tier = Depends(get_caller_tier),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Most-sold, most-popular and featured products."""
    return await product_catalog.special_sets(db, cache, tier=tier)


@router.get("/products/{product_id}", response_model=PricedProduct)
async def get_product(
    product_id: uuid.UUID,
    tier: Tier = Depends(get_caller_tier),
    db: AsyncSession = Depends(get_async_db),
):
    return await product_catalog.get_priced_product(db, product_id=product_id, tier=tier)


@router.post("/products/{product_id}/notify", status_code=status.HTTP_201_CREATED)
async def subscribe_to_restock(
    product_id: uuid.UUID,
    payload: RestockSubscribe,
    db: AsyncSession = Depends(get_async_db),
    mailing_list: MailingListSync = Depends(get_mailing_list),
):
    """Ask to be emailed when the product is back in stock."""
    subscription = await subscribe_restock(
        db, product_id=product_id, email=payload.email, mailing_list=mailing_list
    )
    return {
        "id": subscription.id,
        "product_id": subscription.product_id,
        "email": subscription.email,
    }
