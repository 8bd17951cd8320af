"""Admin catalog router: category tree, products, brands, tags, image uploads."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.cache import Cache
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from services.commerce_service.integrations.storage import (
    ObjectStorage,
    check_managed_key,
    get_object_storage,
)
from services.commerce_service.routers._helpers import get_cache
from services.commerce_service.schemas import (
    BrandCreate,
    BrandResponse,
    BrandUpdate,
    BulkDisplayOrderUpdate,
    BulkPricingUpdate,
    CategoryCreate,
    CategoryProductCount,
    CategoryReorder,
    CategoryResponse,
    CategoryUpdate,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    TagCreate,
    TagDeleted,
    TagPage,
    TagResponse,
    TagUpdate,
    UploadUrlRequest,
    UploadUrlResponse,
)
from services.commerce_service.services import (
    category_tree,
    product_catalog,
    tag_ops,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(tags=["admin-commerce"])


# ============================================================================
# CATEGORIES
# ============================================================================


@router.get("/categories", response_model=list[CategoryResponse])
async def list_all_categories(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List every category, including quarantine and soft-deleted ones."""
    return await category_tree.list_admin(db)


@router.get("/categories/product-counts", response_model=list[CategoryProductCount])
async def category_product_counts(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await category_tree.product_counts(db)


@router.post(
    "/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED
)
async def create_category(
    category_in: CategoryCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    fields = category_in.model_dump(exclude={"name", "parent_id", "display_order"})
    return await category_tree.create_category(
        db,
        cache,
        name=category_in.name,
        parent_id=category_in.parent_id,
        display_order=category_in.display_order,
        **fields,
    )


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: uuid.UUID,
    category_in: CategoryUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Partial update; sending ``parent_id`` moves the category with its subtree."""
    return await category_tree.update_category(
        db,
        cache,
        category_id=category_id,
        changes=category_in.model_dump(exclude_unset=True),
    )


@router.post("/categories/{category_id}/reorder", response_model=CategoryResponse)
async def reorder_category(
    category_id: uuid.UUID,
    reorder_in: CategoryReorder,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    return await category_tree.reorder_category(
        db, cache, category_id=category_id, direction=reorder_in.direction
    )


@router.delete("/categories/{category_id}", response_model=CategoryResponse)
async def delete_category(
    category_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Move the category and its subtree to quarantine."""
    category = await category_tree.delete_category(db, cache, category_id=category_id)
    logger.info("Category %s deleted by %s", category_id, current_user.user_id)
    return category


@router.post("/categories/repair-ordering")
async def repair_category_ordering(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Renumber every sibling group to a dense 1..N now."""
    changed = await category_tree.repair_all(db)
    if changed:
        await category_tree.invalidate_category_cache(cache)
    return {"repaired": changed}


# ============================================================================
# PRODUCTS
# ============================================================================


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    product = await product_catalog.get_product(db, product_id)
    return ProductResponse.from_product(product)


@router.post(
    "/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED
)
async def create_product(
    product_in: ProductCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    product = await product_catalog.create_product(db, cache, data=product_in)
    return ProductResponse.from_product(product)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: uuid.UUID,
    product_in: ProductUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    product = await product_catalog.update_product(
        db, cache, product_id=product_id, data=product_in, notifier=notifier
    )
    return ProductResponse.from_product(product)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Delete a product together with its variations."""
    await product_catalog.delete_product(db, cache, product_id=product_id)


@router.post("/products/{product_id}/toggle-published", response_model=ProductResponse)
async def toggle_product_published(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    product = await product_catalog.toggle_published(db, cache, product_id=product_id)
    return ProductResponse.from_product(product)


@router.post("/products/display-order", response_model=list[ProductResponse])
async def bulk_update_display_order(
    update_in: BulkDisplayOrderUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    products = await product_catalog.bulk_update_display_order(
        db, cache, scope_id=update_in.scope_id, entries=update_in.entries
    )
    return [ProductResponse.from_product(p) for p in products]


@router.post("/products/pricing")
async def bulk_update_pricing(
    update_in: BulkPricingUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Set tier prices as percentages of each product's cost price."""
    return await product_catalog.bulk_update_pricing(
        db, cache, product_ids=update_in.product_ids, percents=update_in.as_mapping()
    )


# ============================================================================
# BRANDS
# ============================================================================


@router.get("/brands", response_model=list[BrandResponse])
async def list_all_brands(
    active: Optional[bool] = Query(None),
    category_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """All non-deleted brands, active or not."""
    return await product_catalog.list_brands(
        db, active=active, category_id=category_id, search=search
    )


@router.post("/brands", response_model=BrandResponse, status_code=status.HTTP_201_CREATED)
async def create_brand(
    brand_in: BrandCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await product_catalog.create_brand(db, **brand_in.model_dump())


@router.get("/brands/{brand_id}", response_model=BrandResponse)
async def get_brand(
    brand_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await product_catalog.get_brand(db, brand_id)


@router.patch("/brands/{brand_id}", response_model=BrandResponse)
async def update_brand(
    brand_id: uuid.UUID,
    brand_in: BrandUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await product_catalog.update_brand(db, brand_id=brand_id, update_in=brand_in)


@router.post("/brands/{brand_id}/toggle-status", response_model=BrandResponse)
async def toggle_brand_status(
    brand_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await product_catalog.toggle_brand_status(db, brand_id=brand_id)


@router.delete("/brands/{brand_id}")
async def delete_brand(
    brand_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Soft-delete a brand; its products keep selling without one."""
    detached = await product_catalog.delete_brand(db, cache, brand_id=brand_id)
    return {"brand_id": brand_id, "products_updated": detached}


# ============================================================================
# TAGS
# ============================================================================


@router.get("/tags", response_model=TagPage)
async def list_tags(
    search: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    sort: str = Query("name"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await tag_ops.list_tags(
        db,
        search=search,
        featured=featured,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )


@router.post("/tags", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    tag_in: TagCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await tag_ops.create_tag(
        db, name=tag_in.name, featured=tag_in.featured, image=tag_in.image
    )


@router.patch("/tags/{tag_id}", response_model=TagResponse)
async def update_tag(
    tag_id: uuid.UUID,
    tag_in: TagUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    """Update a tag; a rename is applied to every product carrying it."""
    return await tag_ops.update_tag(db, cache, tag_id=tag_id, update_in=tag_in)


@router.delete("/tags/{tag_id}", response_model=TagDeleted)
async def delete_tag(
    tag_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    cache: Cache = Depends(get_cache),
):
    return await tag_ops.delete_tag(db, cache, tag_id=tag_id)


# ============================================================================
# UPLOADS
# ============================================================================


@router.post("/uploads", response_model=UploadUrlResponse)
async def create_upload_url(
    upload_in: UploadUrlRequest,
    current_user: AuthUser = Depends(require_admin),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Presigned PUT URL for an image; store ``public_url`` on the entity."""
    key = storage.build_key(upload_in.folder, upload_in.filename)
    return UploadUrlResponse(
        key=key,
        upload_url=storage.presign_upload(key, upload_in.content_type),
        public_url=storage.public_url(key),
    )


@router.get("/uploads/download-url")
async def create_download_url(
    key: str = Query(..., min_length=1),
    current_user: AuthUser = Depends(require_admin),
    storage: ObjectStorage = Depends(get_object_storage),
):
    key = check_managed_key(key)
    return {"key": key, "download_url": storage.presign_download(key)}


@router.delete("/uploads", status_code=status.HTTP_204_NO_CONTENT)
async def delete_upload(
    key: str = Query(..., min_length=1),
    current_user: AuthUser = Depends(require_admin),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Remove an image that no entity references any more."""
    await storage.delete(check_managed_key(key))
    logger.info("Admin %s deleted upload %s", current_user.user_id, key)
