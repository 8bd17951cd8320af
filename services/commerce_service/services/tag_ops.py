"""Product tags.

Products keep tag names in ``Product.tags``; renaming or deleting a tag is
applied to every product that carries it.
"""

import math
import uuid
from typing import Optional

from libs.common.cache import Cache
from libs.common.errors import ConflictError, NotFoundError, ValidationError
from libs.common.logging import get_logger
from services.commerce_service.models import Product, Tag
from services.commerce_service.schemas import TagPage, TagResponse, TagUpdate
from services.commerce_service.services.catalog_cache import invalidate_special_sets
from sqlalchemy import String, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_FEATURED_TAGS = 10
MAX_PAGE_SIZE = 50

SORT_FIELDS = {
    "name": Tag.name,
    "created_at": Tag.created_at,
    "featured": Tag.featured,
}


async def _assert_name_free(
    db: AsyncSession, name: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(Tag.id).where(func.lower(Tag.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Tag.id != exclude_id)
    if (await db.execute(stmt.limit(1))).first() is not None:
        raise ConflictError(f"Tag '{name}' already exists", field="name")


async def _featured_count(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(Tag).where(Tag.featured.is_(True))
    )
    return result.scalar_one()


async def _assert_featured_slot(db: AsyncSession) -> None:
    if await _featured_count(db) >= MAX_FEATURED_TAGS:
        raise ValidationError(
            f"Maximum {MAX_FEATURED_TAGS} tags can be featured at a time",
            field="featured",
        )


async def _products_tagged(db: AsyncSession, name: str) -> list[Product]:
    # JSON arrays are filtered coarsely in SQL and exactly in Python
    result = await db.execute(
        select(Product).where(cast(Product.tags, String).like(f'%"{name}"%'))
    )
    return [p for p in result.scalars().all() if name in (p.tags or [])]


async def get_tag(db: AsyncSession, tag_id: uuid.UUID) -> Tag:
    tag = await db.get(Tag, tag_id)
    if tag is None:
        raise NotFoundError("Tag", tag_id)
    return tag


async def create_tag(
    db: AsyncSession,
    *,
    name: str,
    featured: bool = False,
    image: Optional[str] = None,
) -> Tag:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tag name is required", field="name")
    await _assert_name_free(db, name)
    if featured:
        await _assert_featured_slot(db)

    tag = Tag(name=name, featured=featured, image=image)
    db.add(tag)
    await db.commit()
    await db.refresh(tag)
    logger.info("Created tag %s", tag.name)
    return tag


async def list_tag_names(db: AsyncSession, *, search: Optional[str] = None) -> list[str]:
    stmt = select(Tag.name)
    if search:
        stmt = stmt.where(Tag.name.ilike(f"%{search.strip()}%"))
    result = await db.execute(stmt.order_by(Tag.name))
    return list(result.scalars().all())


async def list_tags(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    sort: str = "name",
    order: str = "asc",
    page: int = 1,
    limit: int = 20,
) -> TagPage:
    if sort not in SORT_FIELDS:
        raise ValidationError(
            f"Sort must be one of: {', '.join(SORT_FIELDS)}", field="sort"
        )
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    filters = []
    if search:
        filters.append(Tag.name.ilike(f"%{search.strip()}%"))
    if featured is not None:
        filters.append(Tag.featured.is_(featured))

    total = (
        await db.execute(select(func.count()).select_from(Tag).where(*filters))
    ).scalar_one()
    column = SORT_FIELDS[sort]
    result = await db.execute(
        select(Tag)
        .where(*filters)
        .order_by(column.desc() if order == "desc" else column.asc(), Tag.name)
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return TagPage(
        items=[TagResponse.model_validate(t) for t in result.scalars().all()],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
        featured_count=await _featured_count(db),
    )


async def featured_tags(db: AsyncSession, *, limit: int = 10) -> list[Tag]:
    """Featured tags, newest first."""
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    result = await db.execute(
        select(Tag)
        .where(Tag.featured.is_(True))
        .order_by(Tag.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def update_tag(
    db: AsyncSession, cache: Cache, *, tag_id: uuid.UUID, update_in: TagUpdate
) -> Tag:
    """Update a tag; a rename is carried into every product's tag list."""
    tag = await get_tag(db, tag_id)
    data = update_in.model_dump(exclude_unset=True)
    old_name = tag.name
    renamed = 0

    if data.get("name") is not None:
        new_name = data["name"].strip()
        if not new_name:
            raise ValidationError("Tag name is required", field="name")
        if new_name != old_name:
            await _assert_name_free(db, new_name, exclude_id=tag.id)
            for product in await _products_tagged(db, old_name):
                product.tags = [
                    new_name if t == old_name else t for t in product.tags
                ]
                renamed += 1
            tag.name = new_name

    if data.get("featured") is True and not tag.featured:
        await _assert_featured_slot(db)
    if data.get("featured") is not None:
        tag.featured = data["featured"]
    if "image" in data:
        tag.image = data["image"]

    await db.commit()
    await db.refresh(tag)
    if renamed:
        await invalidate_special_sets(cache)
        logger.info("Renamed tag %s to %s on %d products", old_name, tag.name, renamed)
    return tag


async def delete_tag(db: AsyncSession, cache: Cache, *, tag_id: uuid.UUID) -> dict:
    """Delete a tag and remove its name from every product."""
    tag = await get_tag(db, tag_id)
    name = tag.name

    products = await _products_tagged(db, name)
    for product in products:
        product.tags = [t for t in product.tags if t != name]
    await db.delete(tag)
    await db.commit()

    if products:
        await invalidate_special_sets(cache)
    logger.info("Deleted tag %s from %d products", name, len(products))
    return {"name": name, "products_updated": len(products)}
