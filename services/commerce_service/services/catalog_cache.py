"""Cache keys for catalog reads and the writes that invalidate them."""

from libs.common.cache import Cache

CATEGORIES_CACHE_KEY = "categories:public"
SPECIAL_CACHE_PREFIX = "special-products:"


async def invalidate_category_cache(cache: Cache) -> None:
    await cache.invalidate(CATEGORIES_CACHE_KEY)


async def invalidate_special_sets(cache: Cache) -> None:
    """Drop the special-product sets of every tier."""
    await cache.invalidate_prefix(SPECIAL_CACHE_PREFIX)
