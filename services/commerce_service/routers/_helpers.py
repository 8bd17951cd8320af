"""Shared dependencies for commerce routers."""

from typing import Optional

from fastapi import Depends, Request
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.cache import Cache
from services.commerce_service.models import Tier
from services.commerce_service.services import pricing


def get_cache(request: Request) -> Cache:
    """Process-wide cache built with the app."""
    return request.app.state.cache


async def get_caller_tier(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
) -> Tier:
    """Pricing tier for the caller; guests get the default tier."""
    return pricing.resolve_tier(current_user.role if current_user else None)
