"""Cart router: the caller's active cart, priced at their tier."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.commerce_service.schemas import CartItemInput, CartReplace, PricedCart
from services.commerce_service.services import cart_ops, pricing
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["commerce"])


async def _priced(db: AsyncSession, user: AuthUser) -> PricedCart:
    return await cart_ops.get_cart(
        db, user_id=user.user_id, tier=pricing.resolve_tier(user.role)
    )


@router.get("/cart", response_model=PricedCart)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await _priced(db, current_user)


@router.post("/cart/items", response_model=PricedCart)
async def add_cart_item(
    item_in: CartItemInput,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add a product; an existing line for the same product is incremented."""
    await cart_ops.add_to_cart(
        db,
        user_id=current_user.user_id,
        product_id=item_in.product_id,
        quantity=item_in.quantity,
        user_email=current_user.email,
    )
    return await _priced(db, current_user)


@router.put("/cart", response_model=PricedCart)
async def replace_cart(
    cart_in: CartReplace,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Replace every line with the client's cart state."""
    await cart_ops.replace_cart(
        db,
        user_id=current_user.user_id,
        items=cart_in.items,
        user_email=current_user.email,
    )
    return await _priced(db, current_user)


@router.delete("/cart/items/{product_id}", response_model=PricedCart)
async def remove_cart_item(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await cart_ops.remove_from_cart(
        db, user_id=current_user.user_id, product_id=product_id
    )
    return await _priced(db, current_user)


@router.delete("/cart", response_model=PricedCart)
async def clear_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await cart_ops.clear_cart(db, user_id=current_user.user_id)
    return await _priced(db, current_user)
