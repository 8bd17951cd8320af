"""FastAPI application for the Commerce Service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from libs.common.cache import build_cache
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.db.config import AsyncSessionLocal
from services.commerce_service.integrations.mailing_list import MailingListSync
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
)
from services.commerce_service.integrations.payments import StripeGateway
from services.commerce_service.integrations.storage import ObjectStorage
from services.commerce_service.routers import (
    admin_catalog_router,
    admin_orders_router,
    cart_router,
    catalog_router,
    orders_router,
)
from services.commerce_service.services import category_tree

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # External collaborators live for the whole process
    app.state.payment_gateway = StripeGateway()
    app.state.storage = ObjectStorage()
    app.state.notifier = NotificationDispatcher()
    app.state.mailing_list = MailingListSync()

    async with AsyncSessionLocal() as db:
        quarantine = await category_tree.ensure_quarantine(db)
        await db.commit()
        logger.info("Quarantine category ready: %s", quarantine.id)
    yield
    await app.state.cache.close()


def create_app() -> FastAPI:
    """Create and configure the Commerce Service FastAPI app."""
    app = FastAPI(
        title="Commerce Service",
        version="0.1.0",
        description="B2B commerce service - tiered catalog, cart, orders, refunds.",
        lifespan=lifespan,
    )
    app.state.cache = build_cache()

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "commerce"}

    # Public and customer routes (catalog, cart, checkout, requests)
    app.include_router(catalog_router, prefix="/commerce")
    app.include_router(cart_router, prefix="/commerce")
    app.include_router(orders_router, prefix="/commerce")

    # Admin routes (catalog management, order lifecycle, request resolution)
    app.include_router(admin_catalog_router, prefix="/admin/commerce")
    app.include_router(admin_orders_router, prefix="/admin/commerce")

    return app


app = create_app()
