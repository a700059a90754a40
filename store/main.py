from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import store.models  # noqa: F401
from store.core.config import Settings, settings as default_settings
from store.core.errors import register_error_handlers
from store.core.logging import configure_logging

# Routers
from store.routers.auth import router as auth_router
from store.routers.orders import router as orders_router
from store.routers.coupons import router as coupons_router
from store.routers.wallet import router as wallet_router
from store.routers.payments import router as payments_router
from store.routers.prices import router as prices_router

from store.routers.admin_orders import router as admin_orders_router
from store.routers.admin_coupons import router as admin_coupons_router
from store.routers.admin_wallet import router as admin_wallet_router
from store.routers.admin_prices import router as admin_prices_router
from store.routers.admin_users import router as admin_users_router

from store.services.catalog import validate_catalog
from store.services.container import Services, build_services

logger = structlog.get_logger(__name__)


def create_app(settings: Settings = default_settings, services: Services | None = None) -> FastAPI:
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    validate_catalog()

    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_started", environment=settings.ENVIRONMENT)
        yield
        # let in-flight confirmation mails finish
        await services.tasks.drain(timeout=10)
        logger.info("app_stopped")

    app = FastAPI(title="Store backend", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Auth
    app.include_router(auth_router)

    # Storefront
    app.include_router(orders_router)
    app.include_router(coupons_router)
    app.include_router(wallet_router)
    app.include_router(payments_router)
    app.include_router(prices_router)

    # Admin
    app.include_router(admin_orders_router)
    app.include_router(admin_coupons_router)
    app.include_router(admin_wallet_router)
    app.include_router(admin_prices_router)
    app.include_router(admin_users_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
