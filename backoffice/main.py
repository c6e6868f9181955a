"""
FastAPI application entry point for the restaurant back-office.

The feature catalog is loaded during startup: an invalid catalog.yml
aborts the process before it serves a request.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice import __version__
from backoffice.api.errors import register_error_handlers
from backoffice.api.routes import admin
from backoffice.api.routes import billing_events
from backoffice.api.routes import subscriptions
from backoffice.entitlements.loader import get_catalog_loader

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting back-office API")

    # Fail fast: CatalogConfigurationError propagates and startup aborts
    loader = get_catalog_loader()
    app.state.catalog_loader = loader
    logger.info("Feature catalog ready", extra={
        "features": len(loader.catalog),
        "plans": [p.tier.value for p in loader.plans.all()],
    })

    for var in ("DATABASE_URL", "ADMIN_JWT_SECRET", "BILLING_WEBHOOK_SECRET"):
        if not os.getenv(var):
            logger.warning("%s is not set; dependent endpoints will return 503", var)

    yield

    logger.info("Shutting down back-office API")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Restaurant Back-office API",
        description="Feature entitlements and subscription lifecycle for restaurant tenants",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware (configure for the admin console's domain)
    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(admin.router)
    app.include_router(subscriptions.router)
    app.include_router(billing_events.router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok", "version": __version__}

    return app


def _configure_logging() -> None:
    # Configure structured logging
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


_configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "backoffice.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
