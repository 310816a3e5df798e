"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from affhelper.api.middleware.error_handler import error_handler_middleware
from affhelper.api.middleware.latency_logging import latency_logging_middleware
from affhelper.api.routes import admin, health, links
from affhelper.core.config import get_settings
from affhelper.providers.registry import shutdown_providers
from affhelper.services.link_conversion_service import get_link_conversion_service
from affhelper.services.order_sync_service import (
    init_order_sync_scheduler,
    shutdown_order_sync_scheduler,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the order sync scheduler on startup; stop it and release marketplace clients on shutdown."""
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    await init_order_sync_scheduler()

    yield

    await shutdown_order_sync_scheduler()
    await shutdown_providers()
    get_link_conversion_service.cache_clear()
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="AffHelper API",
        description="Affiliate cashback backend: link conversion and order reconciliation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Latency logging wraps the error handler and sees the rendered status
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)

    # Health routes at root level (no prefix)
    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(links.router)
    api_v1_router.include_router(admin.router)
    app.include_router(api_v1_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "affhelper.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
