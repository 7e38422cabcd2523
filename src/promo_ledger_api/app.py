from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from promo_ledger_api.core.settings import settings
from promo_ledger_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Promo ledger API starting",
        environment=settings.environment,
        visit_loyalty_points=settings.visit_loyalty_points,
        redemption_validity_days=settings.redemption_validity_days,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Promo ledger API stopped")


def create_app() -> FastAPI:
    """Application factory for the promo ledger FastAPI service."""
    configure_logging(
        service_name="promo-ledger-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Promo Ledger API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="promo-ledger-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
