"""
POS Returns Engine - FastAPI Application Entry Point

Wires the product return router, the error envelope and the database
lifecycle into one ASGI app.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import close_db, get_async_session, init_db, ping_database
from app.routers import product_returns
from app.utils.error_handling import (
    setup_exception_handlers,
    ErrorTrackingMiddleware,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.app_env})")
    logger.info(f"Database: {settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}")
    logger.info(
        f"Collaborators: inventory={settings.inventory_service_url} "
        f"payments={settings.payment_service_url} "
        f"dispatch_timeout={settings.dispatch_timeout_seconds}s"
    )

    # Deployed databases are migrated with Alembic
    if settings.is_development:
        await init_db()
        logger.info("Return tables created")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    description="Product return lifecycle for the POS back office",
    version=APP_VERSION,
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)
app.add_middleware(ErrorTrackingMiddleware)

setup_exception_handlers(app)


# ===========================================
# SERVICE ROUTES
# ===========================================

@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_async_session)):
    """Liveness plus a database round trip. 503 when the database is down."""
    if not await ping_database(db):
        logger.error("Health check failed: database unreachable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable"},
        )
    return {"status": "healthy", "database": "ok"}


@app.get(settings.api_prefix)
async def api_root():
    return {
        "name": settings.app_name,
        "version": APP_VERSION,
        "api_version": settings.api_version,
        "environment": settings.app_env,
        "endpoints": {
            "returns": f"{settings.api_prefix}/returns",
            "stats": f"{settings.api_prefix}/returns/stats",
            "analytics": f"{settings.api_prefix}/returns/analytics",
        },
    }


app.include_router(product_returns.router, prefix=settings.api_prefix, tags=["Product Returns"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
