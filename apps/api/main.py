"""
ShinigamiStream catalog API - FastAPI backend
Main application entry point: catalog routes, media uploads and asset serving.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base, async_session_maker
from errors import install_error_handlers
import models  # noqa: F401
from routers import (
    health,
    auth,
    anime,
    episodes,
    site_settings,
    users,
    uploads,
    assets,
)
from services.site_settings import SiteSettingsCache, seed_default_settings
from services.upload_storage import upload_root

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )
    logging.getLogger().setLevel(level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    _configure_logging()
    logger.info("Starting catalog API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema verified.")
    if settings.SEED_SITE_SETTINGS:
        async with async_session_maker() as db:
            seeded = await seed_default_settings(db)
        if seeded:
            logger.info("Seeded %d default site settings.", seeded)
    logger.info("Uploads directory: %s", upload_root().resolve())
    app.state.site_settings_cache = SiteSettingsCache()
    yield
    await engine.dispose()
    logger.info("Shutting down API...")


app = FastAPI(
    title="ShinigamiStream Catalog API",
    description="Anime catalog with staff-managed media uploads",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(anime.router, prefix="/api/anime", tags=["Anime"])
app.include_router(episodes.router, prefix="/api", tags=["Episodes"])
app.include_router(site_settings.router, prefix="/api/settings", tags=["Settings"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(uploads.router, prefix="/api/upload", tags=["Uploads"])
app.include_router(assets.router, prefix=settings.UPLOAD_URL_PREFIX.rstrip("/"), tags=["Assets"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "ShinigamiStream Catalog API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT)
