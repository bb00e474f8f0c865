"""FastAPI application bootstrap."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from inventory_import.api.routers import health, imports
from inventory_import.core.config import get_settings
from inventory_import.db.session import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.auto_create_tables:
        init_db()
        logger.info("Inventory tables ready")
    yield


def create_app() -> FastAPI:
    """Instantiate the FastAPI app, configure logging and include routers."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])

    logger.info(f"Import runner: {settings.import_runner}")
    return app


app = create_app()
