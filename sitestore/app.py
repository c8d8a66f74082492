"""
FastAPI application entry point for the site backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from sitestore.config import get_settings
from sitestore.dependencies import (
    get_db_client,
    get_local_store,
    get_mirror_client,
    get_snapshot_store,
)
from sitestore.errors import register_error_handlers
from sitestore.reconcile import Reconciler
from sitestore.routes import router, uploads_router

logger = logging.getLogger(__name__)


def reconcile_on_boot() -> None:
    settings = get_settings()
    if settings.uses_default_secret:
        logger.warning("JWT_SECRET is not set, using the built-in development secret")
    reconciler = Reconciler(
        get_db_client(),
        get_local_store(),
        get_snapshot_store(),
        get_mirror_client(),
        resync_mode=settings.resync_mode,
        admin_username=settings.admin_username,
        admin_password=settings.admin_default_password,
    )
    reconciler.run()


@asynccontextmanager
async def lifespan(app: FastAPI):
    reconcile_on_boot()
    yield
    get_db_client().engine.dispose()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="SiteStore Backend", version="0.1.0", lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(uploads_router)
    return app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
