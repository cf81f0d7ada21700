# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
StoreGuard Application Entry Point.

FastAPI app with lifespan, middleware, error handlers and API routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storeguard import __version__
from storeguard.api.errors import APIError, api_error_handler, isolation_error_handler
from storeguard.api.middleware import TraceMiddleware
from storeguard.api.observability import router as observability_router
from storeguard.api.records import router as records_router
from storeguard.api.stores import router as stores_router
from storeguard.core.config import settings
from storeguard.core.context import init_service_context
from storeguard.core.errors import IsolationError
from storeguard.core.logging import setup_logging
from storeguard.storage.database import (
    close_db,
    create_all_tables,
    get_session_factory,
    init_db,
)

logger = logging.getLogger("storeguard.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of service resources."""
    setup_logging(settings.LOG_LEVEL)
    await init_db()
    if settings.AUTO_CREATE_TABLES:
        if settings.STOREGUARD_ENV == "prod":
            logger.warning("AUTO_CREATE_TABLES ignored in prod")
        else:
            await create_all_tables()
    init_service_context(get_session_factory())
    logger.info("[StoreGuard] Service ready (env=%s)", settings.STOREGUARD_ENV)
    yield
    await close_db()
    logger.info("[StoreGuard] Shutdown complete")


app = FastAPI(
    title="StoreGuard",
    description="Tenant-isolated data access for multi-store admin",
    version=__version__,
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(IsolationError, isolation_error_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(stores_router, prefix="/api")
app.include_router(records_router, prefix="/api")
app.include_router(observability_router)
