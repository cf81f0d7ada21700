# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Service Context — Singleton that holds the tenancy components.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storeguard.core.tenant import TenantContext
from storeguard.tenancy.accessor import ScopedDataAccessor
from storeguard.tenancy.directory import StoreDirectory
from storeguard.tenancy.resolver import TenantResolver


class ServiceContext:
    """
    Holds the runtime references for the service.
    Created once at startup, used by all API handlers.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.resolver = TenantResolver(session_factory)
        self.directory = StoreDirectory(session_factory, self.resolver)

    def accessor_for(self, context: TenantContext) -> ScopedDataAccessor:
        """Create a store-scoped accessor for one request."""
        return ScopedDataAccessor(self.session_factory, context)


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[ServiceContext] = None


def init_service_context(session_factory: async_sessionmaker[AsyncSession]) -> ServiceContext:
    global _ctx
    _ctx = ServiceContext(session_factory)
    return _ctx


def get_service_context() -> ServiceContext:
    if _ctx is None:
        raise RuntimeError("ServiceContext not initialized. Call init_service_context() first.")
    return _ctx
