# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Shared test fixtures for all StoreGuard tests.

Each test gets its own SQLite database file (via aiosqlite) injected
with override_engine_for_test, plus a fresh ServiceContext.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

import storeguard.storage.models  # noqa: F401
from storeguard.core.context import init_service_context
from storeguard.core.metrics import platform_metrics
from storeguard.storage.database import Base, override_engine_for_test


@pytest.fixture(autouse=True)
def reset_metrics():
    platform_metrics.reset()
    yield


@pytest.fixture
async def db_factory(tmp_path):
    """Fresh schema on a throwaway SQLite file; yields the session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storeguard.db'}")
    factory = override_engine_for_test(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest.fixture
def services(db_factory):
    """Initialize the ServiceContext against the test database."""
    return init_service_context(db_factory)


@pytest.fixture
async def tenants(services):
    """
    Two principals, each owning one store, with resolved contexts.

    alice owns alice-shop (ctx1), bob owns bob-shop (ctx2).
    """
    directory = services.directory
    alice = await directory.authenticate("idp|alice", display_name="Alice")
    bob = await directory.authenticate("idp|bob", display_name="Bob")
    shop1 = await directory.create_store(alice, "alice-shop", "Alice Shop")
    shop2 = await directory.create_store(bob, "bob-shop", "Bob Shop")
    ctx1 = await services.resolver.resolve(alice, shop1.id)
    ctx2 = await services.resolver.resolve(bob, shop2.id)
    return SimpleNamespace(
        alice=alice, bob=bob,
        shop1=shop1, shop2=shop2,
        ctx1=ctx1, ctx2=ctx2,
    )
