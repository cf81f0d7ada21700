# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Repository Layer — CRUD for the unscoped tables (principals, stores).

Each repository takes an AsyncSession and provides typed access.
Tenant-scoped tables are only reachable through
storeguard.tenancy.accessor.ScopedDataAccessor.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storeguard.core.errors import Conflict
from storeguard.storage.models import CASCADE_ORDER, Principal, Store


# ── Principal Repository ────────────────────────────────────

class PrincipalRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_subject(self, subject: str) -> Optional[Principal]:
        result = await self.db.execute(
            select(Principal).where(Principal.subject == subject)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        subject: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Principal:
        """Return the principal for `subject`, creating it on first sight."""
        existing = await self.get_by_subject(subject)
        if existing:
            return existing
        principal = Principal(subject=subject, display_name=display_name, email=email)
        self.db.add(principal)
        await self.db.flush()
        return principal


# ── Store Repository ────────────────────────────────────────

class StoreRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, owner_id: int, slug: str, name: str) -> Store:
        """Create a store. Raises Conflict on a duplicate slug."""
        if await self.get_by_slug(slug) is not None:
            raise Conflict(f"Store slug '{slug}' is already taken")
        store = Store(owner_id=owner_id, slug=slug, name=name)
        self.db.add(store)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise Conflict(f"Store slug '{slug}' is already taken") from exc
        return store

    async def get(self, store_id: int) -> Optional[Store]:
        result = await self.db.execute(select(Store).where(Store.id == store_id))
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[Store]:
        result = await self.db.execute(select(Store).where(Store.slug == slug))
        return result.scalar_one_or_none()

    async def list_by_owner(self, owner_id: int) -> List[Store]:
        result = await self.db.execute(
            select(Store).where(Store.owner_id == owner_id).order_by(Store.id)
        )
        return list(result.scalars().all())

    async def delete_with_records(self, store_id: int) -> None:
        """
        Delete every scoped record of the store, then the store.

        The session must already carry the tenant marker for `store_id`.
        """
        for model in CASCADE_ORDER:
            await self.db.execute(
                delete(model)
                .where(model.store_id == store_id)
                .execution_options(synchronize_session=False)
            )
        await self.db.execute(
            delete(Store)
            .where(Store.id == store_id)
            .execution_options(synchronize_session=False)
        )
