# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Store Directory — principal authentication and owner-only store management.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storeguard.core.errors import InvalidField, PolicyViolation, TenantNotFound
from storeguard.core.logging import TenantLogAdapter
from storeguard.core.metrics import platform_metrics
from storeguard.core.tenant import PrincipalRef, TenantContext
from storeguard.storage.policy import bind_tenant_marker
from storeguard.storage.repositories import PrincipalRepository, StoreRepository
from storeguard.tenancy.resolver import StoreSnapshot, TenantResolver, is_issued, is_valid_slug

logger = logging.getLogger("storeguard.directory")


class StoreDirectory:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: TenantResolver,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = resolver

    async def authenticate(
        self,
        subject: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> PrincipalRef:
        """Get-or-create the principal for an identity already verified upstream."""
        if not subject or not subject.strip():
            raise InvalidField("subject", "must not be empty")
        subject = subject.strip()
        try:
            principal = await self._get_or_create(subject, display_name, email)
        except IntegrityError:
            # Lost a first-sign-in race; the row exists now.
            principal = await self._get_or_create(subject, display_name, email)
        return PrincipalRef(
            principal_id=principal.id,
            subject=principal.subject,
            display_name=principal.display_name,
        )

    async def _get_or_create(self, subject, display_name, email):
        async with self._session_factory() as db:
            async with db.begin():
                return await PrincipalRepository(db).get_or_create(
                    subject, display_name=display_name, email=email,
                )

    async def create_store(self, principal: PrincipalRef, slug: str, name: str) -> StoreSnapshot:
        """Create a store owned by `principal`."""
        slug = (slug or "").strip()
        name = (name or "").strip()
        if not is_valid_slug(slug):
            raise InvalidField("slug", "lowercase letters, digits and '-', with at least one letter")
        if not name:
            raise InvalidField("name", "must not be empty")

        async with self._session_factory() as db:
            async with db.begin():
                store = await StoreRepository(db).create(principal.principal_id, slug, name)
                snapshot = StoreSnapshot.from_row(store)

        self._resolver.invalidate(snapshot)
        platform_metrics.inc("stores_created")
        logger.info(
            "Created store %s (%s)", snapshot.id, snapshot.slug,
            extra={"principal": principal.subject, "store_id": snapshot.id},
        )
        return snapshot

    async def list_stores(self, principal: PrincipalRef) -> List[StoreSnapshot]:
        async with self._session_factory() as db:
            stores = await StoreRepository(db).list_by_owner(principal.principal_id)
            return [StoreSnapshot.from_row(s) for s in stores]

    async def delete_store(self, context: TenantContext) -> None:
        """
        Destroy the context's store and every record it owns, atomically.

        Ownership is re-checked inside the deleting transaction, so a store
        deleted or transferred since resolution reads as TenantNotFound.
        """
        if not is_issued(context):
            raise PolicyViolation("delete_store requires a TenantContext issued by the resolver")
        async with self._session_factory() as db:
            async with db.begin():
                repo = StoreRepository(db)
                store = await repo.get(context.store_id)
                if store is None or store.owner_id != context.principal.principal_id:
                    raise TenantNotFound(context.store_id)
                snapshot = StoreSnapshot.from_row(store)
                await bind_tenant_marker(db, context)
                await repo.delete_with_records(context.store_id)

        self._resolver.invalidate(snapshot)
        platform_metrics.inc("stores_deleted")
        TenantLogAdapter(logger, context.log_extra()).info("Deleted store %s", snapshot.id)
