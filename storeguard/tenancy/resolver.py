# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Tenant Context Resolver.

Turns (principal, tenant reference) into a validated TenantContext.
A tenant reference is a store id (int or digit-only string) or a slug.

Unknown stores raise TenantNotFound, foreign stores raise
TenantAccessDenied. Callers at the network boundary must treat both the
same way.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storeguard.core.cache import TTLCache
from storeguard.core.config import settings
from storeguard.core.errors import TenantAccessDenied, TenantNotFound
from storeguard.core.metrics import platform_metrics
from storeguard.core.tenant import PrincipalRef, TenantContext
from storeguard.storage.models import Store
from storeguard.storage.repositories import StoreRepository

logger = logging.getLogger("storeguard.resolver")

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

TenantRef = Union[int, str]


@dataclass(frozen=True)
class _Seal:
    """Proof that a context came out of TenantResolver.resolve."""

    store_id: int
    principal_id: int


def is_issued(context) -> bool:
    """True only for a context produced by `resolve` and not altered since."""
    if not isinstance(context, TenantContext):
        return False
    seal = context._seal
    return (
        isinstance(seal, _Seal)
        and seal.store_id == context.store_id
        and seal.principal_id == context.principal.principal_id
    )


@dataclass(frozen=True)
class StoreSnapshot:
    """Detached, cacheable view of a store row."""

    id: int
    slug: str
    name: str
    owner_id: int

    @classmethod
    def from_row(cls, store: Store) -> "StoreSnapshot":
        return cls(id=store.id, slug=store.slug, name=store.name, owner_id=store.owner_id)


def is_valid_slug(slug: str) -> bool:
    """Lowercase words joined by '-', with at least one letter (never a bare number)."""
    return (
        len(slug) <= 63
        and bool(SLUG_RE.match(slug))
        and any(ch.isalpha() for ch in slug)
    )


def parse_tenant_ref(tenant_ref: TenantRef) -> Tuple[str, Union[int, str]]:
    """Classify a reference as ("id", int) or ("slug", str)."""
    if isinstance(tenant_ref, bool) or tenant_ref is None:
        raise TenantNotFound(tenant_ref)
    if isinstance(tenant_ref, int):
        if tenant_ref <= 0:
            raise TenantNotFound(tenant_ref)
        return "id", tenant_ref
    if isinstance(tenant_ref, str):
        ref = tenant_ref.strip()
        if ref.isdigit():
            value = int(ref)
            if value <= 0:
                raise TenantNotFound(tenant_ref)
            return "id", value
        if is_valid_slug(ref):
            return "slug", ref
    raise TenantNotFound(tenant_ref)


class TenantResolver:
    """Resolves and authorizes the store a request may act on."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Optional[TTLCache[StoreSnapshot]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache if cache is not None else TTLCache(
            ttl=settings.TENANT_CACHE_TTL,
            max_entries=settings.TENANT_CACHE_MAX_ENTRIES,
        )

    async def resolve(self, principal: PrincipalRef, tenant_ref: TenantRef) -> TenantContext:
        """
        Return a TenantContext for `tenant_ref` if `principal` owns it.

        Ownership is re-evaluated on every call; only the store row may
        come from the short-lived cache.
        """
        try:
            store = await self.lookup(tenant_ref)
        except TenantNotFound:
            platform_metrics.inc("tenant_resolve", outcome="not_found")
            logger.info(
                "Store %r not found", tenant_ref,
                extra={"principal": principal.subject},
            )
            raise

        if store.owner_id != principal.principal_id:
            platform_metrics.inc("tenant_resolve", outcome="denied")
            logger.warning(
                "Principal denied access to store %s", store.id,
                extra={"principal": principal.subject, "store_id": store.id},
            )
            raise TenantAccessDenied(principal.subject, store.id)

        platform_metrics.inc("tenant_resolve", outcome="ok")
        return TenantContext(
            principal=principal,
            store_id=store.id,
            store_slug=store.slug,
            store_name=store.name,
            _seal=_Seal(store.id, principal.principal_id),
        )

    async def lookup(self, tenant_ref: TenantRef) -> StoreSnapshot:
        """Find the store for a reference, consulting the cache first."""
        kind, value = parse_tenant_ref(tenant_ref)
        cached = self._cache.get((kind, value))
        if cached is not None:
            platform_metrics.inc("tenant_cache", result="hit")
            return cached

        platform_metrics.inc("tenant_cache", result="miss")
        async with self._session_factory() as db:
            repo = StoreRepository(db)
            row = await (repo.get(value) if kind == "id" else repo.get_by_slug(value))
            if row is None:
                raise TenantNotFound(tenant_ref)
            snapshot = StoreSnapshot.from_row(row)

        self._cache.set(("id", snapshot.id), snapshot)
        self._cache.set(("slug", snapshot.slug), snapshot)
        return snapshot

    def invalidate(self, store: StoreSnapshot) -> None:
        self._cache.discard(("id", store.id), ("slug", store.slug))

    def clear_cache(self) -> None:
        self._cache.clear()
