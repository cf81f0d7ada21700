# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Stores API — Owner-only store management.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response

from storeguard.api.deps import get_principal, get_tenant_context
from storeguard.api.schemas import StoreCreateRequest, StoreInfo
from storeguard.core.context import get_service_context
from storeguard.core.tenant import PrincipalRef, TenantContext

router = APIRouter(prefix="/stores", tags=["stores"])


@router.post("", response_model=StoreInfo, status_code=201)
async def create_store(
    req: StoreCreateRequest,
    principal: PrincipalRef = Depends(get_principal),
):
    """Create a store owned by the calling principal."""
    store = await get_service_context().directory.create_store(principal, req.slug, req.name)
    return StoreInfo(id=store.id, slug=store.slug, name=store.name)


@router.get("", response_model=List[StoreInfo])
async def list_stores(principal: PrincipalRef = Depends(get_principal)):
    """List the stores owned by the calling principal."""
    stores = await get_service_context().directory.list_stores(principal)
    return [StoreInfo(id=s.id, slug=s.slug, name=s.name) for s in stores]


@router.get("/{store_ref}", response_model=StoreInfo)
async def get_store(ctx: TenantContext = Depends(get_tenant_context)):
    return StoreInfo(id=ctx.store_id, slug=ctx.store_slug, name=ctx.store_name or "")


@router.delete("/{store_ref}", status_code=204)
async def delete_store(ctx: TenantContext = Depends(get_tenant_context)):
    """Delete the store and every record it owns."""
    await get_service_context().directory.delete_store(ctx)
    return Response(status_code=204)
