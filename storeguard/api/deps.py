# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.

Chain per request: principal (authenticate) -> TenantContext (resolve)
-> ScopedDataAccessor (query). Each step advances the request lifecycle;
an accessor is only handed out while the lifecycle is `scoped`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from storeguard.api.errors import MissingPrincipalError
from storeguard.core.context import get_service_context
from storeguard.core.errors import PolicyViolation
from storeguard.core.lifecycle import AUTHENTICATE, DENY, QUERY, RESOLVE, RequestLifecycle
from storeguard.core.tenant import PrincipalRef, TenantContext
from storeguard.tenancy.accessor import ScopedDataAccessor


def get_lifecycle(request: Request) -> RequestLifecycle:
    lifecycle = getattr(request.state, "lifecycle", None)
    if lifecycle is None:
        lifecycle = RequestLifecycle(getattr(request.state, "trace_id", ""))
        request.state.lifecycle = lifecycle
    return lifecycle


async def get_principal(
    request: Request,
    x_principal_id: Optional[str] = Header(None, alias="X-Principal-Id"),
    x_principal_name: Optional[str] = Header(None, alias="X-Principal-Name"),
    x_principal_email: Optional[str] = Header(None, alias="X-Principal-Email"),
) -> PrincipalRef:
    """
    Identify the principal from headers set by the upstream identity provider.

    Headers:
      - X-Principal-Id:    stable subject of the verified identity (required)
      - X-Principal-Name:  display name (optional, first sign-in only)
      - X-Principal-Email: email (optional, first sign-in only)
    """
    lifecycle = get_lifecycle(request)
    if not x_principal_id or not x_principal_id.strip():
        lifecycle.advance(DENY)
        raise MissingPrincipalError(trace_id=getattr(request.state, "trace_id", None))

    principal = await get_service_context().directory.authenticate(
        x_principal_id, display_name=x_principal_name, email=x_principal_email,
    )
    lifecycle.advance(AUTHENTICATE)
    return principal


async def get_tenant_context(
    store_ref: str,
    request: Request,
    principal: PrincipalRef = Depends(get_principal),
) -> TenantContext:
    """Resolve the `{store_ref}` path parameter for the principal."""
    ctx = await get_service_context().resolver.resolve(principal, store_ref)
    get_lifecycle(request).advance(RESOLVE)
    return ctx


async def get_accessor(
    request: Request,
    ctx: TenantContext = Depends(get_tenant_context),
) -> ScopedDataAccessor:
    lifecycle = get_lifecycle(request)
    if not lifecycle.is_scoped:
        raise PolicyViolation(f"accessor requested in lifecycle state '{lifecycle.state}'")
    lifecycle.advance(QUERY)
    return get_service_context().accessor_for(ctx)
