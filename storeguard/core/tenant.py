# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Tenant Context — Request-scoped binding of a principal to one store.

A TenantContext is only ever produced by the resolver after the
ownership check passed; the resolver seals it, and consumers check the
seal with `storeguard.tenancy.resolver.is_issued`. It is passed explicitly
through every call; there is no ambient "current store".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PrincipalRef:
    """Authenticated actor, as seen by the tenancy layer."""

    principal_id: int
    subject: str
    display_name: Optional[str] = None

    def __post_init__(self):
        if not self.subject:
            raise ValueError("subject must not be empty")


@dataclass(frozen=True)
class TenantContext:
    """Immutable principal/store binding for request-scoped operations."""

    principal: PrincipalRef
    store_id: int
    store_slug: str
    store_name: Optional[str] = None
    # Set by the resolver only; excluded from equality and repr.
    _seal: Optional[object] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.store_id is None or self.store_id <= 0:
            raise ValueError(f"store_id must be positive, got {self.store_id}")
        if not self.store_slug:
            raise ValueError("store_slug must not be empty")

    def log_extra(self) -> dict:
        """Fields attached to log records emitted under this context."""
        return {"store_id": self.store_id, "principal": self.principal.subject}

    def __repr__(self) -> str:
        return (
            f"TenantContext(store={self.store_id}:{self.store_slug!r}, "
            f"principal={self.principal.subject!r})"
        )
