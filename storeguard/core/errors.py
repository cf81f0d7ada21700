# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Isolation Errors — Domain exceptions raised by the tenancy layer.

The HTTP layer (storeguard.api.errors) maps these to responses:
NotFound and Unauthorized collapse into one opaque 404, PolicyViolation
becomes an opaque 500, Conflict is 409 and InvalidField is 422.
"""

from __future__ import annotations

from typing import Any, Optional


class IsolationError(Exception):
    """Base class for all tenancy-layer errors."""


class NotFound(IsolationError):
    """A store or record does not exist in the caller's scope."""


class TenantNotFound(NotFound):
    def __init__(self, tenant_ref: Any):
        self.tenant_ref = tenant_ref
        super().__init__(f"Store {tenant_ref!r} not found")


class RecordNotFound(NotFound):
    def __init__(self, record_type: str, record_id: Any):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id!r} not found")


class Unauthorized(IsolationError):
    """The principal has no rights on the requested store."""


class TenantAccessDenied(Unauthorized):
    def __init__(self, principal: str, store_id: int):
        self.principal = principal
        self.store_id = store_id
        super().__init__(f"Principal {principal!r} may not act on store {store_id}")


class PolicyViolation(IsolationError):
    """
    Storage-level scoping check failed.

    Always a programming defect: the accessor and the storage boundary
    disagree about which store a statement may touch.
    """

    def __init__(self, reason: str, store_id: Optional[int] = None):
        self.reason = reason
        self.store_id = store_id
        super().__init__(reason)


class Conflict(IsolationError):
    """A uniqueness constraint would be broken (e.g. duplicate slug)."""


class InvalidField(IsolationError):
    """Caller supplied an unknown or malformed field."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
