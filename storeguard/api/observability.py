# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Observability API — Metrics and health check.
"""

from __future__ import annotations

from fastapi import APIRouter

from storeguard import __version__
from storeguard.core.metrics import platform_metrics
from storeguard.storage.policy import scoped_table_names

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check():
    """Health check with isolation-layer status."""
    return {
        "status": "ok",
        "version": __version__,
        "scoped_tables": sorted(scoped_table_names()),
        "policy_violations": platform_metrics.total("policy_violations"),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current service metrics."""
    return platform_metrics.snapshot()
