# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.

NotFound and Unauthorized produce the same opaque 404 so a caller can
not tell a missing store from someone else's. PolicyViolation produces
an opaque 500 and is logged at CRITICAL.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from storeguard.core.errors import (
    Conflict,
    InvalidField,
    IsolationError,
    NotFound,
    PolicyViolation,
    Unauthorized,
)
from storeguard.core.lifecycle import DENY, VIOLATION, InvalidTransitionError
from storeguard.core.metrics import platform_metrics

logger = logging.getLogger("storeguard.api")

NOT_FOUND_MESSAGE = "Resource not found"


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id or str(uuid.uuid4())
        super().__init__(message)


class MissingPrincipalError(APIError):
    def __init__(self, trace_id: str = None):
        super().__init__(
            code="UNAUTHENTICATED",
            message="Missing principal identification",
            status_code=401,
            trace_id=trace_id,
        )


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", None) or str(uuid.uuid4())


def _reject_lifecycle(request: Request, event: str) -> None:
    lifecycle = getattr(request.state, "lifecycle", None)
    if lifecycle is None or lifecycle.is_rejected:
        return
    try:
        lifecycle.advance(event)
    except InvalidTransitionError:
        logger.debug("lifecycle already past %s", lifecycle.state)


def _body(code: str, message: str, trace_id: str, details: Optional[Dict] = None) -> Dict[str, Any]:
    return {"code": code, "message": message, "trace_id": trace_id, "details": details or {}}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Global exception handler for APIError."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(exc.code, exc.message, exc.trace_id, exc.details),
    )


async def isolation_error_handler(request: Request, exc: IsolationError) -> JSONResponse:
    """Global exception handler for tenancy-layer errors."""
    trace_id = _trace_id(request)

    if isinstance(exc, (NotFound, Unauthorized)):
        _reject_lifecycle(request, DENY)
        platform_metrics.inc("api_not_found", cause=type(exc).__name__)
        logger.info("Not found (%s): %s", type(exc).__name__, exc, extra={"trace_id": trace_id})
        return JSONResponse(status_code=404, content=_body("NOT_FOUND", NOT_FOUND_MESSAGE, trace_id))

    if isinstance(exc, PolicyViolation):
        _reject_lifecycle(request, VIOLATION)
        logger.critical(
            "Policy violation reached API boundary: %s", exc.reason,
            extra={"trace_id": trace_id, "store_id": exc.store_id},
        )
        return JSONResponse(
            status_code=500,
            content=_body("INTERNAL_ERROR", "Internal server error", trace_id),
        )

    if isinstance(exc, Conflict):
        return JSONResponse(status_code=409, content=_body("CONFLICT", str(exc), trace_id))

    if isinstance(exc, InvalidField):
        return JSONResponse(
            status_code=422,
            content=_body("INVALID_FIELD", str(exc), trace_id, {"field": exc.field}),
        )

    logger.error("Unhandled isolation error: %r", exc, extra={"trace_id": trace_id})
    return JSONResponse(status_code=500, content=_body("INTERNAL_ERROR", "Internal server error", trace_id))
