# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Structured Logging — JSON lines with trace and tenant context.

Store and principal are grouped under a "tenant" object so every line a
request emits can be filtered by store:

    {"level": "WARNING", "module": "storeguard.accessor", "trace_id": "...",
     "tenant": {"store_id": 4, "principal": "idp|alice"}, "message": "..."}

Code operating under a TenantContext logs through a TenantLogAdapter
instead of repeating `extra=` on every call.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Mapping

TENANT_FIELDS = ("store_id", "principal")


class StructuredFormatter(logging.Formatter):
    """JSON log formatter with trace id and tenant context."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        trace_id = getattr(record, "trace_id", None)
        if trace_id:
            log_entry["trace_id"] = trace_id

        tenant = {
            key: getattr(record, key)
            for key in TENANT_FIELDS
            if getattr(record, key, None) is not None
        }
        if tenant:
            log_entry["tenant"] = tenant

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TenantLogAdapter(logging.LoggerAdapter):
    """Logger bound to one tenant's fields; per-call `extra` wins on conflict."""

    def __init__(self, logger: logging.Logger, tenant_fields: Mapping[str, Any]):
        super().__init__(logger, dict(tenant_fields))

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the service."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
