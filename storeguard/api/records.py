# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Records API — Store-scoped CRUD for products, orders and order items.

All handlers go through ScopedDataAccessor; none of them sees a session.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from storeguard.api.deps import get_accessor
from storeguard.api.schemas import CheckoutRequest, CheckoutResponse, RecordPage
from storeguard.core.config import settings
from storeguard.core.errors import InvalidField, NotFound
from storeguard.storage.models import SCOPED_MODELS
from storeguard.tenancy.accessor import ScopedDataAccessor

router = APIRouter(prefix="/stores/{store_ref}", tags=["records"])

RESERVED_QUERY_PARAMS = {"limit", "offset"}
TRUE_VALUES = ("1", "true", "yes")
FALSE_VALUES = ("0", "false", "no")


def _collection(name: str) -> str:
    if name not in SCOPED_MODELS:
        raise NotFound(f"unknown collection {name!r}")
    return name


def _coerce_filters(collection: str, params: Dict[str, str]) -> Dict[str, Any]:
    """Convert query-string values to the column's Python type."""
    columns = SCOPED_MODELS[collection].__table__.columns
    filters: Dict[str, Any] = {}
    for key, raw in params.items():
        if key not in columns:
            filters[key] = raw  # rejected by the accessor
            continue
        python_type = columns[key].type.python_type
        try:
            if python_type is bool:
                if raw.lower() not in TRUE_VALUES + FALSE_VALUES:
                    raise ValueError(raw)
                filters[key] = raw.lower() in TRUE_VALUES
            elif python_type is int:
                filters[key] = int(raw)
            else:
                filters[key] = raw
        except ValueError:
            raise InvalidField(key, f"expected {python_type.__name__}") from None
    return filters


@router.post("/orders/checkout", response_model=CheckoutResponse, status_code=201)
async def checkout(
    req: CheckoutRequest,
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    """Place an order with its line items atomically."""
    receipt = await accessor.place_order(
        req.customer_email,
        [line.model_dump() for line in req.items],
        currency=req.currency,
    )
    return CheckoutResponse(
        order=receipt.order.to_dict(),
        items=[item.to_dict() for item in receipt.items],
    )


@router.get("/{collection}", response_model=RecordPage)
async def list_records(
    collection: str,
    request: Request,
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    """List records; remaining query parameters are equality filters."""
    name = _collection(collection)
    filters = _coerce_filters(name, {
        k: v for k, v in request.query_params.items() if k not in RESERVED_QUERY_PARAMS
    })
    records = await accessor.list(name, filters, limit=limit, offset=offset)
    return RecordPage(
        items=[r.to_dict() for r in records],
        count=len(records),
        limit=limit,
        offset=offset,
    )


@router.post("/{collection}", status_code=201)
async def create_record(
    collection: str,
    fields: Dict[str, Any] = Body(...),
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    record = await accessor.create(_collection(collection), fields)
    return record.to_dict()


@router.get("/{collection}/{record_id}")
async def get_record(
    collection: str,
    record_id: int,
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    record = await accessor.get(_collection(collection), record_id)
    return record.to_dict()


@router.patch("/{collection}/{record_id}")
async def update_record(
    collection: str,
    record_id: int,
    fields: Dict[str, Any] = Body(...),
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    record = await accessor.update(_collection(collection), record_id, fields)
    return record.to_dict()


@router.delete("/{collection}/{record_id}", status_code=204)
async def delete_record(
    collection: str,
    record_id: int,
    accessor: ScopedDataAccessor = Depends(get_accessor),
):
    await accessor.delete(_collection(collection), record_id)
    return Response(status_code=204)
