# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Scoped Data Accessor — the only path to tenant-scoped records.

An accessor is built per request from a TenantContext issued by
TenantResolver.resolve; hand-built contexts are refused. Every
call opens its own session and transaction, binds the storage-level
tenant marker, and appends `store_id == context.store_id` to every
statement it issues. The session never leaves this module.

Usage:
    accessor = ScopedDataAccessor(session_factory, ctx)
    product = await accessor.create("products", {"name": "Mug", "price_cents": 1200})
    same = await accessor.get("products", product.id)

    async with accessor.atomic() as uow:
        order = await uow.create("orders", {"customer_email": "a@b.c"})
        await uow.create("order_items", {"order_id": order.id, ...})
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Type, Union

from sqlalchemy import String, select
from sqlalchemy.exc import DataError, IntegrityError, StatementError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storeguard.core.config import settings
from storeguard.core.errors import InvalidField, PolicyViolation, RecordNotFound
from storeguard.core.logging import TenantLogAdapter
from storeguard.core.metrics import platform_metrics
from storeguard.core.tenant import TenantContext
from storeguard.storage.models import (
    ORDER_STATUSES,
    READ_ONLY_FIELDS,
    SCOPED_MODELS,
    Order,
    OrderItem,
    Product,
    TenantScopedMixin,
    column_names,
    writable_fields,
)
from storeguard.storage.policy import TENANT_COLUMN, bind_tenant_marker
from storeguard.tenancy.resolver import is_issued

logger = logging.getLogger("storeguard.accessor")

RecordType = Union[str, Type[TenantScopedMixin]]

NON_NEGATIVE_FIELDS = ("price_cents", "inventory", "total_cents", "unit_price_cents")


def resolve_record_type(record_type: RecordType) -> Type[TenantScopedMixin]:
    """Map a registry name or model class to a scoped model class."""
    if isinstance(record_type, str):
        model = SCOPED_MODELS.get(record_type)
        if model is not None:
            return model
    elif record_type in SCOPED_MODELS.values():
        return record_type
    raise PolicyViolation(f"{record_type!r} is not a tenant-scoped record type")


def _record_id(model, record_id: Any) -> int:
    if isinstance(record_id, bool):
        raise RecordNotFound(model.__tablename__, record_id)
    if isinstance(record_id, float) and not record_id.is_integer():
        raise RecordNotFound(model.__tablename__, record_id)
    try:
        value = int(record_id)
    except (TypeError, ValueError):
        raise RecordNotFound(model.__tablename__, record_id) from None
    if value <= 0:
        raise RecordNotFound(model.__tablename__, record_id)
    return value


@dataclass
class OrderReceipt:
    order: Order
    items: List[OrderItem] = field(default_factory=list)


class ScopedUnitOfWork:
    """Scoped operations sharing one session and one transaction."""

    def __init__(self, session: AsyncSession, context: TenantContext) -> None:
        self._session = session
        self._context = context
        self._log = TenantLogAdapter(logger, context.log_extra())

    @property
    def context(self) -> TenantContext:
        return self._context

    # ── Reads ───────────────────────────────────────────────────

    async def list(
        self,
        record_type: RecordType,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TenantScopedMixin]:
        model = resolve_record_type(record_type)
        clauses = self._filter_clauses(model, filters or {})
        limit = settings.DEFAULT_PAGE_SIZE if limit is None else limit
        limit = max(1, min(int(limit), settings.MAX_PAGE_SIZE))
        stmt = (
            select(model)
            .where(*clauses, model.store_id == self._context.store_id)
            .order_by(model.id)
            .limit(limit)
            .offset(max(0, int(offset)))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, record_type: RecordType, record_id: Any) -> TenantScopedMixin:
        model = resolve_record_type(record_type)
        return await self._fetch_owned(model, record_id)

    # ── Writes ──────────────────────────────────────────────────

    async def create(self, record_type: RecordType, fields: Mapping[str, Any]) -> TenantScopedMixin:
        model = resolve_record_type(record_type)
        values = self._clean_fields(model, fields, "create")
        await self._check_references(model, values)
        record = model(**values)
        # Forced last so no caller value can survive.
        record.store_id = self._context.store_id
        self._session.add(record)
        await self._flush(model)
        return record

    async def update(
        self, record_type: RecordType, record_id: Any, fields: Mapping[str, Any]
    ) -> TenantScopedMixin:
        model = resolve_record_type(record_type)
        values = self._clean_fields(model, fields, "update")
        record = await self._fetch_owned(model, record_id, for_update=True)
        await self._check_references(model, values)
        self._apply_fields(record, values)
        await self._flush(model)
        return record

    async def delete(self, record_type: RecordType, record_id: Any) -> None:
        model = resolve_record_type(record_type)
        record = await self._fetch_owned(model, record_id, for_update=True)
        await self._session.delete(record)
        await self._flush(model)

    # ── Helpers ─────────────────────────────────────────────────

    async def _fetch_owned(self, model, record_id: Any, for_update: bool = False):
        rid = _record_id(model, record_id)
        stmt = select(model).where(
            model.id == rid,
            model.store_id == self._context.store_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFound(model.__tablename__, record_id)
        return record

    async def _check_references(self, model, values: Dict[str, Any]) -> None:
        """Referenced scoped records must live in the same store."""
        for column, target in model.__scoped_references__.items():
            ref = values.get(column)
            if ref is None:
                continue
            await self._fetch_owned(SCOPED_MODELS[target], ref)

    def _apply_fields(self, record, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(record, key, value)

    def _filter_clauses(self, model, filters: Mapping[str, Any]) -> list:
        allowed = column_names(model)
        clauses = []
        for key, value in filters.items():
            if key == TENANT_COLUMN:
                self._log.warning(
                    "Discarding caller-supplied %s filter on %s", key, model.__tablename__,
                )
                continue
            if key not in allowed:
                raise InvalidField(key, f"unknown field on {model.__tablename__}")
            if value is not None:
                _check_type(model, key, value)
            clauses.append(getattr(model, key) == value)
        return clauses

    def _clean_fields(self, model, fields: Mapping[str, Any], operation: str) -> Dict[str, Any]:
        allowed = writable_fields(model)
        values: Dict[str, Any] = {}
        for key, value in fields.items():
            if key == TENANT_COLUMN:
                if value != self._context.store_id:
                    self._log.warning(
                        "Overriding caller-supplied %s=%r on %s %s",
                        key, value, operation, model.__tablename__,
                    )
                continue
            if key in READ_ONLY_FIELDS:
                continue
            if key not in allowed:
                raise InvalidField(key, f"unknown field on {model.__tablename__}")
            values[key] = value
        _validate_values(model, values)
        return values

    async def _flush(self, model) -> None:
        try:
            await self._session.flush()
        except (IntegrityError, DataError) as exc:
            raise InvalidField(model.__tablename__, "violates a storage constraint") from exc
        except StatementError as exc:
            # Raised by column type processors before the row reaches the driver.
            if isinstance(exc.orig, (TypeError, ValueError)):
                raise InvalidField(model.__tablename__, "value has the wrong type") from exc
            raise


def _check_type(model, key: str, value: Any) -> None:
    """Match a non-null value against the column's Python type and length."""
    column = model.__table__.c[key]
    try:
        expected = column.type.python_type
    except NotImplementedError:
        return
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidField(key, "must be an integer")
    elif expected is bool:
        if not isinstance(value, bool):
            raise InvalidField(key, "must be a boolean")
    elif expected is str:
        if not isinstance(value, str):
            raise InvalidField(key, "must be a string")
        length = column.type.length if isinstance(column.type, String) else None
        if length is not None and len(value) > length:
            raise InvalidField(key, f"must be at most {length} characters")
    elif not isinstance(value, expected):
        raise InvalidField(key, f"must be a {expected.__name__}")


def _validate_values(model, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if value is None:
            if not model.__table__.c[key].nullable:
                raise InvalidField(key, "must not be null")
            continue
        _check_type(model, key, value)
    for key in NON_NEGATIVE_FIELDS:
        if values.get(key) is not None and values[key] < 0:
            raise InvalidField(key, "must be a non-negative integer")
    if model is Order and "status" in values and values["status"] not in ORDER_STATUSES:
        raise InvalidField("status", f"must be one of {', '.join(ORDER_STATUSES)}")
    if model is OrderItem and values.get("quantity") is not None and values["quantity"] <= 0:
        raise InvalidField("quantity", "must be a positive integer")


class ScopedDataAccessor:
    """Per-request facade; each call runs in its own scoped transaction."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        context: TenantContext,
    ) -> None:
        if not is_issued(context):
            raise PolicyViolation("accessor requires a TenantContext issued by the resolver")
        self._session_factory = session_factory
        self._context = context
        self._log = TenantLogAdapter(logger, context.log_extra())

    @property
    def context(self) -> TenantContext:
        return self._context

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[ScopedUnitOfWork]:
        """One transaction for several operations; any failure rolls back all of them."""
        async with self._session_factory() as db:
            async with db.begin():
                await bind_tenant_marker(db, self._context)
                yield ScopedUnitOfWork(db, self._context)

    async def _run(self, operation: str, record_type: RecordType, *args):
        start = time.time()
        outcome = "error"
        try:
            async with self.atomic() as uow:
                result = await getattr(uow, operation)(record_type, *args)
            outcome = "ok"
            return result
        finally:
            platform_metrics.inc(
                "accessor_calls",
                operation=operation,
                record_type=getattr(record_type, "__tablename__", record_type),
                outcome=outcome,
            )
            platform_metrics.observe(
                "accessor_latency_ms", (time.time() - start) * 1000, operation=operation,
            )

    async def list(
        self,
        record_type: RecordType,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TenantScopedMixin]:
        return await self._run("list", record_type, filters, limit, offset)

    async def get(self, record_type: RecordType, record_id: Any) -> TenantScopedMixin:
        return await self._run("get", record_type, record_id)

    async def create(self, record_type: RecordType, fields: Mapping[str, Any]) -> TenantScopedMixin:
        return await self._run("create", record_type, fields)

    async def update(
        self, record_type: RecordType, record_id: Any, fields: Mapping[str, Any]
    ) -> TenantScopedMixin:
        return await self._run("update", record_type, record_id, fields)

    async def delete(self, record_type: RecordType, record_id: Any) -> None:
        await self._run("delete", record_type, record_id)

    async def place_order(
        self,
        customer_email: str,
        items: Sequence[Mapping[str, Any]],
        currency: str = "USD",
    ) -> OrderReceipt:
        """
        Create an order and its line items in one transaction.

        Prices come from the store's own products; inventory is decremented.
        Nothing is persisted if any line fails.
        """
        if not items:
            raise InvalidField("items", "an order needs at least one item")

        async with self.atomic() as uow:
            order = await uow.create(Order, {
                "customer_email": customer_email,
                "currency": currency,
                "status": "pending",
            })
            receipt = OrderReceipt(order=order)
            total = 0
            for line in items:
                product = await uow._fetch_owned(Product, line.get("product_id"), for_update=True)
                quantity = line.get("quantity", 1)
                if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                    raise InvalidField("quantity", "must be a positive integer")
                if not product.is_active:
                    raise InvalidField("product_id", f"product {product.id} is not for sale")
                if product.currency != currency:
                    raise InvalidField("currency", f"product {product.id} is priced in {product.currency}")
                if product.inventory < quantity:
                    raise InvalidField("quantity", f"insufficient inventory for product {product.id}")

                uow._apply_fields(product, {"inventory": product.inventory - quantity})
                item = await uow.create(OrderItem, {
                    "order_id": order.id,
                    "product_id": product.id,
                    "quantity": quantity,
                    "unit_price_cents": product.price_cents,
                })
                receipt.items.append(item)
                total += product.price_cents * quantity

            uow._apply_fields(order, {"total_cents": total})
            await uow._flush(Order)

        platform_metrics.inc("orders_placed")
        self._log.info("Placed order %s with %d item(s)", order.id, len(receipt.items))
        return receipt
