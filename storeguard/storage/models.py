# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
ORM Models — Table definitions for the store admin.

Tables:
  - principals: authenticated actors (created on first authentication)
  - stores: tenants; each owned by one principal
  - products, orders, order_items: tenant-scoped records, each with a
    mandatory store_id flagged as the tenant key
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Type

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index,
    Integer, String, Text,
)
from sqlalchemy.orm import declared_attr

from storeguard.storage.database import Base
from storeguard.storage.policy import TENANT_COLUMN, register_metadata


def _utcnow():
    return datetime.now(timezone.utc)


# ── Principals ──────────────────────────────────────────────

class Principal(Base):
    __tablename__ = "principals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Principal {self.id} {self.subject}>"


# ── Stores (tenants) ────────────────────────────────────────

class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(63), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(
        Integer, ForeignKey("principals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Store {self.id} {self.slug}>"


# ── Tenant-scoped records ───────────────────────────────────

class TenantScopedMixin:
    """Mandatory, immutable store reference plus audit timestamps."""

    # column name -> registry name of the scoped record it points at
    __scoped_references__: Dict[str, str] = {}

    id = Column(Integer, primary_key=True, autoincrement=True)

    @declared_attr
    def store_id(cls):
        return Column(
            Integer, ForeignKey("stores.id", ondelete="CASCADE"),
            nullable=False, index=True, info={"tenant_key": True},
        )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class Product(TenantScopedMixin, Base):
    __tablename__ = "products"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    inventory = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(1024), nullable=True)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        CheckConstraint("inventory >= 0", name="ck_products_inventory_nonnegative"),
    )

    def __repr__(self):
        return f"<Product {self.id} store={self.store_id} {self.name!r}>"


ORDER_STATUSES = ("pending", "paid", "fulfilled", "cancelled")


class Order(TenantScopedMixin, Base):
    __tablename__ = "orders"

    customer_email = Column(String(320), nullable=False)
    status = Column(String(32), nullable=False, default="pending")
    total_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    __table_args__ = (
        Index("idx_orders_store_created", "store_id", "created_at"),
    )

    def __repr__(self):
        return f"<Order {self.id} store={self.store_id} {self.status}>"


class OrderItem(TenantScopedMixin, Base):
    __tablename__ = "order_items"
    __scoped_references__ = {"order_id": "orders", "product_id": "products"}

    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True,
    )
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    def __repr__(self):
        return f"<OrderItem {self.id} order={self.order_id} x{self.quantity}>"


# ── Registry ────────────────────────────────────────────────

SCOPED_MODELS: Dict[str, Type[TenantScopedMixin]] = {
    "products": Product,
    "orders": Order,
    "order_items": OrderItem,
}

# Deletion order when a store is destroyed (children first).
CASCADE_ORDER: List[Type[TenantScopedMixin]] = [OrderItem, Order, Product]

READ_ONLY_FIELDS = frozenset({"id", TENANT_COLUMN, "created_at", "updated_at"})


def writable_fields(model: Type[TenantScopedMixin]) -> frozenset:
    """Columns a caller may set on create/update."""
    return frozenset(
        c.key for c in model.__table__.columns if c.key not in READ_ONLY_FIELDS
    )


def column_names(model: Type[TenantScopedMixin]) -> frozenset:
    return frozenset(c.key for c in model.__table__.columns)


SCOPED_TABLE_NAMES = register_metadata(Base.metadata)
