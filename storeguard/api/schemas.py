# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
API Schemas — Request/response models.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class StoreCreateRequest(BaseModel):
    slug: str = Field(..., min_length=1, max_length=63)
    name: str = Field(..., min_length=1, max_length=255)


class StoreInfo(BaseModel):
    id: int
    slug: str
    name: str


class CheckoutLine(BaseModel):
    product_id: int
    quantity: int = 1


class CheckoutRequest(BaseModel):
    customer_email: str = Field(..., min_length=3, max_length=320)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    items: List[CheckoutLine]


class CheckoutResponse(BaseModel):
    order: Dict[str, Any]
    items: List[Dict[str, Any]]


class RecordPage(BaseModel):
    items: List[Dict[str, Any]]
    count: int
    limit: int
    offset: int
