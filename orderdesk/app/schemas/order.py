from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from orderdesk.app.db.models.core_types import OrderStatus, Uom


class OrderItemCreate(BaseModel):
    product_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0, le=1_000_000, decimal_places=6)
    unit: Uom


class OrderCreate(BaseModel):
    items: list[OrderItemCreate] = Field(min_length=1)
    notes: str | None = Field(default=None, max_length=1000)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: str | None = Field(default=None, max_length=500)
