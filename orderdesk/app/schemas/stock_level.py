from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class InventoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int

    quantity_in_base_uom: Decimal
    reserved_quantity: Decimal  # lecture seule : jamais écrit par l'API
    last_restocked_at: datetime | None = None
    updated_at: datetime


class StockAvailabilityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    available: bool
    available_qty: Decimal
    total_stock: Decimal
    reserved: Decimal
    required: Decimal
