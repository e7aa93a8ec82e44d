from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from orderdesk.app.db.models.core_types import BaseUom, Uom


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    sku: str | None = Field(default=None, max_length=64)
    base_uom: BaseUom
    conversion_factor_to_base: Decimal = Field(default=Decimal("1"), gt=0)
    price_per_base_uom: Decimal = Field(ge=0, decimal_places=4)
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    sku: str | None = Field(default=None, max_length=64)
    base_uom: BaseUom | None = None
    conversion_factor_to_base: Decimal | None = Field(default=None, gt=0)
    price_per_base_uom: Decimal | None = Field(default=None, ge=0, decimal_places=4)
    is_active: bool | None = None

    @field_validator("name", "base_uom", "conversion_factor_to_base", "price_per_base_uom", "is_active")
    @classmethod
    def not_null(cls, v):
        # absent = inchangé ; null explicite refusé (colonnes NOT NULL)
        if v is None:
            raise ValueError("may not be null")
        return v


class StockUpdate(BaseModel):
    # positif = réassort, négatif = correction
    quantity: Decimal = Field(decimal_places=6)
    uom: Uom
    reason: str | None = Field(default=None, max_length=255)
