from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderdesk.app.api.deps import get_actor, get_db, get_event_bus
from orderdesk.app.db.models.models_v1 import Product
from orderdesk.app.db.session import run_with_retry
from orderdesk.app.schemas.product import ProductCreate, ProductUpdate, StockUpdate
from orderdesk.app.schemas.stock_level import InventoryRead, StockAvailabilityRead
from orderdesk.services import catalog
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import EventBus

router = APIRouter(prefix="/products")


def product_out(p: Product) -> dict:
    inv = p.inventory
    return {
        "id": p.id,
        "supplier_id": p.supplier_id,
        "sku": p.sku,
        "name": p.name,
        "description": p.description,
        "base_uom": p.base_uom,
        "conversion_factor_to_base": str(p.conversion_factor_to_base),
        "price_per_base_uom": str(p.price_per_base_uom),
        "is_active": p.is_active,
        "stock_in_base_uom": str(inv.quantity_in_base_uom) if inv else "0",
        "available_stock": str(inv.quantity_in_base_uom - inv.reserved_quantity) if inv else "0",
    }


@router.get("")
def list_products(
    include_inactive: bool = False,
    supplier_id: int | None = None,
    db: Session = Depends(get_db),
):
    rows = catalog.list_products(db, include_inactive=include_inactive, supplier_id=supplier_id)
    return [product_out(p) for p in rows]


@router.post("", status_code=201)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    p = catalog.create_product(db, actor, catalog.ProductData(**payload.model_dump()))
    return product_out(p)


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return product_out(catalog.get_product(db, product_id))


@router.patch("/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    changes = payload.model_dump(exclude_unset=True)
    return product_out(catalog.update_product(db, actor, product_id, changes))


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    catalog.deactivate_product(db, actor, product_id)
    return {"message": "Product deleted successfully"}


@router.patch("/{product_id}/stock", response_model=InventoryRead)
def update_stock(
    product_id: int,
    payload: StockUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    bus: EventBus = Depends(get_event_bus),
):
    return run_with_retry(
        lambda: catalog.adjust_product_stock(
            db,
            actor,
            product_id,
            payload.quantity,
            payload.uom,
            reason=payload.reason,
            bus=bus,
        )
    )


@router.get("/{product_id}/stock-availability", response_model=StockAvailabilityRead)
def stock_availability(
    product_id: int,
    required: Decimal = Query(ge=0),
    db: Session = Depends(get_db),
):
    return catalog.check_stock(db, product_id, required)
