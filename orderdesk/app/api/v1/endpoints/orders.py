from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from orderdesk.app.api.deps import get_actor, get_db, get_event_bus
from orderdesk.app.db.models.core_types import OrderStatus
from orderdesk.app.db.models.models_v1 import Order
from orderdesk.app.db.session import run_with_retry
from orderdesk.app.schemas.order import OrderCreate
from orderdesk.services import orders as order_service
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import EventBus

router = APIRouter(prefix="/orders")


def order_out(order: Order) -> dict:
    return {
        "id": order.id,
        "buyer_id": order.buyer_id,
        "order_number": order.order_number,
        "status": order.status,
        "total_amount": str(order.total_amount),
        "notes": order.notes,
        "supplier_ids": list(order_service.supplier_ids_for(order)),
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name,
                "supplier_id": item.product.supplier_id,
                "quantity_requested": str(item.quantity_requested),
                "requested_uom": item.requested_uom,
                "quantity_in_base_uom": str(item.quantity_in_base_uom),
                "base_uom": item.product.base_uom,
                "unit_price_in_base_uom": str(item.unit_price_in_base_uom),
                "line_total": str(item.line_total),
            }
            for item in order.items
        ],
        "status_history": [
            {
                "from_status": h.from_status,
                "to_status": h.to_status,
                "changed_by_id": h.changed_by_id,
                "reason": h.reason,
                "changed_at": h.changed_at,
            }
            for h in order.status_history
        ],
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


@router.post("", status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    bus: EventBus = Depends(get_event_bus),
):
    items = [
        order_service.OrderItemRequest(product_id=ln.product_id, quantity=ln.quantity, unit=ln.unit)
        for ln in payload.items
    ]
    order = run_with_retry(
        lambda: order_service.create_order(db, actor, items, notes=payload.notes, bus=bus)
    )
    return order_out(order)


@router.get("")
def list_orders(
    status: OrderStatus | None = None,
    supplier_id: int | None = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    rows = order_service.list_orders(db, actor, status=status, supplier_id=supplier_id)
    return [order_out(o) for o in rows]


@router.get("/{order_id}")
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    order = order_service.get_order(db, order_id)
    if not order_service.can_view_order(order, actor):
        raise HTTPException(status_code=403, detail="You cannot view this order")
    return order_out(order)
