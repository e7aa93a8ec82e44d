from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.app.api.deps import get_actor, get_db, get_event_bus
from orderdesk.app.api.v1.endpoints.orders import order_out
from orderdesk.app.db.session import run_with_retry
from orderdesk.app.schemas.order import OrderStatusUpdate
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import EventBus
from orderdesk.services.order_status import transition_order_status

router = APIRouter(prefix="/admin")


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    bus: EventBus = Depends(get_event_bus),
):
    order = run_with_retry(
        lambda: transition_order_status(
            db,
            order_id,
            payload.status,
            actor,
            reason=payload.reason,
            bus=bus,
        )
    )
    return order_out(order)
