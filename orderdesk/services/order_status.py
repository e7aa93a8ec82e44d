"""
Machine à états des commandes.

    PENDING  -> APPROVED   : déduction de stock pour chaque ligne
    PENDING  -> CANCELLED  : rien (aucun stock engagé)
    APPROVED -> FULFILLED  : rien (stock déjà déduit)
    APPROVED -> CANCELLED  : restitution de stock pour chaque ligne

FULFILLED et CANCELLED sont terminaux. Toute autre paire => InvalidTransition.

Une transition = UNE transaction :
- la ligne commande est verrouillée (FOR UPDATE) puis le statut est écrit en
  compare-and-swap (WHERE status = <statut lu>) : un second appelant concurrent
  est sérialisé et échoue en InvalidTransition, jamais de double déduction
- si une seule ligne manque de stock, rien n'est déduit (tout ou rien sur la commande)
- une restitution qui échoue fait échouer la transition
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from orderdesk.app.db.models.core_types import OrderStatus, Role
from orderdesk.app.db.models.models_v1 import Order, OrderItem, OrderStatusHistory
from orderdesk.app.db.session import atomic
from orderdesk.services import business_rules, inventory
from orderdesk.services.actors import ActorContext, require_role
from orderdesk.services.events import EventBus, OrderStatusChanged, publish
from orderdesk.services.exceptions import InvalidTransition, OrderNotFound
from orderdesk.services.inventory import StockChange
from orderdesk.services.orders import get_order, supplier_ids_for

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.approved, OrderStatus.cancelled}),
    OrderStatus.approved: frozenset({OrderStatus.fulfilled, OrderStatus.cancelled}),
    OrderStatus.fulfilled: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def is_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not is_transition_allowed(current, target):
        raise InvalidTransition(current, target)


def _lock_order(db: Session, order_id: int) -> Order:
    order = db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .with_for_update(of=Order)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _compare_and_set_status(db: Session, order_id: int, current: OrderStatus, target: OrderStatus) -> None:
    updated = db.execute(
        update(Order)
        .where(Order.id == order_id)
        .where(Order.status == current)
        .values(status=target)
        .execution_options(synchronize_session=False)
    ).rowcount
    if updated == 1:
        return

    # quelqu'un est passé avant nous : on revalide contre l'état réel
    actual = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one_or_none()
    if actual is None:
        raise OrderNotFound(order_id)
    raise InvalidTransition(actual, target)


def _quantities_by_product(order: Order) -> list[tuple[int, Decimal]]:
    # ordre déterministe des verrous produit (évite les deadlocks croisés)
    return [(line.product_id, line.quantity_in_base_uom) for line in business_rules.order_lines(order)]


def _apply_stock_side_effects(
    db: Session,
    order: Order,
    current: OrderStatus,
    target: OrderStatus,
    actor: ActorContext,
) -> list[StockChange]:
    changes: list[StockChange] = []

    if current == OrderStatus.pending and target == OrderStatus.approved:
        for product_id, qty in _quantities_by_product(order):
            changes.append(
                inventory.deduct(
                    db,
                    product_id,
                    qty,
                    order_id=order.id,
                    actor_id=actor.actor_id,
                    reason=f"Order {order.order_number} approved",
                )
            )
        logger.info("Stock deducted for approved order %s", order.order_number)

    elif current == OrderStatus.approved and target == OrderStatus.cancelled:
        for product_id, qty in _quantities_by_product(order):
            changes.append(
                inventory.restore(
                    db,
                    product_id,
                    qty,
                    order_id=order.id,
                    actor_id=actor.actor_id,
                    reason=f"Order {order.order_number} cancelled",
                )
            )
        logger.info("Stock restored for cancelled order %s", order.order_number)

    return changes


def transition_order_status(
    db: Session,
    order_id: int,
    new_status: OrderStatus | str,
    actor: ActorContext,
    *,
    reason: str | None = None,
    bus: EventBus | None = None,
) -> Order:
    require_role(actor, Role.admin)
    target = OrderStatus(new_status)
    reason = reason or f"Status changed to {target.value}"

    with atomic(db):
        order = _lock_order(db, order_id)
        current = order.status
        validate_transition(current, target)

        if target == OrderStatus.approved:
            business_rules.validate_approval_conditions(db, order)

        _compare_and_set_status(db, order.id, current, target)
        changes = _apply_stock_side_effects(db, order, current, target, actor)

        db.add(
            OrderStatusHistory(
                order_id=order.id,
                from_status=current,
                to_status=target,
                changed_by_id=actor.actor_id,
                reason=reason,
            )
        )
        db.flush()

        event = OrderStatusChanged(
            order_id=int(order.id),
            buyer_id=int(order.buyer_id),
            supplier_ids=supplier_ids_for(order),
            order_number=order.order_number,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor.actor_id,
            reason=reason,
        )

    logger.info(
        "Order %s status changed from %s to %s by admin %s",
        event.order_number,
        event.from_status,
        event.to_status,
        actor.actor_id,
    )
    publish(bus, event, *(change.to_event() for change in changes))
    return get_order(db, order_id)


def approve_order(db: Session, order_id: int, actor: ActorContext, **kwargs) -> Order:
    return transition_order_status(db, order_id, OrderStatus.approved, actor, **kwargs)


def cancel_order(db: Session, order_id: int, actor: ActorContext, **kwargs) -> Order:
    return transition_order_status(db, order_id, OrderStatus.cancelled, actor, **kwargs)


def fulfill_order(db: Session, order_id: int, actor: ActorContext, **kwargs) -> Order:
    return transition_order_status(db, order_id, OrderStatus.fulfilled, actor, **kwargs)
