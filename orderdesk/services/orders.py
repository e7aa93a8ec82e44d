"""
Agrégat commande : création et lecture.

create_order :
    1. charge les produits (absent => ProductNotFound, inactif => ProductInactive)
    2. compatibilité d'unité + conversion en unité de base
    3. contrôle de stock INDICATIF (aucune réservation) ; le contrôle qui fait
       foi a lieu à l'approbation
    4. total de ligne = quantité de base x prix de base, arrondi au centime
    5. numéro de commande tiré d'un compteur persistant (pas de count() + 1)
    6. commande + lignes + historique initial dans UNE transaction
    7. OrderCreated publié après commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from orderdesk.app.core.config import get_settings
from orderdesk.app.db.models.core_types import OrderStatus, Role, Uom
from orderdesk.app.db.models.models_v1 import (
    Order,
    OrderItem,
    OrderNumberSequence,
    OrderStatusHistory,
    Product,
)
from orderdesk.app.db.session import atomic
from orderdesk.services import business_rules, inventory, uom
from orderdesk.services.actors import ActorContext, require_role
from orderdesk.services.events import EventBus, OrderCreated, publish
from orderdesk.services.exceptions import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidOrderRequest,
    OrderNotFound,
    ProductInactive,
    ProductNotFound,
    UnitMismatch,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class OrderItemRequest:
    product_id: int
    quantity: uom.Quantity
    unit: Uom | str


@dataclass(frozen=True)
class _PricedLine:
    product: Product
    quantity_requested: Decimal
    requested_uom: Uom
    quantity_in_base_uom: Decimal
    unit_price_in_base_uom: Decimal
    line_total: Decimal


def compute_line_total(quantity_in_base: Decimal, unit_price: Decimal) -> Decimal:
    return (quantity_in_base * unit_price).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------- ORDER NUMBER ----------
def format_order_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:03d}"


def next_order_number(db: Session, *, year: int | None = None) -> str:
    """
    Incrément atomique du compteur annuel (UPDATE ... RETURNING).
    Deux créations concurrentes ne peuvent pas obtenir la même valeur :
    la ligne compteur reste verrouillée jusqu'au commit.
    """
    year = year or datetime.now(timezone.utc).year
    prefix = get_settings().ORDER_NUMBER_PREFIX

    value = db.execute(
        update(OrderNumberSequence)
        .where(OrderNumberSequence.year == year)
        .values(last_value=OrderNumberSequence.last_value + 1)
        .returning(OrderNumberSequence.last_value)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()

    if value is None:
        # première commande de l'année
        db.add(OrderNumberSequence(year=year, last_value=1))
        try:
            db.flush()
        except IntegrityError as exc:
            # une autre transaction vient de créer le compteur : rejouer
            raise ConcurrencyConflict(f"Order number counter for {year} created concurrently") from exc
        value = 1

    return format_order_number(prefix, year, int(value))


# ---------- CREATE ----------
def _normalize_items(items: Sequence[OrderItemRequest]) -> list[OrderItemRequest]:
    if not items:
        raise InvalidOrderRequest("Order must contain at least one item")
    for item in items:
        if uom.to_decimal(item.quantity) <= 0:
            raise InvalidOrderRequest(f"Quantity for product {item.product_id} must be positive")
    return list(items)


def _load_products(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    wanted = sorted(set(product_ids))
    rows = db.execute(select(Product).where(Product.id.in_(wanted))).scalars().all()
    products = {int(p.id): p for p in rows}

    for pid in wanted:
        product = products.get(pid)
        if product is None:
            raise ProductNotFound(pid)
        if not product.is_active:
            raise ProductInactive(pid, product.name)
    return products


def _price_lines(db: Session, items: list[OrderItemRequest], products: dict[int, Product]) -> list[_PricedLine]:
    lines: list[_PricedLine] = []
    required_by_product: dict[int, Decimal] = {}

    for item in items:
        product = products[item.product_id]
        if not uom.is_compatible(item.unit, product.base_uom):
            raise UnitMismatch(item.unit, product.base_uom)

        requested = uom.to_decimal(item.quantity)
        qty_base = uom.quantize_base(uom.convert_to_base(requested, item.unit, product.base_uom))
        if qty_base <= 0:
            raise InvalidOrderRequest(
                f"Quantity {requested} {Uom(item.unit).value} is below the smallest storable amount"
            )

        unit_price = product.price_per_base_uom
        lines.append(
            _PricedLine(
                product=product,
                quantity_requested=requested,
                requested_uom=Uom(item.unit),
                quantity_in_base_uom=qty_base,
                unit_price_in_base_uom=unit_price,
                line_total=compute_line_total(qty_base, unit_price),
            )
        )
        required_by_product[product.id] = required_by_product.get(product.id, Decimal("0")) + qty_base

    # contrôle indicatif, cumulé par produit
    for product_id, required in required_by_product.items():
        availability = inventory.check_availability(db, product_id, required)
        if not availability.available:
            raise InsufficientStock(product_id, available=availability.available_qty, required=required)

    return lines


def create_order(
    db: Session,
    actor: ActorContext,
    items: Sequence[OrderItemRequest],
    *,
    notes: str | None = None,
    bus: EventBus | None = None,
) -> Order:
    require_role(actor, Role.buyer)
    items = _normalize_items(items)

    with atomic(db):
        products = _load_products(db, (item.product_id for item in items))
        lines = _price_lines(db, items, products)
        total_amount = sum((line.line_total for line in lines), Decimal("0"))

        business_rules.validate_order_creation(
            db,
            buyer_id=actor.actor_id,
            role=actor.role,
            lines=[
                business_rules.LineCheck(
                    product_id=line.product.id,
                    quantity_requested=line.quantity_requested,
                    quantity_in_base_uom=line.quantity_in_base_uom,
                )
                for line in lines
            ],
            estimated_total=total_amount,
        )

        order = Order(
            buyer_id=actor.actor_id,
            order_number=next_order_number(db),
            status=OrderStatus.pending,
            total_amount=total_amount,
            notes=notes,
        )
        order.items = [
            OrderItem(
                product_id=line.product.id,
                quantity_requested=line.quantity_requested,
                requested_uom=line.requested_uom,
                quantity_in_base_uom=line.quantity_in_base_uom,
                unit_price_in_base_uom=line.unit_price_in_base_uom,
                line_total=line.line_total,
            )
            for line in lines
        ]
        order.status_history = [
            OrderStatusHistory(
                from_status=None,
                to_status=OrderStatus.pending,
                changed_by_id=actor.actor_id,
                reason="Order created",
            )
        ]
        db.add(order)
        db.flush()

        supplier_ids = tuple(sorted({int(line.product.supplier_id) for line in lines}))
        event = OrderCreated(
            order_id=int(order.id),
            buyer_id=actor.actor_id,
            supplier_ids=supplier_ids,
            order_number=order.order_number,
            total_amount=total_amount,
            item_count=len(lines),
        )

    logger.info("Order created: %s by buyer %s", order.order_number, actor.actor_id)
    publish(bus, event)
    return get_order(db, event.order_id)


# ---------- READ ----------
def _order_query():
    return select(Order).options(
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.status_history),
    )


def get_order(db: Session, order_id: int) -> Order:
    order = db.execute(
        _order_query().where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def supplier_ids_for(order: Order) -> tuple[int, ...]:
    return tuple(sorted({int(item.product.supplier_id) for item in order.items}))


def can_view_order(order: Order, actor: ActorContext) -> bool:
    """acheteur : ses commandes ; fournisseur : commandes contenant ses produits ; admin : tout."""
    if actor.role == Role.admin:
        return True
    if actor.role == Role.buyer:
        return int(order.buyer_id) == actor.actor_id
    if actor.role == Role.supplier:
        return actor.actor_id in supplier_ids_for(order)
    return False


def list_orders(
    db: Session,
    actor: ActorContext,
    *,
    status: OrderStatus | None = None,
    supplier_id: int | None = None,
) -> list[Order]:
    stmt = _order_query().order_by(Order.created_at.desc(), Order.id.desc())

    if actor.role == Role.buyer:
        stmt = stmt.where(Order.buyer_id == actor.actor_id)
    elif actor.role == Role.supplier:
        supplier_id = actor.actor_id

    if supplier_id is not None:
        stmt = stmt.where(
            Order.items.any(OrderItem.product.has(Product.supplier_id == supplier_id))
        )
    if status is not None:
        stmt = stmt.where(Order.status == status)

    return list(db.execute(stmt).scalars().all())
