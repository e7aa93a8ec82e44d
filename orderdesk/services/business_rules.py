"""
Règles métier autour des commandes (limites par rôle, contrôle de stock
indicatif, conditions d'approbation).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from orderdesk.app.db.models.core_types import Role
from orderdesk.app.db.models.models_v1 import Order, Product, User
from orderdesk.services import inventory
from orderdesk.services.exceptions import BusinessRuleViolation

logger = logging.getLogger(__name__)

# marge "stock bas" : disponible < 110 % du besoin
LOW_STOCK_RATIO = Decimal("1.1")


@dataclass(frozen=True)
class OrderLimits:
    max_order_value: Decimal
    max_items_per_order: int
    max_quantity_per_item: Decimal
    max_orders_per_day: int


ORDER_LIMITS: dict[Role, OrderLimits] = {
    Role.buyer: OrderLimits(
        max_order_value=Decimal("50000"),
        max_items_per_order=50,
        max_quantity_per_item=Decimal("10000"),
        max_orders_per_day=20,
    ),
    Role.supplier: OrderLimits(
        max_order_value=Decimal("100000"),
        max_items_per_order=100,
        max_quantity_per_item=Decimal("50000"),
        max_orders_per_day=50,
    ),
    Role.admin: OrderLimits(
        max_order_value=Decimal("1000000"),
        max_items_per_order=1000,
        max_quantity_per_item=Decimal("1000000"),
        max_orders_per_day=1000,
    ),
}


@dataclass(frozen=True)
class LineCheck:
    product_id: int
    quantity_requested: Decimal
    quantity_in_base_uom: Decimal


@dataclass
class StockValidation:
    is_valid: bool = True
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    # produits absents ou désactivés
    unavailable: list[int] = field(default_factory=list)
    # produits dont le stock disponible ne couvre pas le besoin
    short: list[int] = field(default_factory=list)


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def count_orders_today(db: Session, buyer_id: int, *, now: datetime | None = None) -> int:
    start, end = _day_bounds(now or datetime.now(timezone.utc))
    return int(
        db.execute(
            select(func.count(Order.id))
            .where(Order.buyer_id == buyer_id)
            .where(Order.created_at >= start)
            .where(Order.created_at < end)
        ).scalar_one()
    )


def validate_order_creation(
    db: Session,
    *,
    buyer_id: int,
    role: Role,
    lines: list[LineCheck],
    estimated_total: Decimal,
) -> None:
    """Toutes les violations sont collectées puis levées ensemble."""
    limits = ORDER_LIMITS[role]
    issues: list[str] = []

    if estimated_total > limits.max_order_value:
        issues.append(
            f"Order value {estimated_total} exceeds maximum allowed {limits.max_order_value}"
        )

    if len(lines) > limits.max_items_per_order:
        issues.append(
            f"Order contains {len(lines)} items, maximum allowed is {limits.max_items_per_order}"
        )

    for line in lines:
        if line.quantity_requested > limits.max_quantity_per_item:
            issues.append(
                f"Item {line.product_id} quantity {line.quantity_requested} "
                f"exceeds maximum {limits.max_quantity_per_item}"
            )

    today = count_orders_today(db, buyer_id)
    if today >= limits.max_orders_per_day:
        issues.append(f"Daily order limit reached ({today}/{limits.max_orders_per_day})")

    if issues:
        logger.warning("Order validation failed for user %s: %s", buyer_id, "; ".join(issues))
        raise BusinessRuleViolation("Order validation failed", issues)


def validate_stock_levels(db: Session, lines: Iterable[LineCheck]) -> StockValidation:
    result = StockValidation()

    for line in lines:
        product = db.get(Product, line.product_id, populate_existing=True)
        if product is None:
            result.issues.append(f"Product {line.product_id} not found")
            result.unavailable.append(line.product_id)
            continue
        if not product.is_active:
            result.issues.append(f"Product {product.name} is not available")
            result.unavailable.append(line.product_id)
            continue

        availability = inventory.check_availability(db, line.product_id, line.quantity_in_base_uom)
        available = availability.available_qty
        required = line.quantity_in_base_uom

        if not availability.available:
            result.short.append(line.product_id)
            result.issues.append(
                f"Insufficient stock for {product.name}. Required: {required}, Available: {available}"
            )
            if available > 0:
                result.suggestions.append(
                    f"Consider reducing quantity for {product.name} to {available} or less"
                )
        elif available < required * LOW_STOCK_RATIO:
            result.suggestions.append(
                f"Low stock warning for {product.name}. Consider ordering soon to avoid stockouts"
            )

    result.is_valid = not result.issues
    return result


def order_lines(order: Order) -> list[LineCheck]:
    """Besoin en unité de base cumulé par produit, ordre des product_id."""
    totals: dict[int, Decimal] = {}
    for item in order.items:
        pid = int(item.product_id)
        totals[pid] = totals.get(pid, Decimal("0")) + item.quantity_in_base_uom
    return [
        LineCheck(product_id=pid, quantity_requested=qty, quantity_in_base_uom=qty)
        for pid, qty in sorted(totals.items())
    ]


def validate_approval_conditions(db: Session, order: Order) -> None:
    buyer = db.get(User, order.buyer_id, populate_existing=True)
    if buyer is None or not buyer.is_active:
        raise BusinessRuleViolation(
            "Cannot approve order for inactive buyer",
            [f"Buyer {order.buyer_id} is inactive"],
        )

    stock = validate_stock_levels(db, order_lines(order))
    if stock.unavailable:
        raise BusinessRuleViolation("Cannot approve order due to stock issues", stock.issues)
    # une rupture reste signalée par le ledger (InsufficientStock) au moment de la déduction
    for suggestion in stock.suggestions:
        logger.warning("Order %s: %s", order.order_number, suggestion)

    # signaux faibles : journalisés, jamais bloquants
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    recent = db.execute(
        select(func.count(Order.id))
        .where(Order.buyer_id == order.buyer_id)
        .where(Order.created_at >= since)
    ).scalar_one()
    if recent > 10:
        logger.warning(
            "High order frequency detected for buyer %s: %s orders in 24h", order.buyer_id, recent
        )
