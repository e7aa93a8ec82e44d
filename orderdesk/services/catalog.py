"""
Catalogue fournisseur : produits + point d'entrée des ajustements de stock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import exists, select
from sqlalchemy.orm import Session, selectinload

from orderdesk.app.db.models.core_types import BaseUom, Role, Uom
from orderdesk.app.db.models.models_v1 import Inventory, OrderItem, Product
from orderdesk.app.db.session import atomic
from orderdesk.services import inventory, uom
from orderdesk.services.actors import ActorContext, require_role
from orderdesk.services.events import EventBus, publish
from orderdesk.services.exceptions import (
    AccessDenied,
    DuplicateSku,
    InvalidOrderRequest,
    ProductLocked,
    ProductNotFound,
)
from orderdesk.services.inventory import StockAvailability

logger = logging.getLogger(__name__)

# modifiables à tout moment par le fournisseur propriétaire / l'admin
ALWAYS_EDITABLE = frozenset({"price_per_base_uom", "is_active"})
# figés dès qu'une ligne de commande référence le produit
LOCKED_ONCE_ORDERED = frozenset({"name", "description", "sku", "base_uom", "conversion_factor_to_base"})
# colonnes NOT NULL : un None explicite est refusé
NOT_NULLABLE = frozenset({"name", "base_uom", "conversion_factor_to_base", "price_per_base_uom", "is_active"})


@dataclass(frozen=True)
class ProductData:
    name: str
    base_uom: BaseUom
    price_per_base_uom: Decimal
    sku: str | None = None
    description: str | None = None
    conversion_factor_to_base: Decimal = Decimal("1")
    is_active: bool = True


def _ensure_sku_free(db: Session, sku: str | None, *, exclude_id: int | None = None) -> None:
    if not sku:
        return
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    if db.execute(stmt).first() is not None:
        raise DuplicateSku(sku)


def _require_owner(product: Product, actor: ActorContext) -> None:
    if actor.role == Role.supplier and int(product.supplier_id) != actor.actor_id:
        raise AccessDenied("You can only manage your own products")


def is_referenced_by_orders(db: Session, product_id: int) -> bool:
    return bool(db.execute(select(exists().where(OrderItem.product_id == product_id))).scalar())


# ---------- READ ----------
def get_product(db: Session, product_id: int) -> Product:
    product = db.execute(
        select(Product)
        .where(Product.id == product_id)
        .options(selectinload(Product.inventory))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def list_products(
    db: Session,
    *,
    include_inactive: bool = False,
    supplier_id: int | None = None,
) -> list[Product]:
    stmt = select(Product).options(selectinload(Product.inventory)).order_by(Product.created_at.desc(), Product.id.desc())
    if not include_inactive:
        stmt = stmt.where(Product.is_active.is_(True))
    if supplier_id is not None:
        stmt = stmt.where(Product.supplier_id == supplier_id)
    return list(db.execute(stmt).scalars().all())


def check_stock(db: Session, product_id: int, required: uom.Quantity) -> StockAvailability:
    get_product(db, product_id)
    return inventory.check_availability(db, product_id, required)


# ---------- WRITE ----------
def create_product(db: Session, actor: ActorContext, data: ProductData) -> Product:
    require_role(actor, Role.supplier)

    with atomic(db):
        _ensure_sku_free(db, data.sku)
        product = Product(
            supplier_id=actor.actor_id,
            name=data.name,
            description=data.description,
            sku=data.sku,
            base_uom=data.base_uom,
            conversion_factor_to_base=data.conversion_factor_to_base,
            price_per_base_uom=data.price_per_base_uom,
            is_active=data.is_active,
        )
        db.add(product)
        db.flush()
        # stock initial à zéro, créé avec le produit
        inventory.create_inventory(db, product.id)
        product_id = int(product.id)

    logger.info("Product created: %s by supplier %s", data.name, actor.actor_id)
    return get_product(db, product_id)


def update_product(db: Session, actor: ActorContext, product_id: int, changes: Mapping[str, Any]) -> Product:
    require_role(actor, Role.supplier, Role.admin)

    unknown = set(changes) - ALWAYS_EDITABLE - LOCKED_ONCE_ORDERED
    if unknown:
        raise InvalidOrderRequest(f"Unknown product fields: {', '.join(sorted(unknown))}")
    nulls = sorted(name for name in changes if name in NOT_NULLABLE and changes[name] is None)
    if nulls:
        raise InvalidOrderRequest(f"Product fields may not be null: {', '.join(nulls)}")

    with atomic(db):
        product = get_product(db, product_id)
        _require_owner(product, actor)

        locked = [
            name
            for name in changes
            if name in LOCKED_ONCE_ORDERED and changes[name] != getattr(product, name)
        ]
        if locked and is_referenced_by_orders(db, product_id):
            raise ProductLocked(product_id, locked)

        if "sku" in changes:
            _ensure_sku_free(db, changes["sku"], exclude_id=product_id)

        for name, value in changes.items():
            setattr(product, name, value)
        db.flush()

    logger.info("Product updated: %s by user %s", product_id, actor.actor_id)
    return get_product(db, product_id)


def deactivate_product(db: Session, actor: ActorContext, product_id: int) -> Product:
    """Suppression logique : le produit reste référencé par les commandes existantes."""
    return update_product(db, actor, product_id, {"is_active": False})


def adjust_product_stock(
    db: Session,
    actor: ActorContext,
    product_id: int,
    delta: uom.Quantity,
    unit: Uom | str,
    *,
    reason: str | None = None,
    bus: EventBus | None = None,
) -> Inventory:
    """
    Réassort / correction saisi dans n'importe quelle unité compatible,
    converti en unité de base puis appliqué par le ledger.
    """
    require_role(actor, Role.supplier, Role.admin)

    with atomic(db):
        product = get_product(db, product_id)
        _require_owner(product, actor)

        delta_base = uom.quantize_base(uom.convert_to_base(delta, unit, product.base_uom))
        if delta_base == 0:
            raise InvalidOrderRequest(
                f"Stock adjustment {delta} {getattr(unit, 'value', unit)} is below the smallest storable amount"
            )
        change = inventory.adjust_stock(
            db,
            product_id,
            delta_base,
            actor_id=actor.actor_id,
            reason=reason,
        )

    logger.info(
        "Stock updated for product %s: %s %s (%s base units)",
        product_id,
        delta,
        getattr(unit, "value", unit),
        delta_base,
    )
    publish(bus, change.to_event())
    return db.execute(
        select(Inventory)
        .where(Inventory.product_id == product_id)
        .execution_options(populate_existing=True)
    ).scalar_one()
