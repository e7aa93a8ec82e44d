"""
Inventory ledger.

Seul point d'écriture du stock (table inventory). Chaque mutation :
- verrouille la ligne produit (SELECT ... FOR UPDATE)
- écrit par UPDATE conditionnel (la condition de stock est re-vérifiée
  au moment de l'écriture, pas au moment où l'appelant a lu)
- trace un StockMovement

Aucune fonction ici ne commit : elles s'exécutent dans la transaction
de l'appelant (voir orderdesk.app.db.session.atomic), tout ou rien.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orderdesk.app.db.models.core_types import MovementType
from orderdesk.app.db.models.models_v1 import Inventory, Product, StockMovement, utcnow
from orderdesk.services.events import StockChanged
from orderdesk.services.exceptions import (
    InsufficientStock,
    InvalidOrderRequest,
    NegativeStockRejected,
    ProductNotFound,
)
from orderdesk.services.uom import Quantity, quantize_base, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class StockAvailability:
    product_id: int
    available: bool
    available_qty: Decimal
    total_stock: Decimal
    reserved: Decimal
    required: Decimal


@dataclass(frozen=True)
class StockChange:
    product_id: int
    supplier_id: int
    movement_type: MovementType
    old_qty: Decimal
    new_qty: Decimal
    reason: str | None = None

    def to_event(self) -> StockChanged:
        return StockChanged(
            product_id=self.product_id,
            supplier_id=self.supplier_id,
            old_qty=self.old_qty,
            new_qty=self.new_qty,
            reason=self.reason,
        )


def _load_inventory(db: Session, product_id: int, *, for_update: bool = False) -> Inventory | None:
    stmt = (
        select(Inventory)
        .where(Inventory.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def _require_inventory(db: Session, product_id: int, *, for_update: bool = False) -> Inventory:
    inv = _load_inventory(db, product_id, for_update=for_update)
    if inv is None:
        raise ProductNotFound(product_id)
    return inv


def _positive(quantity: Quantity) -> Decimal:
    qty = quantize_base(to_decimal(quantity))
    if qty <= 0:
        raise InvalidOrderRequest(f"Quantity must be positive (got {qty})")
    return qty


def _supplier_id(db: Session, product_id: int) -> int:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return int(product.supplier_id)


def _record_movement(
    db: Session,
    *,
    product_id: int,
    movement_type: MovementType,
    quantity: Decimal,
    quantity_after: Decimal,
    order_id: int | None,
    actor_id: int | None,
    reason: str | None,
) -> None:
    db.add(
        StockMovement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            quantity_after=quantity_after,
            order_id=order_id,
            actor_id=actor_id,
            reason=reason,
        )
    )


def create_inventory(db: Session, product_id: int) -> Inventory:
    inv = Inventory(
        product_id=product_id,
        quantity_in_base_uom=ZERO,
        reserved_quantity=ZERO,
    )
    db.add(inv)
    db.flush()
    return inv


def check_availability(db: Session, product_id: int, required: Quantity) -> StockAvailability:
    """
    Lecture pure : available = (quantity - reserved) >= required.
    Produit sans ligne d'inventaire => rien de disponible.
    """
    required_qty = to_decimal(required)
    inv = _load_inventory(db, product_id)
    if inv is None:
        return StockAvailability(
            product_id=product_id,
            available=False,
            available_qty=ZERO,
            total_stock=ZERO,
            reserved=ZERO,
            required=required_qty,
        )

    available_qty = inv.quantity_in_base_uom - inv.reserved_quantity
    return StockAvailability(
        product_id=product_id,
        available=available_qty >= required_qty,
        available_qty=available_qty,
        total_stock=inv.quantity_in_base_uom,
        reserved=inv.reserved_quantity,
        required=required_qty,
    )


def deduct(
    db: Session,
    product_id: int,
    quantity: Quantity,
    *,
    order_id: int | None = None,
    actor_id: int | None = None,
    reason: str | None = None,
) -> StockChange:
    qty = _positive(quantity)

    inv = _require_inventory(db, product_id, for_update=True)
    available = inv.quantity_in_base_uom - inv.reserved_quantity
    if available < qty:
        raise InsufficientStock(product_id, available=available, required=qty)

    new_qty = db.execute(
        update(Inventory)
        .where(Inventory.product_id == product_id)
        .where(Inventory.quantity_in_base_uom - Inventory.reserved_quantity >= qty)
        .values(quantity_in_base_uom=Inventory.quantity_in_base_uom - qty)
        .returning(Inventory.quantity_in_base_uom)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()

    if new_qty is None:
        # écrivain concurrent entre lecture et écriture (moteur sans FOR UPDATE)
        inv = _require_inventory(db, product_id)
        raise InsufficientStock(
            product_id,
            available=inv.quantity_in_base_uom - inv.reserved_quantity,
            required=qty,
        )

    _record_movement(
        db,
        product_id=product_id,
        movement_type=MovementType.deduct,
        quantity=qty,
        quantity_after=new_qty,
        order_id=order_id,
        actor_id=actor_id,
        reason=reason,
    )
    logger.info("Stock deducted: product=%s qty=%s new_qty=%s order=%s", product_id, qty, new_qty, order_id)
    return StockChange(
        product_id=product_id,
        supplier_id=_supplier_id(db, product_id),
        movement_type=MovementType.deduct,
        old_qty=new_qty + qty,
        new_qty=new_qty,
        reason=reason,
    )


def restore(
    db: Session,
    product_id: int,
    quantity: Quantity,
    *,
    order_id: int | None = None,
    actor_id: int | None = None,
    reason: str | None = None,
) -> StockChange:
    """Annule une déduction antérieure. Ligne absente => erreur (jamais ignorée)."""
    qty = _positive(quantity)

    _require_inventory(db, product_id, for_update=True)
    new_qty = db.execute(
        update(Inventory)
        .where(Inventory.product_id == product_id)
        .values(quantity_in_base_uom=Inventory.quantity_in_base_uom + qty)
        .returning(Inventory.quantity_in_base_uom)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    if new_qty is None:
        raise ProductNotFound(product_id)

    _record_movement(
        db,
        product_id=product_id,
        movement_type=MovementType.restore,
        quantity=qty,
        quantity_after=new_qty,
        order_id=order_id,
        actor_id=actor_id,
        reason=reason,
    )
    logger.info("Stock restored: product=%s qty=%s new_qty=%s order=%s", product_id, qty, new_qty, order_id)
    return StockChange(
        product_id=product_id,
        supplier_id=_supplier_id(db, product_id),
        movement_type=MovementType.restore,
        old_qty=new_qty - qty,
        new_qty=new_qty,
        reason=reason,
    )


def adjust_stock(
    db: Session,
    product_id: int,
    delta: Quantity,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
) -> StockChange:
    """
    Réassort (delta > 0) ou correction (delta < 0) fournisseur.
    Le stock résultant ne descend jamais sous 0 ni sous le réservé.
    """
    delta_qty = quantize_base(to_decimal(delta))
    if delta_qty == 0:
        raise InvalidOrderRequest("Stock adjustment must be non-zero")

    inv = _require_inventory(db, product_id, for_update=True)
    _check_adjustment(inv, delta_qty)

    values = {"quantity_in_base_uom": Inventory.quantity_in_base_uom + delta_qty}
    if delta_qty > 0:
        values["last_restocked_at"] = utcnow()

    new_qty = db.execute(
        update(Inventory)
        .where(Inventory.product_id == product_id)
        .where(Inventory.quantity_in_base_uom + delta_qty >= Inventory.reserved_quantity)
        .values(**values)
        .returning(Inventory.quantity_in_base_uom)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()

    if new_qty is None:
        inv = _require_inventory(db, product_id)
        _check_adjustment(inv, delta_qty)
        raise NegativeStockRejected(product_id, current=inv.quantity_in_base_uom, delta=delta_qty)

    movement_type = MovementType.restock if delta_qty > 0 else MovementType.correction
    _record_movement(
        db,
        product_id=product_id,
        movement_type=movement_type,
        quantity=abs(delta_qty),
        quantity_after=new_qty,
        order_id=None,
        actor_id=actor_id,
        reason=reason,
    )
    logger.info("Stock adjusted: product=%s delta=%s new_qty=%s", product_id, delta_qty, new_qty)
    return StockChange(
        product_id=product_id,
        supplier_id=_supplier_id(db, product_id),
        movement_type=movement_type,
        old_qty=new_qty - delta_qty,
        new_qty=new_qty,
        reason=reason,
    )


def _check_adjustment(inv: Inventory, delta_qty: Decimal) -> None:
    resulting = inv.quantity_in_base_uom + delta_qty
    if resulting < 0:
        raise NegativeStockRejected(inv.product_id, current=inv.quantity_in_base_uom, delta=delta_qty)
    if resulting < inv.reserved_quantity:
        # on ne peut pas retirer du stock déjà réservé
        raise InsufficientStock(
            inv.product_id,
            available=inv.quantity_in_base_uom - inv.reserved_quantity,
            required=-delta_qty,
        )
