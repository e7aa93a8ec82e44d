from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderdesk.app.db.base import Base, BigIntPK
from orderdesk.app.db.models.core_types import (
    Role,
    Uom,
    BaseUom,
    OrderStatus,
    MovementType,
)

# Quantités : 6 décimales stockées, prix unitaire 4, montants au centime
QTY = Numeric(20, 6)
PRICE = Numeric(14, 4)
MONEY = Numeric(14, 2)

ORDER_STATUS = Enum(OrderStatus, name="order_status")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- AUTH (lecture seule pour le coeur) ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- CATALOGUE ----------
class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    sku: Mapped[str | None] = mapped_column(String(64), unique=True)
    base_uom: Mapped[BaseUom] = mapped_column(Enum(BaseUom, name="base_uom"), nullable=False)
    conversion_factor_to_base: Mapped[Decimal] = mapped_column(QTY, default=Decimal("1"), nullable=False)
    price_per_base_uom: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    supplier: Mapped[User] = relationship()
    inventory: Mapped["Inventory | None"] = relationship(back_populates="product", uselist=False)

    __table_args__ = (
        CheckConstraint("price_per_base_uom >= 0", name="ck_product_price_nonneg"),
        CheckConstraint("conversion_factor_to_base > 0", name="ck_product_factor_pos"),
    )


# ---------- INVENTORY ----------
class Inventory(Base):
    __tablename__ = "inventory"
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    quantity_in_base_uom: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    reserved_quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    last_restocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    product: Mapped[Product] = relationship(back_populates="inventory")

    __table_args__ = (
        CheckConstraint("quantity_in_base_uom >= 0", name="ck_inventory_qty_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity_in_base_uom", name="ck_inventory_reserved_le_qty"),
    )


class StockMovement(Base):
    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    movement_type: Mapped[MovementType] = mapped_column(Enum(MovementType, name="movement_type"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    quantity_after: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"))
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
        Index("ix_stock_movements_product_time", "product_id", "created_at"),
    )


# ---------- ORDERS ----------
class OrderNumberSequence(Base):
    __tablename__ = "order_number_sequences"
    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        ORDER_STATUS,
        default=OrderStatus.pending,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    buyer: Mapped[User] = relationship()
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_order_total_nonneg"),
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    # saisie acheteur
    quantity_requested: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    requested_uom: Mapped[Uom] = mapped_column(Enum(Uom, name="uom"), nullable=False)

    # figé à la création : un changement ultérieur du produit ne touche pas la commande
    quantity_in_base_uom: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price_in_base_uom: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="ck_order_item_qty_requested_pos"),
        CheckConstraint("quantity_in_base_uom > 0", name="ck_order_item_qty_base_pos"),
        CheckConstraint("unit_price_in_base_uom >= 0", name="ck_order_item_unit_price_nonneg"),
    )


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    from_status: Mapped[OrderStatus | None] = mapped_column(ORDER_STATUS)
    to_status: Mapped[OrderStatus] = mapped_column(ORDER_STATUS, nullable=False)
    changed_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500))
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order: Mapped[Order] = relationship(back_populates="status_history")

    __table_args__ = (Index("ix_order_status_history_order_time", "order_id", "changed_at"),)
