"""initial order / inventory schema

Revision ID: 5b1f0c2a9e31
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5b1f0c2a9e31"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
QTY = sa.Numeric(20, 6)
PRICE = sa.Numeric(14, 4)
MONEY = sa.Numeric(14, 2)

# libellés = noms des membres Python (SQLAlchemy persiste le nom, pas la valeur)
ROLE = sa.Enum("buyer", "supplier", "admin", name="role")
UOM = sa.Enum(
    "gram", "kilogram", "ton", "milliliter", "liter", "meter", "centimeter", "kilometer", "piece",
    name="uom",
)
BASE_UOM = sa.Enum("gram", "kilogram", "milliliter", "liter", "meter", "piece", name="base_uom")
ORDER_STATUS = sa.Enum("pending", "approved", "fulfilled", "cancelled", name="order_status")
# même type réutilisé par une seconde table : ne pas le recréer sous Postgres
ORDER_STATUS_REUSED = sa.Enum(*ORDER_STATUS.enums, name="order_status").with_variant(
    postgresql.ENUM(*ORDER_STATUS.enums, name="order_status", create_type=False), "postgresql"
)
MOVEMENT_TYPE = sa.Enum("deduct", "restore", "restock", "correction", name="movement_type")


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", ROLE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
    )

    op.create_table(
        "products",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("sku", sa.String(64), unique=True),
        sa.Column("base_uom", BASE_UOM, nullable=False),
        sa.Column("conversion_factor_to_base", QTY, nullable=False),
        sa.Column("price_per_base_uom", PRICE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("price_per_base_uom >= 0", name="ck_product_price_nonneg"),
        sa.CheckConstraint("conversion_factor_to_base > 0", name="ck_product_factor_pos"),
    )
    op.create_index("ix_products_supplier_id", "products", ["supplier_id"])

    op.create_table(
        "inventory",
        sa.Column(
            "product_id",
            sa.BigInteger(),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("quantity_in_base_uom", QTY, nullable=False, server_default="0"),
        sa.Column("reserved_quantity", QTY, nullable=False, server_default="0"),
        _ts("last_restocked_at", nullable=True),
        _ts("updated_at"),
        sa.CheckConstraint("quantity_in_base_uom >= 0", name="ck_inventory_qty_nonneg"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        sa.CheckConstraint("reserved_quantity <= quantity_in_base_uom", name="ck_inventory_reserved_le_qty"),
    )

    op.create_table(
        "order_number_sequences",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
    )

    op.create_table(
        "orders",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("buyer_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("total_amount >= 0", name="ck_order_total_nonneg"),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_buyer_created", "orders", ["buyer_id", "created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_requested", QTY, nullable=False),
        sa.Column("requested_uom", UOM, nullable=False),
        sa.Column("quantity_in_base_uom", QTY, nullable=False),
        sa.Column("unit_price_in_base_uom", PRICE, nullable=False),
        sa.Column("line_total", MONEY, nullable=False),
        sa.CheckConstraint("quantity_requested > 0", name="ck_order_item_qty_requested_pos"),
        sa.CheckConstraint("quantity_in_base_uom > 0", name="ck_order_item_qty_base_pos"),
        sa.CheckConstraint("unit_price_in_base_uom >= 0", name="ck_order_item_unit_price_nonneg"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_product_id", "order_items", ["product_id"])

    op.create_table(
        "order_status_history",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_status", ORDER_STATUS_REUSED),
        sa.Column("to_status", ORDER_STATUS_REUSED, nullable=False),
        sa.Column(
            "changed_by_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("reason", sa.String(500)),
        _ts("changed_at"),
    )
    op.create_index("ix_order_status_history_order_time", "order_status_history", ["order_id", "changed_at"])

    op.create_table(
        "stock_movements",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("quantity_after", QTY, nullable=False),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="SET NULL")),
        sa.Column("actor_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("reason", sa.String(255)),
        _ts("created_at"),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "created_at"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("order_number_sequences")
    op.drop_table("inventory")
    op.drop_table("products")
    op.drop_table("users")

    # types Postgres créés par create_table (no-op ailleurs)
    bind = op.get_bind()
    for enum_type in (MOVEMENT_TYPE, ORDER_STATUS, BASE_UOM, UOM, ROLE):
        enum_type.drop(bind, checkfirst=True)
