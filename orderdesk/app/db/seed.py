from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from orderdesk.app.core.config import get_settings
from orderdesk.app.core.logging import configure_logging
from orderdesk.app.db.models.core_types import BaseUom, Role, Uom
from orderdesk.app.db.models.models_v1 import Product, User
from orderdesk.app.db.session import SessionLocal
from orderdesk.services import catalog
from orderdesk.services.actors import ActorContext

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("admin@orderdesk.local", "ADMIN", Role.admin),
    ("buyer@orderdesk.local", "DEMO BUYER", Role.buyer),
    ("supplier@orderdesk.local", "DEMO SUPPLIER", Role.supplier),
]

# (sku, nom, unité de base, prix par unité de base, stock initial, unité de saisie du stock)
DEMO_PRODUCTS = [
    ("FLOUR-T55", "Farine T55", BaseUom.gram, "0.0012", "250", Uom.kilogram),
    ("OIL-OLIVE", "Huile d'olive", BaseUom.milliliter, "0.0090", "40", Uom.liter),
    ("CABLE-CU", "Câble cuivre 2.5mm", BaseUom.meter, "0.8500", "1.5", Uom.kilometer),
    ("PALLET-EU", "Palette EUR", BaseUom.piece, "12.5000", "30", Uom.piece),
]


def _get_or_create_user(db, email: str, name: str, role: Role) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if not user:
        user = User(email=email, name=name, role=role, is_active=True)
        db.add(user)
        db.commit()
    return user


def run_seed():
    db = SessionLocal()
    try:
        users = {role: _get_or_create_user(db, email, name, role) for email, name, role in DEMO_USERS}
        supplier = ActorContext.of(users[Role.supplier])

        for sku, name, base_uom, price, stock, stock_uom in DEMO_PRODUCTS:
            if db.scalar(select(Product.id).where(Product.sku == sku)):
                continue
            product = catalog.create_product(
                db,
                supplier,
                catalog.ProductData(name=name, sku=sku, base_uom=base_uom, price_per_base_uom=Decimal(price)),
            )
            catalog.adjust_product_stock(db, supplier, product.id, Decimal(stock), stock_uom, reason="seed")

        logger.info(
            "SEED OK: users=%s products=%s",
            ", ".join(u.email for u in users.values()),
            len(DEMO_PRODUCTS),
        )
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging(get_settings().LOG_LEVEL)
    run_seed()
