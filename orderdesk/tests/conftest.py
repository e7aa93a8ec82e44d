from __future__ import annotations

from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy.orm import Session, sessionmaker

from orderdesk.app.db.base import Base
from orderdesk.app.db.models import models_v1  # noqa: F401  (enregistre les tables)
from orderdesk.app.db.models.core_types import BaseUom, Role
from orderdesk.app.db.models.models_v1 import Product, User
from orderdesk.app.db.session import atomic, build_engine
from orderdesk.services import inventory
from orderdesk.services.events import Event, EventBus


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Base SQLite fichier, neuve pour chaque test.
    Fichier (et pas :memory:) pour que plusieurs threads partagent la même base.
    """
    eng = build_engine(f"sqlite+pysqlite:///{tmp_path / 'orderdesk-test.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def bus():
    """Bus + journal des events publiés."""
    event_bus = EventBus()
    event_bus.published = []
    event_bus.subscribe(Event, event_bus.published.append)
    return event_bus


_seq = count(1)


@pytest.fixture
def make_user(db_session):
    def _make(role: Role = Role.buyer, *, active: bool = True) -> User:
        n = next(_seq)
        user = User(
            email=f"{role.value.lower()}-{n}@example.test",
            name=f"TEST-{role.value}-{n}",
            role=role,
            is_active=active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_product(db_session):
    def _make(
        supplier: User,
        *,
        base_uom: BaseUom = BaseUom.gram,
        price: str = "0.05",
        stock: str = "0",
        active: bool = True,
        name: str | None = None,
    ) -> Product:
        n = next(_seq)
        with atomic(db_session):
            product = Product(
                supplier_id=supplier.id,
                name=name or f"TEST-PROD-{n}",
                sku=f"TEST-SKU-{n}",
                base_uom=base_uom,
                price_per_base_uom=Decimal(price),
                is_active=active,
            )
            db_session.add(product)
            db_session.flush()
            inventory.create_inventory(db_session, product.id)
            if Decimal(stock) != 0:
                inventory.adjust_stock(db_session, product.id, Decimal(stock), reason="test seed")
        return product

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(Role.buyer)


@pytest.fixture
def supplier(make_user):
    return make_user(Role.supplier)


@pytest.fixture
def admin(make_user):
    return make_user(Role.admin)


@pytest.fixture
def stock_of(db_session):
    def _stock(product_id: int) -> Decimal:
        return inventory.check_availability(db_session, product_id, 0).total_stock

    return _stock
