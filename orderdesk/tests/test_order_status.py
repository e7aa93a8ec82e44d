import logging
from decimal import Decimal

import pytest
from sqlalchemy import select

from orderdesk.app.db.models.core_types import BaseUom, MovementType, OrderStatus, Uom
from orderdesk.app.db.models.models_v1 import StockMovement, User
from orderdesk.services import catalog, inventory, order_status, orders
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import OrderStatusChanged, StockChanged
from orderdesk.services.exceptions import (
    AccessDenied,
    BusinessRuleViolation,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
)
from orderdesk.app.db.session import atomic
from orderdesk.services.orders import OrderItemRequest


@pytest.fixture
def flour(supplier, make_product):
    return make_product(supplier, base_uom=BaseUom.gram, price="0.05", stock="10000", name="Flour")


@pytest.fixture
def pending_order(db_session, buyer, flour):
    return orders.create_order(
        db_session,
        ActorContext.of(buyer),
        [OrderItemRequest(flour.id, 2, Uom.kilogram)],
    )


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (OrderStatus.pending, OrderStatus.approved, True),
        (OrderStatus.pending, OrderStatus.cancelled, True),
        (OrderStatus.pending, OrderStatus.fulfilled, False),
        (OrderStatus.approved, OrderStatus.fulfilled, True),
        (OrderStatus.approved, OrderStatus.cancelled, True),
        (OrderStatus.approved, OrderStatus.pending, False),
        (OrderStatus.fulfilled, OrderStatus.cancelled, False),
        (OrderStatus.cancelled, OrderStatus.approved, False),
        (OrderStatus.pending, OrderStatus.pending, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert order_status.is_transition_allowed(current, target) is allowed
    if not allowed:
        with pytest.raises(InvalidTransition):
            order_status.validate_transition(current, target)


def test_terminal_statuses():
    assert order_status.TERMINAL_STATUSES == {OrderStatus.fulfilled, OrderStatus.cancelled}


def test_approve_deducts_stock(db_session, admin, flour, pending_order, stock_of):
    order = order_status.approve_order(db_session, pending_order.id, ActorContext.of(admin))

    assert order.status == OrderStatus.approved
    assert stock_of(flour.id) == Decimal("8000")


def test_cancel_after_approve_restores_stock(db_session, admin, flour, pending_order, stock_of):
    actor = ActorContext.of(admin)
    order_status.approve_order(db_session, pending_order.id, actor)
    order = order_status.cancel_order(db_session, pending_order.id, actor, reason="customer request")

    assert order.status == OrderStatus.cancelled
    assert stock_of(flour.id) == Decimal("10000")

    movements = db_session.execute(
        select(StockMovement)
        .where(StockMovement.order_id == pending_order.id)
        .order_by(StockMovement.id)
    ).scalars().all()
    assert [(m.movement_type, m.quantity) for m in movements] == [
        (MovementType.deduct, Decimal("2000")),
        (MovementType.restore, Decimal("2000")),
    ]


def test_cancel_pending_leaves_stock_untouched(db_session, admin, flour, pending_order, stock_of):
    order = order_status.cancel_order(db_session, pending_order.id, ActorContext.of(admin))
    assert order.status == OrderStatus.cancelled
    assert stock_of(flour.id) == Decimal("10000")


def test_fulfill_after_approve_has_no_stock_effect(db_session, admin, flour, pending_order, stock_of):
    actor = ActorContext.of(admin)
    order_status.approve_order(db_session, pending_order.id, actor)
    order = order_status.fulfill_order(db_session, pending_order.id, actor)

    assert order.status == OrderStatus.fulfilled
    assert stock_of(flour.id) == Decimal("8000")


def test_pending_to_fulfilled_is_rejected(db_session, admin, flour, pending_order, stock_of):
    with pytest.raises(InvalidTransition) as exc_info:
        order_status.fulfill_order(db_session, pending_order.id, ActorContext.of(admin))

    assert exc_info.value.current == OrderStatus.pending
    assert exc_info.value.attempted == OrderStatus.fulfilled
    assert orders.get_order(db_session, pending_order.id).status == OrderStatus.pending
    assert stock_of(flour.id) == Decimal("10000")


@pytest.mark.parametrize("terminal", [OrderStatus.fulfilled, OrderStatus.cancelled])
def test_terminal_states_reject_everything(db_session, admin, flour, pending_order, stock_of, terminal):
    actor = ActorContext.of(admin)
    order_status.approve_order(db_session, pending_order.id, actor)
    order_status.transition_order_status(db_session, pending_order.id, terminal, actor)
    stock_before = stock_of(flour.id)
    history_before = len(orders.get_order(db_session, pending_order.id).status_history)

    for target in OrderStatus:
        with pytest.raises(InvalidTransition):
            order_status.transition_order_status(db_session, pending_order.id, target, actor)

    order = orders.get_order(db_session, pending_order.id)
    assert order.status == terminal
    assert len(order.status_history) == history_before
    assert stock_of(flour.id) == stock_before


def test_second_approval_is_rejected_without_double_deduction(db_session, admin, flour, pending_order, stock_of):
    actor = ActorContext.of(admin)
    order_status.approve_order(db_session, pending_order.id, actor)
    with pytest.raises(InvalidTransition):
        order_status.approve_order(db_session, pending_order.id, actor)
    assert stock_of(flour.id) == Decimal("8000")


def test_approval_is_all_or_nothing_across_items(db_session, buyer, admin, supplier, make_product, stock_of):
    a = make_product(supplier, stock="100")
    b = make_product(supplier, stock="100")
    order = orders.create_order(
        db_session,
        ActorContext.of(buyer),
        [OrderItemRequest(a.id, 60, Uom.gram), OrderItemRequest(b.id, 60, Uom.gram)],
    )

    # le stock de B baisse entre création et approbation
    with atomic(db_session):
        inventory.adjust_stock(db_session, b.id, Decimal("-50"), reason="damaged")

    with pytest.raises(InsufficientStock) as exc_info:
        order_status.approve_order(db_session, order.id, ActorContext.of(admin))

    assert exc_info.value.product_id == b.id
    assert stock_of(a.id) == Decimal("100")
    assert stock_of(b.id) == Decimal("50")
    reloaded = orders.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.pending
    assert len(reloaded.status_history) == 1


def test_lines_of_same_product_deducted_together(db_session, buyer, admin, supplier, make_product, stock_of):
    p = make_product(supplier, stock="3000")
    order = orders.create_order(
        db_session,
        ActorContext.of(buyer),
        [OrderItemRequest(p.id, 1, Uom.kilogram), OrderItemRequest(p.id, 500, Uom.gram)],
    )
    order_status.approve_order(db_session, order.id, ActorContext.of(admin))
    assert stock_of(p.id) == Decimal("1500")


def test_history_chain(db_session, admin, pending_order):
    actor = ActorContext.of(admin)
    order_status.approve_order(db_session, pending_order.id, actor)
    order = order_status.fulfill_order(db_session, pending_order.id, actor, reason="delivered")

    chain = [(h.from_status, h.to_status) for h in order.status_history]
    assert chain == [
        (None, OrderStatus.pending),
        (OrderStatus.pending, OrderStatus.approved),
        (OrderStatus.approved, OrderStatus.fulfilled),
    ]
    # chaque entrée part du statut d'arrivée de la précédente
    for previous, current in zip(order.status_history, order.status_history[1:]):
        assert current.from_status == previous.to_status

    assert order.status_history[1].reason == "Status changed to APPROVED"
    assert order.status_history[2].reason == "delivered"
    assert order.status_history[2].changed_by_id == admin.id


def test_only_admins_change_status(db_session, buyer, supplier, pending_order):
    for user in (buyer, supplier):
        with pytest.raises(AccessDenied):
            order_status.approve_order(db_session, pending_order.id, ActorContext.of(user))


def test_unknown_order(db_session, admin):
    with pytest.raises(OrderNotFound):
        order_status.approve_order(db_session, 123456, ActorContext.of(admin))


def test_inactive_buyer_cannot_be_approved(db_session, buyer, admin, flour, pending_order, stock_of):
    db_session.get(User, buyer.id).is_active = False
    db_session.commit()

    with pytest.raises(BusinessRuleViolation):
        order_status.approve_order(db_session, pending_order.id, ActorContext.of(admin))
    assert stock_of(flour.id) == Decimal("10000")
    assert orders.get_order(db_session, pending_order.id).status == OrderStatus.pending


def test_events_published_on_approval(db_session, bus, buyer, supplier, admin, flour, pending_order):
    order_status.approve_order(db_session, pending_order.id, ActorContext.of(admin), bus=bus)

    status_events = [e for e in bus.published if isinstance(e, OrderStatusChanged)]
    stock_events = [e for e in bus.published if isinstance(e, StockChanged)]

    assert len(status_events) == 1
    event = status_events[0]
    assert event.order_id == pending_order.id
    assert event.buyer_id == buyer.id
    assert event.supplier_ids == (supplier.id,)
    assert (event.from_status, event.to_status) == ("PENDING", "APPROVED")
    assert event.actor_id == admin.id

    assert len(stock_events) == 1
    assert stock_events[0].product_id == flour.id
    assert (stock_events[0].old_qty, stock_events[0].new_qty) == (Decimal("10000"), Decimal("8000"))


def test_no_event_when_transition_fails(db_session, bus, admin, pending_order):
    with pytest.raises(InvalidTransition):
        order_status.fulfill_order(db_session, pending_order.id, ActorContext.of(admin), bus=bus)
    assert bus.published == []


def test_deactivated_product_blocks_approval(db_session, admin, supplier, flour, pending_order, stock_of):
    catalog.deactivate_product(db_session, ActorContext.of(supplier), flour.id)

    with pytest.raises(BusinessRuleViolation) as exc_info:
        order_status.approve_order(db_session, pending_order.id, ActorContext.of(admin))

    assert any("Flour is not available" in issue for issue in exc_info.value.issues)
    assert orders.get_order(db_session, pending_order.id).status == OrderStatus.pending
    assert stock_of(flour.id) == Decimal("10000")


def test_low_stock_at_approval_is_logged(db_session, buyer, admin, supplier, make_product, stock_of, caplog):
    p = make_product(supplier, stock="2100", name="Sugar")
    order = orders.create_order(db_session, ActorContext.of(buyer), [OrderItemRequest(p.id, 2, Uom.kilogram)])

    with caplog.at_level(logging.WARNING, logger="orderdesk.services.business_rules"):
        approved = order_status.approve_order(db_session, order.id, ActorContext.of(admin))

    assert approved.status == OrderStatus.approved
    assert stock_of(p.id) == Decimal("100")
    assert "Low stock warning for Sugar" in caplog.text
