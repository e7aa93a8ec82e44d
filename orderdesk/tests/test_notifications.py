from datetime import datetime, timezone
from decimal import Decimal

from orderdesk.app.db.models.core_types import Uom
from orderdesk.services import order_status, orders
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import Event, EventBus, OrderCreated, OrderStatusChanged, StockChanged
from orderdesk.services.notifications import ADMIN_ROOM, OrderNotifier, event_payload, rooms_for
from orderdesk.services.orders import OrderItemRequest


class Outbox:
    def __init__(self):
        self.sent = []

    def __call__(self, room, message, payload):
        self.sent.append((room, message, payload))

    def rooms(self, message):
        return [room for room, msg, _ in self.sent if msg == message]


def _created(**overrides):
    values = dict(
        order_id=1,
        buyer_id=10,
        supplier_ids=(20, 21),
        order_number="ORD-2024-001",
        total_amount=Decimal("100.00"),
        item_count=2,
        occurred_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return OrderCreated(**values)


def test_rooms_for_order_events():
    assert rooms_for(_created()) == ["user-10", "user-20", "user-21", ADMIN_ROOM]


def test_rooms_are_deduplicated():
    assert rooms_for(_created(buyer_id=20, supplier_ids=(20,))) == ["user-20", ADMIN_ROOM]


def test_rooms_for_stock_change():
    event = StockChanged(product_id=3, supplier_id=20, old_qty=Decimal("1"), new_qty=Decimal("2"), reason=None)
    assert rooms_for(event) == ["user-20", ADMIN_ROOM]


def test_payload_is_json_friendly():
    payload = event_payload(_created())
    assert payload["total_amount"] == "100.00"
    assert payload["supplier_ids"] == [20, 21]
    assert payload["occurred_at"] == "2024-05-01T12:00:00+00:00"


def test_bus_dispatches_by_type_and_base_class():
    bus = EventBus()
    specific, everything = [], []
    bus.subscribe(OrderCreated, specific.append)
    bus.subscribe(Event, everything.append)

    created = _created()
    stock = StockChanged(product_id=1, supplier_id=2, old_qty=Decimal("0"), new_qty=Decimal("1"), reason=None)
    bus.publish_all([created, stock])

    assert specific == [created]
    assert everything == [created, stock]

    bus.unsubscribe(OrderCreated, specific.append)
    bus.publish(created)
    assert specific == [created]


def test_failing_handler_does_not_break_others(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("socket gone")

    bus.subscribe(OrderCreated, broken)
    bus.subscribe(OrderCreated, received.append)
    bus.publish(_created())

    assert len(received) == 1
    assert "Event handler" in caplog.text


def test_notifier_broadcasts_order_lifecycle(db_session, buyer, supplier, admin, make_product):
    bus = EventBus()
    outbox = Outbox()
    OrderNotifier(outbox).attach(bus)
    p = make_product(supplier, stock="5000")

    order = orders.create_order(
        db_session, ActorContext.of(buyer), [OrderItemRequest(p.id, 1, Uom.kilogram)], bus=bus
    )
    order_status.approve_order(db_session, order.id, ActorContext.of(admin), bus=bus)

    assert outbox.rooms("order.created") == [f"user-{buyer.id}", f"user-{supplier.id}", ADMIN_ROOM]
    assert outbox.rooms("order.status_updated") == [f"user-{buyer.id}", f"user-{supplier.id}", ADMIN_ROOM]
    assert outbox.rooms("stock.changed") == [f"user-{supplier.id}", ADMIN_ROOM]

    _, _, payload = next(m for m in outbox.sent if m[1] == "order.status_updated")
    assert payload["from_status"] == "PENDING"
    assert payload["to_status"] == "APPROVED"
    assert payload["order_number"] == order.order_number


def test_status_event_fields_are_strings():
    event = OrderStatusChanged(
        order_id=1,
        buyer_id=2,
        supplier_ids=(3,),
        order_number="ORD-2024-001",
        from_status="PENDING",
        to_status="CANCELLED",
        actor_id=4,
        reason=None,
    )
    assert event.name == "order.status_updated"
    assert event_payload(event)["reason"] is None
