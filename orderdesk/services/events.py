"""
Events du domaine commandes / stock.

Les events sont des faits immuables, nommés au passé, publiés APRÈS commit.
Les abonnés (notifications, audit) sont hors de la frontière de cohérence :
une erreur d'abonné est journalisée, jamais propagée au coeur.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Event:
    """Classe de base pour tous les events du domaine."""

    name = "event"


@dataclass(frozen=True)
class OrderCreated(Event):
    name = "order.created"

    order_id: int
    buyer_id: int
    supplier_ids: tuple[int, ...]
    order_number: str
    total_amount: Decimal
    item_count: int
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class OrderStatusChanged(Event):
    name = "order.status_updated"

    order_id: int
    buyer_id: int
    supplier_ids: tuple[int, ...]
    order_number: str
    from_status: str
    to_status: str
    actor_id: int
    reason: str | None
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class StockChanged(Event):
    name = "stock.changed"

    product_id: int
    supplier_id: int
    old_qty: Decimal
    new_qty: Decimal
    reason: str | None
    occurred_at: datetime = field(default_factory=_now)


Handler = Callable[[Event], None]


class EventBus:
    """
    Bus synchrone, instancié explicitement (pas d'état global de module).
    Un abonné à Event reçoit tout.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[Event], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type[Event], handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def _handlers_for(self, event: Event) -> list[Handler]:
        handlers: list[Handler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._handlers.get(event_type, ()))
        return handlers

    def publish(self, event: Event) -> None:
        for handler in self._handlers_for(event):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.name)

    def publish_all(self, events: Iterable[Event]) -> None:
        for event in events:
            self.publish(event)


def publish(bus: EventBus | None, *events: Event) -> None:
    if bus is None:
        return
    bus.publish_all(events)
