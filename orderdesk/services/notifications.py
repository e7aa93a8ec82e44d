"""
Diffusion temps réel des events commandes / stock.

Abonné du bus d'events : calcule les "rooms" destinataires et délègue l'envoi
à un callable injecté (passerelle websocket, file de messages...). Le coeur
n'appelle jamais directement la couche socket.

Rooms :
    user-<id>    acheteur et fournisseurs concernés
    role-admin   tous les administrateurs
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from orderdesk.services.events import (
    Event,
    EventBus,
    OrderCreated,
    OrderStatusChanged,
    StockChanged,
)

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, dict[str, Any]], None]

ADMIN_ROOM = "role-admin"


def user_room(user_id: int) -> str:
    return f"user-{user_id}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    return value


def event_payload(event: Event) -> dict[str, Any]:
    return {key: _jsonable(value) for key, value in asdict(event).items()}


def rooms_for(event: Event) -> list[str]:
    rooms: list[str] = []
    if isinstance(event, (OrderCreated, OrderStatusChanged)):
        rooms.append(user_room(event.buyer_id))
        rooms.extend(user_room(sid) for sid in event.supplier_ids)
    elif isinstance(event, StockChanged):
        rooms.append(user_room(event.supplier_id))
    rooms.append(ADMIN_ROOM)
    # dédoublonnage en gardant l'ordre
    return list(dict.fromkeys(rooms))


class OrderNotifier:
    def __init__(self, send: Sender):
        self._send = send

    def __call__(self, event: Event) -> None:
        payload = event_payload(event)
        for room in rooms_for(event):
            self._send(room, event.name, payload)
        logger.debug("Broadcast %s to %s", event.name, rooms_for(event))

    def attach(self, bus: EventBus) -> "OrderNotifier":
        for event_type in (OrderCreated, OrderStatusChanged, StockChanged):
            bus.subscribe(event_type, self)
        return self


def logging_sender(room: str, message: str, payload: dict[str, Any]) -> None:
    """Transport par défaut : journalise seulement (la passerelle websocket s'y substitue)."""
    logger.info("notify room=%s message=%s payload=%s", room, message, payload)
