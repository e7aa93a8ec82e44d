from __future__ import annotations

from typing import Generator

from fastapi import Header, HTTPException, Request

from orderdesk.app.db.models.core_types import Role
from orderdesk.app.db.session import SessionLocal
from orderdesk.services.actors import ActorContext
from orderdesk.services.events import EventBus


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    actor_id: int | None = Header(default=None, alias="X-Actor-Id"),
    actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> ActorContext:
    """
    L'authentification est faite en amont (gateway) : on reçoit ici
    l'identité déjà résolue.
    """
    if actor_id is None or not actor_role:
        raise HTTPException(status_code=401, detail="Missing actor context")
    try:
        role = Role(actor_role.strip().upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {actor_role}") from None
    return ActorContext(actor_id=actor_id, role=role)


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus
