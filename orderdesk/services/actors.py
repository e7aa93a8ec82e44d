"""
Contexte acteur résolu par la couche d'authentification.

Le coeur ne fait aucune authentification : il reçoit {actor_id, role}
et applique des vérifications de capacité explicites.
"""

from __future__ import annotations

from dataclasses import dataclass

from orderdesk.app.db.models.core_types import Role
from orderdesk.services.exceptions import AccessDenied


@dataclass(frozen=True)
class ActorContext:
    actor_id: int
    role: Role

    @classmethod
    def of(cls, user) -> "ActorContext":
        return cls(actor_id=int(user.id), role=Role(user.role))


def require_role(actor: ActorContext, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise AccessDenied(f"Role {actor.role.value} not allowed (requires {allowed})")
