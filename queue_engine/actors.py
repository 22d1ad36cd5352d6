"""Actors handed to the engine by the access layer, and capability checks."""

from dataclasses import dataclass
from enum import Enum as PyEnum

from queue_engine.errors import PermissionDenied


class ActorRole(str, PyEnum):
    ADMIN = "admin"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Actor:
    """
    Who is calling an engine operation.

    The engine trusts the role it is given; verifying it (JWT, cookies)
    is the API layer's job.
    """

    role: ActorRole
    username: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


ANONYMOUS = Actor(role=ActorRole.ANONYMOUS)


def admin_actor(username: str | None = None) -> Actor:
    return Actor(role=ActorRole.ADMIN, username=username)


def require_admin(actor: Actor, operation: str) -> None:
    """Raise PermissionDenied unless the actor may run an admin-only operation."""
    if not actor.is_admin:
        raise PermissionDenied(
            f"Operation '{operation}' requires an admin actor",
            operation=operation,
            actor_role=actor.role.value,
        )
