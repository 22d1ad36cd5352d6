"""
Turn queue engine.

Owns every write to the `turns` table: booking, completion, cancellation,
notes and renumbering of the waiting set. The API layer calls TurnService
and maps TurnQueueError codes to HTTP responses.
"""

from queue_engine.actors import ANONYMOUS, Actor, ActorRole, admin_actor
from queue_engine.errors import (
    ConcurrencyConflict,
    DuplicateActiveTurn,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StorageUnavailable,
    TurnQueueError,
    ValidationError,
)
from queue_engine.services.turn_service import QueueStats, TurnPage, TurnService

__all__ = [
    # Actors
    "ANONYMOUS",
    "Actor",
    "ActorRole",
    "admin_actor",
    # Errors
    "ConcurrencyConflict",
    "DuplicateActiveTurn",
    "InvalidTransition",
    "NotFound",
    "PermissionDenied",
    "StorageUnavailable",
    "TurnQueueError",
    "ValidationError",
    # Service
    "QueueStats",
    "TurnPage",
    "TurnService",
]
