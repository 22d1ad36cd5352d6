"""
Turn state machine.

    waiting ──complete──> completed
       │
       └──cancel──> cancelled <──cancel (admin only)── confirmed

`confirmed` is kept in the table although nothing drives a turn into it yet;
a future "confirm" operation would add waiting -> confirmed here.

Functions in this module only mutate the Turn object in memory. Persisting
the change and renumbering the waiting set is the caller's job, inside one
QueueTransaction.
"""

import logging
from datetime import datetime

from database.models import CancelledBy, Turn, TurnStatus, utcnow
from queue_engine.errors import InvalidTransition

logger = logging.getLogger(__name__)

# (action, who) -> statuses the action is legal from
TRANSITIONS: dict[tuple[str, CancelledBy | None], frozenset[TurnStatus]] = {
    ("complete", None): frozenset({TurnStatus.WAITING}),
    ("cancel", CancelledBy.CUSTOMER): frozenset({TurnStatus.WAITING}),
    ("cancel", CancelledBy.ADMIN): frozenset({TurnStatus.WAITING, TurnStatus.CONFIRMED}),
}


def allowed_from(action: str, by: CancelledBy | None = None) -> frozenset[TurnStatus]:
    return TRANSITIONS[(action, by)]


def ensure_transition(turn: Turn, action: str, by: CancelledBy | None = None) -> None:
    """Raise InvalidTransition when `action` is not legal from the turn's status."""
    legal = allowed_from(action, by)
    if turn.status not in legal:
        raise InvalidTransition(
            f"Cannot {action} a turn in status '{turn.status.value}'",
            turn_id=str(turn.id),
            current_status=turn.status.value,
            action=action,
            allowed_from=sorted(s.value for s in legal),
        )


def complete(turn: Turn, now: datetime | None = None) -> Turn:
    ensure_transition(turn, "complete")
    turn.status = TurnStatus.COMPLETED
    turn.completed_at = now or utcnow()
    logger.info(
        "Turn completed",
        extra={"turn_id": str(turn.id), "turn_number": turn.turn_number},
    )
    return turn


def cancel(turn: Turn, by: CancelledBy, now: datetime | None = None) -> Turn:
    ensure_transition(turn, "cancel", by)
    turn.status = TurnStatus.CANCELLED
    turn.cancelled_at = now or utcnow()
    turn.cancelled_by = by
    logger.info(
        f"Turn cancelled by {by.value}",
        extra={"turn_id": str(turn.id), "turn_number": turn.turn_number},
    )
    return turn
