"""
Turn number assignment and renumbering.

Turn numbers are scoped to the live waiting set: a new turn gets
max(waiting) + 1, and whenever a turn leaves the waiting set the remaining
ones are relabelled 1..N in arrival order. Numbers are therefore reused as
the queue drains; customers never see an ever-growing counter.

Both functions must run inside a QueueTransaction so they are serialized
against each other.
"""

import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Turn, TurnStatus

logger = logging.getLogger(__name__)


async def next_turn_number(session: AsyncSession) -> int:
    """Return 1 + the highest waiting turn number, or 1 when nobody waits."""
    result = await session.execute(
        select(func.max(Turn.turn_number)).where(Turn.status == TurnStatus.WAITING)
    )
    current_max = result.scalar_one_or_none()
    return (current_max or 0) + 1


async def renumber_waiting_turns(session: AsyncSession) -> int:
    """
    Relabel waiting turns 1, 2, 3, ... by created_at (ties keep their current order).

    Rows already carrying the right number are left alone, which makes a
    second run a no-op. The others are first parked above the current
    maximum and then moved to their position, so the partial unique index
    on waiting turn numbers holds after every statement even when the stale
    labels are out of arrival order.

    Returns:
        Number of turns whose number changed
    """
    result = await session.execute(
        select(Turn.id, Turn.turn_number)
        .where(Turn.status == TurnStatus.WAITING)
        .order_by(Turn.created_at.asc(), Turn.turn_number.asc())
    )
    rows = result.all()

    moves = [
        (turn_id, position)
        for position, (turn_id, turn_number) in enumerate(rows, start=1)
        if turn_number != position
    ]
    if not moves:
        return 0

    parking = max(turn_number for _, turn_number in rows)
    for turn_id, position in moves:
        await _set_turn_number(session, turn_id, parking + position)
    for turn_id, position in moves:
        await _set_turn_number(session, turn_id, position)

    logger.info(f"Renumbered {len(moves)} of {len(rows)} waiting turns")
    return len(moves)


async def _set_turn_number(session: AsyncSession, turn_id, number: int) -> None:
    await session.execute(
        update(Turn)
        .where(Turn.id == turn_id)
        .values(turn_number=number)
        .execution_options(synchronize_session="fetch")
    )
