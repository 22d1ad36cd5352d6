"""
Turn service - the operations of the walk-in queue.

Every queue mutation follows the same two-phase shape inside one
QueueTransaction:
1. Load the turn and apply the state transition (or insert the new turn)
2. Flush, then renumber the waiting set when a turn left it

Reads go through QueueTransaction.read (store timeout only).

Admin-only operations take an Actor and check its capability explicitly.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    ACTIVE_STATUSES,
    CancelledBy,
    ServiceType,
    Turn,
    TurnStatus,
    utcnow,
)
from queue_engine import state_machine
from queue_engine.actors import ANONYMOUS, Actor, require_admin
from queue_engine.errors import DuplicateActiveTurn, NotFound, ValidationError
from queue_engine.numbering import next_turn_number, renumber_waiting_turns
from queue_engine.presentation import as_utc
from queue_engine.transactions.queue_transaction import QueueTransaction
from queue_engine.validators import NOTES_MAX_LENGTH, normalize_mobile, parse_service_type
from shared.config import get_settings

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Turn.created_at,
    "turn_number": Turn.turn_number,
    "completed_at": Turn.completed_at,
    "cancelled_at": Turn.cancelled_at,
}
MAX_PAGE_SIZE = 100


@dataclass
class QueueStats:
    waiting_count: int
    average_wait_minutes: int
    estimated_wait_minutes: int


@dataclass
class TurnPage:
    turns: list[Turn]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit)


def _parse_turn_id(turn_id: UUID | str) -> UUID:
    if isinstance(turn_id, UUID):
        return turn_id
    try:
        return UUID(str(turn_id))
    except ValueError:
        raise NotFound(f"Turn {turn_id} not found", turn_id=str(turn_id)) from None


class TurnService:
    """Queue engine entry point used by the API routes."""

    def __init__(self, transaction: QueueTransaction | None = None) -> None:
        self.transaction = transaction or QueueTransaction()

    # =========================================================================
    # Customer operations
    # =========================================================================

    async def create_turn(
        self,
        customer_name: str,
        mobile_number: str,
        service_type: ServiceType | str,
        actor: Actor = ANONYMOUS,
    ) -> Turn:
        """
        Book a new turn at the end of the waiting set.

        Raises:
            ValidationError: unknown service type
            DuplicateActiveTurn: the mobile number already has a waiting/confirmed turn
        """
        service = parse_service_type(service_type)
        mobile = normalize_mobile(mobile_number)
        name = customer_name.strip()

        async def work(session: AsyncSession) -> Turn:
            existing = await self._find_active(session, mobile)
            if existing is not None:
                logger.warning(
                    "Rejected booking: mobile already has an active turn",
                    extra={"customer_mobile": mobile, "turn_id": str(existing.id)},
                )
                raise DuplicateActiveTurn(
                    "Customer already has an active turn",
                    turn_id=str(existing.id),
                    turn_number=existing.turn_number,
                )

            now = utcnow()
            turn = Turn(
                customer_name=name,
                mobile_number=mobile,
                service_type=service,
                turn_number=await next_turn_number(session),
                status=TurnStatus.WAITING,
                completed_at=None,
                cancelled_at=None,
                cancelled_by=None,
                notes=None,
                created_at=now,
                updated_at=now,
            )
            session.add(turn)
            await session.flush()
            return turn

        turn = await self.transaction.run(work, operation="create_turn")
        logger.info(
            f"Turn #{turn.turn_number} created",
            extra={
                "turn_id": str(turn.id),
                "turn_number": turn.turn_number,
                "customer_mobile": mobile,
                "actor_role": actor.role.value,
            },
        )
        return turn

    async def get_by_identity(self, mobile_number: str) -> Turn:
        """Most recent turn for a mobile number, whatever its status."""
        mobile = normalize_mobile(mobile_number)

        async def work(session: AsyncSession) -> Turn | None:
            result = await session.execute(
                select(Turn)
                .where(Turn.mobile_number == mobile)
                .order_by(Turn.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

        turn = await self.transaction.read(work, operation="get_by_identity")
        if turn is None:
            raise NotFound("No turn found for this mobile number", mobile_number=mobile)
        return turn

    async def cancel_by_identity(self, mobile_number: str) -> Turn:
        """
        Customer self-cancellation of their active turn.

        Raises:
            NotFound: no waiting/confirmed turn for the mobile number
            InvalidTransition: the active turn is confirmed (customers may only cancel waiting turns)
        """
        mobile = normalize_mobile(mobile_number)

        async def work(session: AsyncSession) -> Turn:
            turn = await self._find_active(session, mobile, for_update=True)
            if turn is None:
                raise NotFound("No active turn found for this mobile number", mobile_number=mobile)
            state_machine.cancel(turn, CancelledBy.CUSTOMER)
            await session.flush()
            await renumber_waiting_turns(session)
            return turn

        return await self.transaction.run(work, operation="cancel_by_identity")

    # =========================================================================
    # Public reads
    # =========================================================================

    async def get_by_id(self, turn_id: UUID | str) -> Turn:
        tid = _parse_turn_id(turn_id)

        async def work(session: AsyncSession) -> Turn | None:
            return await session.get(Turn, tid)

        turn = await self.transaction.read(work, operation="get_by_id")
        if turn is None:
            raise NotFound(f"Turn {tid} not found", turn_id=str(tid))
        return turn

    async def list_waiting(self) -> list[Turn]:
        """Waiting turns in queue order."""

        async def work(session: AsyncSession) -> list[Turn]:
            result = await session.execute(
                select(Turn)
                .where(Turn.status == TurnStatus.WAITING)
                .order_by(Turn.turn_number.asc())
            )
            return list(result.scalars().all())

        return await self.transaction.read(work, operation="list_waiting")

    async def get_stats(self) -> QueueStats:
        """
        Queue statistics.

        average_wait_minutes is the floored mean of (completed_at - created_at)
        over all completed turns, 0 when none has completed yet.
        """

        async def work(session: AsyncSession) -> tuple[int, list[tuple]]:
            waiting = await session.execute(
                select(func.count()).select_from(Turn).where(Turn.status == TurnStatus.WAITING)
            )
            completed = await session.execute(
                select(Turn.created_at, Turn.completed_at).where(
                    Turn.status == TurnStatus.COMPLETED,
                    Turn.completed_at.is_not(None),
                )
            )
            return waiting.scalar_one(), list(completed.all())

        waiting_count, completed = await self.transaction.read(work, operation="get_stats")

        average = 0
        if completed:
            total = sum(
                (as_utc(done) - as_utc(created) for created, done in completed),
                timedelta(),
            )
            average = total // (len(completed) * timedelta(minutes=1))

        return QueueStats(
            waiting_count=waiting_count,
            average_wait_minutes=average,
            estimated_wait_minutes=waiting_count * get_settings().MINUTES_PER_CUSTOMER,
        )

    # =========================================================================
    # Admin operations
    # =========================================================================

    async def complete_turn(self, turn_id: UUID | str, actor: Actor) -> Turn:
        """
        Mark a waiting turn as served and close the gap it leaves.

        Raises:
            PermissionDenied, NotFound, InvalidTransition
        """
        require_admin(actor, "complete_turn")
        tid = _parse_turn_id(turn_id)

        async def work(session: AsyncSession) -> Turn:
            turn = await self._load(session, tid)
            state_machine.complete(turn)
            await session.flush()
            await renumber_waiting_turns(session)
            return turn

        return await self.transaction.run(work, operation="complete_turn")

    async def cancel_turn(self, turn_id: UUID | str, actor: Actor) -> Turn:
        """
        Admin cancellation of a waiting (or confirmed) turn.

        Raises:
            PermissionDenied, NotFound, InvalidTransition
        """
        require_admin(actor, "cancel_turn")
        tid = _parse_turn_id(turn_id)

        async def work(session: AsyncSession) -> Turn:
            turn = await self._load(session, tid)
            state_machine.cancel(turn, CancelledBy.ADMIN)
            await session.flush()
            await renumber_waiting_turns(session)
            return turn

        return await self.transaction.run(work, operation="cancel_turn")

    async def update_notes(self, turn_id: UUID | str, notes: str | None, actor: Actor) -> Turn:
        """Replace a turn's notes; allowed in any status."""
        require_admin(actor, "update_notes")
        tid = _parse_turn_id(turn_id)
        value = notes.strip() if notes else None
        if value and len(value) > NOTES_MAX_LENGTH:
            raise ValidationError(
                f"notes must be at most {NOTES_MAX_LENGTH} characters",
                field="notes",
            )

        async def work(session: AsyncSession) -> Turn:
            turn = await self._load(session, tid)
            turn.notes = value or None
            await session.flush()
            return turn

        turn = await self.transaction.run(work, operation="update_notes")
        logger.info("Turn notes updated", extra={"turn_id": str(turn.id)})
        return turn

    async def renumber(self, actor: Actor) -> int:
        """Relabel the waiting set 1..N; returns how many turns changed number."""
        require_admin(actor, "renumber")
        return await self.transaction.run(renumber_waiting_turns, operation="renumber")

    async def list_turns(
        self,
        actor: Actor,
        status: TurnStatus | str | None = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> TurnPage:
        """Paginated history of all turns, optionally filtered by status."""
        require_admin(actor, "list_turns")

        if status is not None and not isinstance(status, TurnStatus):
            try:
                status = TurnStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status!r}", field="status") from None
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by!r}", field="sort_by")
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"Invalid sort order {sort_order!r}", field="sort_order")
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("Invalid pagination", page=page, limit=limit)

        column = SORTABLE_FIELDS[sort_by]
        order = desc(column) if sort_order == "desc" else asc(column)

        async def work(session: AsyncSession) -> tuple[list[Turn], int]:
            query = select(Turn)
            count_query = select(func.count()).select_from(Turn)
            if status is not None:
                query = query.where(Turn.status == status)
                count_query = count_query.where(Turn.status == status)

            result = await session.execute(
                query.order_by(order, Turn.id).offset((page - 1) * limit).limit(limit)
            )
            total = await session.execute(count_query)
            return list(result.scalars().all()), total.scalar_one()

        turns, total = await self.transaction.read(work, operation="list_turns")
        return TurnPage(turns=turns, page=page, limit=limit, total=total)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _find_active(
        self, session: AsyncSession, mobile: str, for_update: bool = False
    ) -> Turn | None:
        query = (
            select(Turn)
            .where(Turn.mobile_number == mobile, Turn.status.in_(ACTIVE_STATUSES))
            .order_by(Turn.created_at.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _load(self, session: AsyncSession, turn_id: UUID) -> Turn:
        result = await session.execute(
            select(Turn).where(Turn.id == turn_id).with_for_update()
        )
        turn = result.scalar_one_or_none()
        if turn is None:
            raise NotFound(f"Turn {turn_id} not found", turn_id=str(turn_id))
        return turn
