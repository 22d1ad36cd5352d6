"""Unit tests for the turn state machine."""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from database.models import CancelledBy, ServiceType, Turn, TurnStatus
from queue_engine import state_machine
from queue_engine.errors import InvalidTransition

NOW = datetime(2026, 3, 14, 10, 30, tzinfo=UTC)


def make_turn(status: TurnStatus) -> Turn:
    return Turn(
        id=uuid4(),
        customer_name="Ahmed",
        mobile_number="0555000111",
        service_type=ServiceType.HAIRCUT,
        turn_number=1,
        status=status,
    )


class TestComplete:
    def test_waiting_to_completed(self):
        turn = make_turn(TurnStatus.WAITING)

        state_machine.complete(turn, now=NOW)

        assert turn.status == TurnStatus.COMPLETED
        assert turn.completed_at == NOW
        assert turn.cancelled_at is None

    @pytest.mark.parametrize(
        "status", [TurnStatus.CONFIRMED, TurnStatus.COMPLETED, TurnStatus.CANCELLED]
    )
    def test_complete_only_from_waiting(self, status):
        """Test that any other status is rejected without touching the turn."""
        turn = make_turn(status)

        with pytest.raises(InvalidTransition) as exc_info:
            state_machine.complete(turn, now=NOW)

        assert turn.status == status
        assert turn.completed_at is None
        assert exc_info.value.details["allowed_from"] == ["waiting"]


class TestCancel:
    def test_customer_cancels_waiting(self):
        turn = make_turn(TurnStatus.WAITING)

        state_machine.cancel(turn, CancelledBy.CUSTOMER, now=NOW)

        assert turn.status == TurnStatus.CANCELLED
        assert turn.cancelled_at == NOW
        assert turn.cancelled_by == CancelledBy.CUSTOMER

    def test_customer_cannot_cancel_confirmed(self):
        turn = make_turn(TurnStatus.CONFIRMED)

        with pytest.raises(InvalidTransition):
            state_machine.cancel(turn, CancelledBy.CUSTOMER, now=NOW)

        assert turn.status == TurnStatus.CONFIRMED
        assert turn.cancelled_by is None

    @pytest.mark.parametrize("status", [TurnStatus.WAITING, TurnStatus.CONFIRMED])
    def test_admin_cancels_active(self, status):
        turn = make_turn(status)

        state_machine.cancel(turn, CancelledBy.ADMIN, now=NOW)

        assert turn.status == TurnStatus.CANCELLED
        assert turn.cancelled_by == CancelledBy.ADMIN

    @pytest.mark.parametrize("by", [CancelledBy.CUSTOMER, CancelledBy.ADMIN])
    @pytest.mark.parametrize("status", [TurnStatus.COMPLETED, TurnStatus.CANCELLED])
    def test_terminal_turns_cannot_be_cancelled(self, status, by):
        turn = make_turn(status)

        with pytest.raises(InvalidTransition):
            state_machine.cancel(turn, by, now=NOW)

        assert turn.status == status
        assert turn.cancelled_at is None


def test_allowed_from_table():
    assert state_machine.allowed_from("complete") == {TurnStatus.WAITING}
    assert state_machine.allowed_from("cancel", CancelledBy.CUSTOMER) == {TurnStatus.WAITING}
    assert state_machine.allowed_from("cancel", CancelledBy.ADMIN) == {
        TurnStatus.WAITING,
        TurnStatus.CONFIRMED,
    }
