"""
Unit tests for queue_transaction.py - serialization, retry and timeout handling.

Tests coverage:
- Commit on success, rollback on any error
- Unique violations / serialization failures retried, then CONCURRENCY_CONFLICT
- CHECK violations fail at once as VALIDATION_ERROR
- A cancelled caller does not abort the unit, and its outcome is logged
- Engine errors are never retried
- Timeouts and connection faults surface as STORAGE_UNAVAILABLE
- Store-level uniqueness backs the queue invariants
"""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from database.models import ServiceType, Turn, TurnStatus
from queue_engine.errors import ConcurrencyConflict, NotFound, StorageUnavailable, ValidationError
from queue_engine.transactions import QueueTransaction
from queue_engine.transactions.queue_transaction import is_conflict, is_storage_fault


def make_turn(number: int, mobile: str, status: TurnStatus = TurnStatus.WAITING) -> Turn:
    return Turn(
        customer_name="Test",
        mobile_number=mobile,
        service_type=ServiceType.HAIRCUT,
        turn_number=number,
        status=status,
    )


async def count_turns(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Turn))).scalar_one()


def integrity_error() -> IntegrityError:
    return IntegrityError("INSERT INTO turns ...", {}, Exception("UNIQUE constraint failed"))


def check_violation() -> IntegrityError:
    return IntegrityError("UPDATE turns ...", {}, Exception("CHECK constraint failed: check_turn_notes_length"))


class FakeSerializationFailure(Exception):
    sqlstate = "40001"


class FakeDeadlock(Exception):
    sqlstate = "40P01"


class FakeUniqueViolation(Exception):
    sqlstate = "23505"


class FakeCheckViolation(Exception):
    sqlstate = "23514"


# ============================================================================
# Commit / rollback
# ============================================================================


class TestCommitAndRollback:
    """Test transaction boundaries."""

    @pytest.mark.asyncio
    async def test_work_result_is_committed(self, queue_transaction, session_factory):
        async def work(session):
            turn = make_turn(1, "0555000001")
            session.add(turn)
            await session.flush()
            return turn

        turn = await queue_transaction.run(work, operation="test_insert")

        assert turn.id is not None
        assert await count_turns(session_factory) == 1

    @pytest.mark.asyncio
    async def test_engine_error_rolls_back_and_is_not_retried(self, queue_transaction, session_factory):
        """Test that a TurnQueueError raised mid-work undoes earlier writes in the unit."""
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            session.add(make_turn(1, "0555000001"))
            await session.flush()
            raise NotFound("missing")

        with pytest.raises(NotFound):
            await queue_transaction.run(work, operation="test_rollback")

        assert calls == 1
        assert await count_turns(session_factory) == 0


# ============================================================================
# Retry
# ============================================================================


class TestRetry:
    """Test conflict retries."""

    @pytest.mark.asyncio
    async def test_conflict_then_success(self, queue_transaction):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise integrity_error()
            return "ok"

        assert await queue_transaction.run(work, operation="test_retry") == "ok"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_concurrency_conflict(self, queue_transaction):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            raise integrity_error()

        with pytest.raises(ConcurrencyConflict) as exc_info:
            await queue_transaction.run(work, operation="test_exhausted")

        assert calls == 3
        assert exc_info.value.retryable is True
        assert exc_info.value.details["attempts"] == 3

    @pytest.mark.asyncio
    async def test_real_unique_violation_is_retried(self, queue_transaction, session_factory):
        """Test that the partial unique index on waiting numbers triggers the retry path."""
        async with session_factory() as session:
            async with session.begin():
                session.add(make_turn(1, "0555000001"))

        async def work(session):
            session.add(make_turn(1, "0555000002"))
            await session.flush()

        with pytest.raises(ConcurrencyConflict):
            await queue_transaction.run(work, operation="test_unique")

        assert await count_turns(session_factory) == 1

    @pytest.mark.asyncio
    async def test_check_violation_fails_once_as_validation_error(self, queue_transaction, session_factory):
        """Test that a CHECK constraint failure is reported at once instead of retried."""
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            session.add(make_turn(0, "0555000001"))
            await session.flush()

        with pytest.raises(ValidationError) as exc_info:
            await queue_transaction.run(work, operation="test_check")

        assert calls == 1
        assert exc_info.value.retryable is False
        assert exc_info.value.details["operation"] == "test_check"
        assert await count_turns(session_factory) == 0

    @pytest.mark.asyncio
    async def test_notes_length_constraint_is_not_a_conflict(self, queue_transaction, session_factory):
        async with session_factory() as session:
            async with session.begin():
                turn = make_turn(1, "0555000001")
                session.add(turn)
                await session.flush()
                turn_id = turn.id

        async def work(session):
            stored = await session.get(Turn, turn_id)
            stored.notes = "x" * 600
            await session.flush()

        with pytest.raises(ValidationError):
            await queue_transaction.run(work, operation="update_notes")


# ============================================================================
# Caller cancellation
# ============================================================================


class TestCallerCancellation:
    """Test that a unit outlives a cancelled caller and reports how it ended."""

    @pytest.mark.asyncio
    async def test_unit_commits_after_caller_is_cancelled(self, queue_transaction, session_factory, caplog):
        started = asyncio.Event()
        release = asyncio.Event()

        async def work(session):
            started.set()
            await release.wait()
            session.add(make_turn(1, "0555000001"))
            await session.flush()

        with caplog.at_level(logging.INFO, logger="queue_engine.transactions.queue_transaction"):
            caller = asyncio.create_task(queue_transaction.run(work, operation="test_detached"))
            await started.wait()
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller

            release.set()
            for _ in range(100):
                if "test_detached committed after its caller went away" in caplog.text:
                    break
                await asyncio.sleep(0.01)

        assert "test_detached committed after its caller went away" in caplog.text
        assert await count_turns(session_factory) == 1

    @pytest.mark.asyncio
    async def test_failure_after_caller_is_cancelled_is_logged(self, queue_transaction, caplog):
        """Test that an error nobody awaits still reaches the log."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def work(session):
            started.set()
            await release.wait()
            raise NotFound("missing")

        with caplog.at_level(logging.ERROR, logger="queue_engine.transactions.queue_transaction"):
            caller = asyncio.create_task(queue_transaction.run(work, operation="test_detached_fail"))
            await started.wait()
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller

            release.set()
            for _ in range(100):
                if "test_detached_fail failed after its caller went away" in caplog.text:
                    break
                await asyncio.sleep(0.01)

        assert "test_detached_fail failed after its caller went away: NotFound: missing" in caplog.text


# ============================================================================
# Storage faults
# ============================================================================


class TestStorageFaults:
    """Test timeout and connection failure mapping."""

    @pytest.mark.asyncio
    async def test_timeout_raises_storage_unavailable(self, session_factory):
        tx = QueueTransaction(session_factory, timeout_seconds=0.05, max_attempts=3)

        async def work(session):
            await asyncio.sleep(1)

        with pytest.raises(StorageUnavailable) as exc_info:
            await tx.run(work, operation="test_timeout")

        assert exc_info.value.error_code == "STORAGE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_read_timeout_raises_storage_unavailable(self, session_factory):
        tx = QueueTransaction(session_factory, timeout_seconds=0.05, max_attempts=3)

        async def work(session):
            await asyncio.sleep(1)

        with pytest.raises(StorageUnavailable):
            await tx.read(work, operation="test_read_timeout")

    @pytest.mark.asyncio
    async def test_operational_error_raises_storage_unavailable(self, queue_transaction):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(StorageUnavailable):
            await queue_transaction.run(work, operation="test_fault")

        assert calls == 1

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, queue_transaction):
        async def failing(session):
            raise NotFound("missing")

        async def succeeding(session):
            return 42

        with pytest.raises(NotFound):
            await queue_transaction.run(failing, operation="test_fail")

        assert await queue_transaction.run(succeeding, operation="test_ok") == 42


# ============================================================================
# Classification helpers
# ============================================================================


class TestClassification:
    def test_integrity_error_is_conflict(self):
        assert is_conflict(integrity_error())

    def test_serialization_failure_is_conflict(self):
        exc = DBAPIError("UPDATE turns ...", {}, FakeSerializationFailure())
        assert is_conflict(exc)

    def test_deadlock_is_conflict(self):
        assert is_conflict(DBAPIError("UPDATE turns ...", {}, FakeDeadlock()))

    def test_postgres_unique_violation_is_conflict(self):
        assert is_conflict(IntegrityError("INSERT INTO turns ...", {}, FakeUniqueViolation()))

    def test_check_violation_is_not_conflict(self):
        assert not is_conflict(check_violation())
        assert not is_conflict(IntegrityError("UPDATE turns ...", {}, FakeCheckViolation()))

    def test_not_null_violation_is_not_conflict(self):
        exc = IntegrityError("INSERT INTO turns ...", {}, Exception("NOT NULL constraint failed: turns.customer_name"))
        assert not is_conflict(exc)

    def test_other_errors_are_not_conflicts(self):
        assert not is_conflict(ValueError("nope"))
        assert not is_conflict(NotFound("missing"))

    def test_operational_error_is_storage_fault(self):
        assert is_storage_fault(OperationalError("SELECT 1", {}, Exception("down")))

    def test_invalidated_connection_is_storage_fault(self):
        exc = DBAPIError("SELECT 1", {}, Exception("reset"), connection_invalidated=True)
        assert is_storage_fault(exc)

    def test_os_error_is_storage_fault(self):
        assert is_storage_fault(ConnectionRefusedError())
        assert not is_storage_fault(MagicMock())
