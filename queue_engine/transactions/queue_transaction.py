"""
Queue Transaction - the unit of isolation for every queue mutation.

A queue mutation (create, complete, cancel, renumber, notes) runs as:
1. Acquire the in-process queue lock (serializes handlers in this worker)
2. Open one database transaction
3. On PostgreSQL, take a transaction-scoped advisory lock before any read,
   so every read in the unit sees all previously committed queue mutations
   (serializes handlers across workers)
4. Run the work callable (state transition + renumbering)
5. Commit, or roll back everything on any error

The partial unique indexes on `turns` back this up: a unique violation or a
serialization failure rolls the attempt back and the whole unit is retried
with exponential backoff (tenacity). When attempts run out the caller gets
ConcurrencyConflict. Any other constraint violation is a ValidationError and
is not retried. Mutations run at READ COMMITTED; the advisory lock is what
serializes them. Every attempt is bounded by STORE_TIMEOUT_SECONDS;
expiry and connection faults surface as StorageUnavailable.

The unit is shielded from caller cancellation once started: a client that
disconnects mid-request never leaves a transition without its renumbering.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from queue_engine.errors import ConcurrencyConflict, StorageUnavailable, ValidationError
from shared.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Key for pg_advisory_xact_lock; any constant shared by all workers
QUEUE_ADVISORY_LOCK_KEY = 7_347_001

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

UNIQUE_VIOLATION_SQLSTATE = "23505"


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) == UNIQUE_VIOLATION_SQLSTATE:
        return True
    # sqlite3 carries no SQLSTATE
    return "UNIQUE constraint failed" in str(exc.orig)


def is_conflict(exc: BaseException) -> bool:
    """True for errors caused by a concurrent queue mutation (worth retrying).

    Only unique violations count among integrity errors; CHECK and NOT NULL
    violations fail the same way on every attempt.
    """
    if isinstance(exc, IntegrityError):
        return is_unique_violation(exc)
    if isinstance(exc, DBAPIError):
        return _sqlstate(exc) in RETRYABLE_SQLSTATES
    return False


def is_storage_fault(exc: BaseException) -> bool:
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))
    return isinstance(exc, (OSError, ConnectionError))


def _log_detached_outcome(operation: str) -> Callable[[asyncio.Future], None]:
    """Done-callback that logs how a unit ended once nobody awaits it."""

    def callback(task: asyncio.Future) -> None:
        if task.cancelled():
            logger.warning(f"{operation} was cancelled before completing")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{operation} failed after its caller went away: {type(exc).__name__}: {exc}")
        else:
            logger.info(f"{operation} committed after its caller went away")

    return callback


class QueueTransaction:
    """
    Runs queue work under the queue lock inside a single DB transaction.

    Example:
        >>> tx = QueueTransaction()
        >>> turn = await tx.run(lambda session: create(session, ...), operation="create_turn")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        settings = get_settings()
        if session_factory is None:
            from database.connection import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.STORE_TIMEOUT_SECONDS
        )
        self.max_attempts = max_attempts or settings.QUEUE_RETRY_ATTEMPTS
        self._lock = asyncio.Lock()

    async def run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation: str,
    ) -> T:
        """
        Execute a queue mutation with serialization, retry and timeout.

        Raises:
            TurnQueueError subclasses raised by `work` (never retried)
            ConcurrencyConflict: retries exhausted
            StorageUnavailable: timeout or connection fault
        """
        task = asyncio.ensure_future(self._run_with_retry(work, operation))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Caller is gone; the unit keeps running and nobody awaits it
            task.add_done_callback(_log_detached_outcome(operation))
            raise

    async def read(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation: str,
    ) -> T:
        """Execute a read-only query with the store timeout (no lock, no retry)."""
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with self.session_factory() as session:
                    return await work(session)
        except TimeoutError as e:
            raise self._timeout_error(operation) from e
        except (DBAPIError, OSError) as e:
            if is_storage_fault(e):
                raise self._fault_error(operation, e) from e
            raise

    async def _run_with_retry(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        operation: str,
    ) -> T:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
                retry=retry_if_exception(is_conflict),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"Retrying {operation} after concurrent conflict "
                            f"(attempt {attempt.retry_state.attempt_number}/{self.max_attempts})"
                        )
                    return await self._attempt(work, operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"{operation} failed: concurrency retries exhausted: {last_error}")
            raise ConcurrencyConflict(
                f"{operation} could not be serialized after {self.max_attempts} attempts",
                operation=operation,
                attempts=self.max_attempts,
            ) from last_error

    async def _attempt(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        operation: str,
    ) -> T:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with self._lock:
                    async with self.session_factory() as session:
                        async with session.begin():
                            await self._acquire_store_lock(session)
                            return await work(session)
        except TimeoutError as e:
            raise self._timeout_error(operation) from e
        except (DBAPIError, OSError) as e:
            if is_conflict(e):
                raise
            if isinstance(e, IntegrityError):
                raise self._constraint_error(operation, e) from e
            if is_storage_fault(e):
                raise self._fault_error(operation, e) from e
            raise

    async def _acquire_store_lock(self, session: AsyncSession) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": QUEUE_ADVISORY_LOCK_KEY},
        )

    def _timeout_error(self, operation: str) -> StorageUnavailable:
        logger.error(f"{operation} timed out after {self.timeout_seconds}s")
        return StorageUnavailable(
            f"{operation} timed out after {self.timeout_seconds}s",
            operation=operation,
            timeout_seconds=self.timeout_seconds,
        )

    def _constraint_error(self, operation: str, exc: IntegrityError) -> ValidationError:
        logger.warning(f"{operation} rejected by a table constraint: {exc.orig}")
        return ValidationError(
            f"{operation} rejected by a table constraint",
            operation=operation,
        )

    def _fault_error(self, operation: str, exc: BaseException) -> StorageUnavailable:
        logger.error(f"{operation} failed: storage unavailable", exc_info=exc)
        return StorageUnavailable(
            f"{operation} failed: storage unavailable",
            operation=operation,
        )
