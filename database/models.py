"""
SQLAlchemy ORM models for the turn queue.

This module defines the single core table:
- turns: one row per customer turn, kept forever for history and statistics

The model uses:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- Partial unique indexes that back the queue invariants in the store itself
- CHECK constraints tying terminal timestamps to the status
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Enums
# ============================================================================


class ServiceType(str, PyEnum):
    """Services offered at the chair."""

    HAIRCUT = "haircut"
    BEARD_TRIM = "beard-trim"
    HAIRCUT_BEARD = "haircut-beard"
    SHAMPOO = "shampoo"
    STYLING = "styling"


class TurnStatus(str, PyEnum):
    """Turn lifecycle status."""

    WAITING = "waiting"
    CONFIRMED = "confirmed"    # Reserved: no operation moves a turn here yet
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class CancelledBy(str, PyEnum):
    """Who cancelled a turn."""

    CUSTOMER = "customer"
    ADMIN = "admin"


ACTIVE_STATUSES = (TurnStatus.WAITING, TurnStatus.CONFIRMED)
TERMINAL_STATUSES = (TurnStatus.COMPLETED, TurnStatus.CANCELLED)


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [e.value for e in enum_cls]


# ============================================================================
# Core Models
# ============================================================================


class Turn(Base):
    """
    Turn model - One customer's place in the walk-in queue.

    Only the queue engine writes to this table. `turn_number` is dense
    (1..N) across waiting rows and is rewritten by renumbering whenever a
    row leaves the waiting set.
    """

    __tablename__ = "turns"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Customer data
    customer_name: Mapped[str] = mapped_column(String(50), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(15), nullable=False, index=True)
    service_type: Mapped[ServiceType] = mapped_column(
        SQLEnum(
            ServiceType,
            name="service_type",
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # Queue position
    turn_number: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Status tracking
    # Note: values_callable makes SQLAlchemy store enum .value ("waiting")
    # instead of .name ("WAITING"); the partial indexes below rely on it
    status: Mapped[TurnStatus] = mapped_column(
        SQLEnum(
            TurnStatus,
            name="turn_status",
            values_callable=_enum_values,
        ),
        default=TurnStatus.WAITING,
        nullable=False,
        index=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(
        SQLEnum(
            CancelledBy,
            name="cancelled_by",
            values_callable=_enum_values,
        ),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Constraints and indexes
    __table_args__ = (
        CheckConstraint("turn_number >= 1", name="check_turn_number_positive"),
        CheckConstraint(
            "notes IS NULL OR length(notes) <= 500",
            name="check_turn_notes_length",
        ),
        CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status <> 'completed' AND completed_at IS NULL)",
            name="check_turn_completed_at",
        ),
        CheckConstraint(
            "(status = 'cancelled' AND cancelled_at IS NOT NULL AND cancelled_by IS NOT NULL) "
            "OR (status <> 'cancelled' AND cancelled_at IS NULL AND cancelled_by IS NULL)",
            name="check_turn_cancellation_fields",
        ),
        # Waiting set ordering (renumbering scan)
        Index("idx_turns_status_created_at", "status", "created_at"),
        # No two waiting turns share a number
        Index(
            "uq_turns_waiting_turn_number",
            "turn_number",
            unique=True,
            postgresql_where=text("status = 'waiting'"),
            sqlite_where=text("status = 'waiting'"),
        ),
        # One in-progress turn per mobile number
        Index(
            "uq_turns_active_mobile_number",
            "mobile_number",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'confirmed')"),
            sqlite_where=text("status IN ('waiting', 'confirmed')"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Turn(id={self.id}, turn_number={self.turn_number}, "
            f"status='{self.status.value}')>"
        )
