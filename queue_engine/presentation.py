"""
Read-boundary mapping of Turn rows to response payloads.

Labels and wait times are derived from stored fields on every call and are
never written back to the row.
"""

from datetime import UTC, datetime
from typing import Any

from database.models import TERMINAL_STATUSES, ServiceType, Turn, TurnStatus

SERVICE_NAMES_AR = {
    ServiceType.HAIRCUT: "قص شعر",
    ServiceType.BEARD_TRIM: "قص لحية",
    ServiceType.HAIRCUT_BEARD: "قص شعر + لحية",
    ServiceType.SHAMPOO: "غسيل شعر",
    ServiceType.STYLING: "تسريحة",
}

STATUS_NAMES_AR = {
    TurnStatus.WAITING: "في الانتظار",
    TurnStatus.CONFIRMED: "مؤكد",
    TurnStatus.COMPLETED: "مكتمل",
    TurnStatus.CANCELLED: "ملغي",
}


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (drivers without timezone support return naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def isoformat(dt: datetime | None) -> str | None:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def service_name_arabic(turn: Turn) -> str:
    return SERVICE_NAMES_AR.get(turn.service_type, turn.service_type.value)


def status_name_arabic(turn: Turn) -> str:
    return STATUS_NAMES_AR.get(turn.status, turn.status.value)


def wait_time_minutes(turn: Turn, now: datetime | None = None) -> int | None:
    """Whole minutes since the turn was taken; None once the turn is terminal."""
    if turn.status in TERMINAL_STATUSES:
        return None
    now = now or datetime.now(UTC)
    elapsed = now - as_utc(turn.created_at)
    return max(0, int(elapsed.total_seconds() // 60))


def format_wait_time(minutes: int | None) -> str | None:
    """
    Format a wait in Arabic.

    Examples:
        45  -> "45 دقيقة"
        135 -> "2 ساعة و 15 دقيقة"
    """
    if minutes is None:
        return None
    if minutes < 60:
        return f"{minutes} دقيقة"
    hours, remaining = divmod(minutes, 60)
    return f"{hours} ساعة و {remaining} دقيقة"


def turn_to_dict(turn: Turn, *, include_notes: bool = False, now: datetime | None = None) -> dict[str, Any]:
    """Full turn payload with derived fields."""
    minutes = wait_time_minutes(turn, now)
    data: dict[str, Any] = {
        "id": str(turn.id),
        "customer_name": turn.customer_name,
        "mobile_number": turn.mobile_number,
        "service_type": turn.service_type.value,
        "service_name_arabic": service_name_arabic(turn),
        "turn_number": turn.turn_number,
        "status": turn.status.value,
        "status_name_arabic": status_name_arabic(turn),
        "created_at": isoformat(turn.created_at),
        "completed_at": isoformat(turn.completed_at),
        "cancelled_at": isoformat(turn.cancelled_at),
        "cancelled_by": turn.cancelled_by.value if turn.cancelled_by else None,
        "wait_time_minutes": minutes,
        "formatted_wait_time": format_wait_time(minutes),
    }
    if include_notes:
        data["notes"] = turn.notes
    return data


def waiting_board_entry(turn: Turn) -> dict[str, Any]:
    """Public display-board entry; omits contact details."""
    return {
        "turn_number": turn.turn_number,
        "customer_name": turn.customer_name,
        "service_type": turn.service_type.value,
        "service_name_arabic": service_name_arabic(turn),
        "created_at": isoformat(turn.created_at),
    }
