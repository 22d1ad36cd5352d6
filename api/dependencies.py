"""Shared FastAPI dependencies."""

from functools import lru_cache

from queue_engine import TurnService


@lru_cache
def get_turn_service() -> TurnService:
    """
    Process-wide TurnService.

    One instance per worker so every request shares the same in-process
    queue lock. Tests override this dependency with a service bound to
    their own database.
    """
    return TurnService()
