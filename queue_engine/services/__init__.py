"""
Queue engine services.

Services:
- turn_service: booking, lookups, admin transitions, stats and renumbering
"""

from queue_engine.services.turn_service import QueueStats, TurnPage, TurnService

__all__ = ["QueueStats", "TurnPage", "TurnService"]
