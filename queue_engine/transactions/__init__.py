"""
Queue transaction handler.

Every queue mutation executes atomically (transition and renumbering commit
together or not at all):
1. In-process lock plus PostgreSQL advisory lock serialize queue mutations
2. Partial unique indexes reject any duplicate that slips through
3. Conflicts are retried with exponential backoff, then reported as CONCURRENCY_CONFLICT
4. Every attempt is bounded by STORE_TIMEOUT_SECONDS
"""

from queue_engine.transactions.queue_transaction import QueueTransaction

__all__ = ["QueueTransaction"]
