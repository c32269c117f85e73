"""
Job coordination primitives

- JobLockManager: one asyncio.Lock per entity type so an import, a link pass
  and a search sync never write the same entity type at once
- CancelToken: cooperative cancellation checked by batch jobs between pages
"""
import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional

from marvel_catalog.core.exceptions import JobCancelled

logger = logging.getLogger(__name__)


class JobLockManager:
    """Manages per-entity-type locks for batch jobs."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock = asyncio.Lock()

    async def get_lock(self, entity_type: str) -> asyncio.Lock:
        """Get or create the lock for an entity type."""
        async with self._lock:
            if entity_type not in self._locks:
                self._locks[entity_type] = asyncio.Lock()
            return self._locks[entity_type]

    def is_locked(self, entity_type: str) -> bool:
        lock = self._locks.get(entity_type)
        return bool(lock and lock.locked())


# Process-wide manager shared by all jobs
job_locks = JobLockManager()


class CancelToken:
    """
    Cooperative cancellation flag.

    Usage:
        token = CancelToken()
        task = asyncio.create_task(importer.import_resource("comics", cancel_token=token))
        token.cancel("operator request")
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            logger.info(f"[JOB] Cancellation requested: {reason}")
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelled(f"Job cancelled: {self.reason}", details={"reason": self.reason})
