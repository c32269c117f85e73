"""
Search Index Synchronizer

Projects catalog rows into the search index, one entity type at a time.

- The index is created (with its mapping) only if it does not exist
- Rows are read as a narrow projection in id-ordered batches of
  SEARCH_SYNC_BATCH_SIZE; the identity map is cleared after every batch
- Each row is upserted as a document keyed by its external id
- A failing document is logged and counted, the sync moves on
- No delete/reconciliation: documents for rows removed from the catalog stay
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from marvel_catalog.core.config import settings
from marvel_catalog.core.database import AsyncSessionLocal
from marvel_catalog.core.exceptions import IndexUnavailable, SearchIndexError
from marvel_catalog.core.job_control import JobLockManager, job_locks
from marvel_catalog.core.utils import utcnow
from marvel_catalog.models.catalog import Character, Comic, Serie
from marvel_catalog.services.search_index import SearchIndexClient

logger = logging.getLogger(__name__)

SEARCHABLE_TYPES = ("characters", "comics", "series")


@dataclass
class SyncStats:
    """Statistics for one search index sync."""
    entity_type: str
    batches: int = 0
    indexed: int = 0
    failed: int = 0
    index_created: bool = False
    aborted: bool = False
    error: Optional[str] = None
    error_samples: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "batches": self.batches,
            "indexed": self.indexed,
            "failed": self.failed,
            "index_created": self.index_created,
            "aborted": self.aborted,
            "error": self.error,
            "error_samples": self.error_samples[:10],
            "duration_seconds": round(self.duration_seconds, 2),
        }


def _comic_document(row) -> Dict[str, Any]:
    return {
        "marvelId": row.marvel_id,
        "title": row.title,
        "date": row.date.strftime("%Y-%m-%d") if row.date else None,
        "thumbnail": row.thumbnail or "",
    }


def _serie_document(row) -> Dict[str, Any]:
    return {
        "marvelId": row.marvel_id,
        "title": row.title,
        "thumbnail": row.thumbnail or "",
    }


def _character_document(row) -> Dict[str, Any]:
    return {
        "marvelId": row.marvel_id,
        "name": row.name,
        "thumbnail": row.thumbnail or "",
    }


# entity type -> (projection columns, id column, document builder)
PROJECTIONS = {
    "comics": ((Comic.id, Comic.marvel_id, Comic.title, Comic.date, Comic.thumbnail), Comic.id, _comic_document),
    "series": ((Serie.id, Serie.marvel_id, Serie.title, Serie.thumbnail), Serie.id, _serie_document),
    "characters": (
        (Character.id, Character.marvel_id, Character.name, Character.thumbnail),
        Character.id,
        _character_document,
    ),
}


class SearchIndexSynchronizer:
    """Upserts catalog projections into the search index."""

    def __init__(
        self,
        index_client: SearchIndexClient,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        batch_size: Optional[int] = None,
        lock_manager: JobLockManager = job_locks,
    ):
        self.index_client = index_client
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.SEARCH_SYNC_BATCH_SIZE
        self.lock_manager = lock_manager

    async def sync(self, entity_type: str) -> SyncStats:
        """
        Index every row of entity_type.

        Never raises for index failures; an unreachable index at startup
        sets stats.aborted.
        """
        if entity_type not in PROJECTIONS:
            raise ValueError(f"Entity type is not searchable: {entity_type}")

        stats = SyncStats(entity_type=entity_type, started_at=utcnow())
        columns, id_column, build_document = PROJECTIONS[entity_type]

        try:
            stats.index_created = await self.index_client.ensure_index(entity_type)
        except SearchIndexError as e:
            stats.aborted = True
            stats.error = f"{type(e).__name__}: {e}"
            stats.completed_at = utcnow()
            logger.error(f"[SEARCH_SYNC] {entity_type}: cannot prepare index: {stats.error}")
            return stats

        lock = await self.lock_manager.get_lock(entity_type)
        async with lock:
            async with self.session_factory() as session:
                last_id = 0
                while True:
                    result = await session.execute(
                        select(*columns).where(id_column > last_id).order_by(id_column).limit(self.batch_size)
                    )
                    rows = result.all()
                    if not rows:
                        break
                    last_id = rows[-1].id

                    for row in rows:
                        try:
                            await self.index_client.index_document(entity_type, row.marvel_id, build_document(row))
                            stats.indexed += 1
                        except SearchIndexError as e:
                            stats.failed += 1
                            if len(stats.error_samples) < 10:
                                stats.error_samples.append(f"{row.marvel_id}: {e}")
                            log = logger.error if isinstance(e, IndexUnavailable) else logger.warning
                            log(f"[SEARCH_SYNC] {entity_type}: document {row.marvel_id} failed: {e}")

                    stats.batches += 1
                    session.expunge_all()
                    logger.info(f"[SEARCH_SYNC] {entity_type}: batch {stats.batches} done ({stats.indexed} indexed)")

        stats.completed_at = utcnow()
        logger.info(f"[SEARCH_SYNC] {entity_type}: {stats.to_dict()}")
        return stats

    async def sync_all(self) -> Dict[str, SyncStats]:
        results = {}
        for entity_type in SEARCHABLE_TYPES:
            results[entity_type] = await self.sync(entity_type)
        return results
