"""
Batch Importer

Pulls one resource type page by page from the Marvel gateway and persists
records that are not already in the catalog.

Per page:
1. Fetch (bounded by IMPORT_PAGE_TIMEOUT_SECONDS)
2. Normalize every raw record
3. One IN lookup for external ids already stored, plus de-duplication
   inside the page
4. Insert new rows, commit, clear the identity map
5. Courtesy pause (IMPORT_PAGE_DELAY_SECONDS) before the next page

Stops after the first page shorter than the page size. Any failure aborts
this resource type only: pages committed before the failure stay committed
and the failure is reported in ImportStats.

Usage:
    async with get_marvel_client() as client:
        importer = BatchImporter(MarvelAdapter(client))
        stats = await importer.import_resource("comics")
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marvel_catalog.adapters.marvel_adapter import MAX_PAGE_SIZE, RESOURCE_TYPES, MarvelAdapter
from marvel_catalog.core.config import settings
from marvel_catalog.core.database import AsyncSessionLocal
from marvel_catalog.core.exceptions import TransportError
from marvel_catalog.core.job_control import CancelToken, JobLockManager, job_locks
from marvel_catalog.core.utils import utcnow
from marvel_catalog.models.catalog import MODEL_BY_RESOURCE
from marvel_catalog.services.normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass
class ImportStats:
    """Statistics for one resource type import."""
    resource_type: str
    pages: int = 0
    fetched: int = 0
    inserted: int = 0
    skipped: int = 0
    aborted: bool = False
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0

    @property
    def records_per_second(self) -> float:
        if self.duration_seconds > 0:
            return self.fetched / self.duration_seconds
        return 0

    def to_dict(self) -> dict:
        return {
            "resource_type": self.resource_type,
            "pages": self.pages,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "aborted": self.aborted,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 2),
            "records_per_second": round(self.records_per_second, 2),
        }


class BatchImporter:
    """Idempotent page-by-page importer for one resource type at a time."""

    def __init__(
        self,
        adapter: MarvelAdapter,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        page_limit: Optional[int] = None,
        page_delay: Optional[float] = None,
        page_timeout: Optional[float] = None,
        lock_manager: JobLockManager = job_locks,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.session_factory = session_factory
        self.page_limit = max(1, min(page_limit or settings.IMPORT_PAGE_LIMIT, MAX_PAGE_SIZE))
        self.page_delay = settings.IMPORT_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.page_timeout = settings.IMPORT_PAGE_TIMEOUT_SECONDS if page_timeout is None else page_timeout
        self.lock_manager = lock_manager
        self._sleep = sleep

    async def import_resource(
        self,
        resource_type: str,
        modified_since: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ImportStats:
        """
        Import every page of resource_type.

        Never raises for upstream or database failures; check stats.aborted.
        """
        if resource_type not in RESOURCE_TYPES:
            raise ValueError(f"Unknown resource type: {resource_type}")

        tag = f"[IMPORT:{resource_type}]"
        stats = ImportStats(resource_type=resource_type, started_at=utcnow())
        lock = await self.lock_manager.get_lock(resource_type)

        async with lock:
            logger.info(f"{tag} Starting import (limit={self.page_limit}, modified_since={modified_since})")
            async with self.session_factory() as session:
                offset = 0
                while True:
                    try:
                        if cancel_token is not None:
                            cancel_token.raise_if_cancelled()
                        page = await self._fetch_page(resource_type, offset, modified_since)
                        inserted, skipped = await self._persist_page(session, resource_type, page)
                        await session.commit()
                    except Exception as e:
                        await session.rollback()
                        stats.aborted = True
                        stats.error = f"{type(e).__name__}: {e}"
                        logger.error(f"{tag} Aborted at offset {offset}: {stats.error}")
                        break

                    session.expunge_all()
                    stats.pages += 1
                    stats.fetched += len(page)
                    stats.inserted += inserted
                    stats.skipped += skipped
                    logger.info(
                        f"{tag} offset={offset}: {len(page)} fetched, "
                        f"{inserted} inserted, {skipped} skipped"
                    )

                    if len(page) < self.page_limit:
                        break
                    offset += self.page_limit
                    await self._sleep(self.page_delay)

        stats.completed_at = utcnow()
        logger.info(f"{tag} Finished: {stats.to_dict()}")
        return stats

    async def _fetch_page(self, resource_type: str, offset: int, modified_since: Optional[str]) -> List[Dict]:
        try:
            return await asyncio.wait_for(
                self.adapter.fetch_page(
                    resource_type,
                    limit=self.page_limit,
                    offset=offset,
                    modified_since=modified_since,
                ),
                timeout=self.page_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"Page fetch exceeded {self.page_timeout}s",
                details={"resource_type": resource_type, "offset": offset},
            )

    async def _persist_page(
        self,
        session: AsyncSession,
        resource_type: str,
        page: List[Dict],
    ) -> Tuple[int, int]:
        """Insert records whose external id is not stored yet. Returns (inserted, skipped)."""
        model = MODEL_BY_RESOURCE[resource_type]

        records = []
        skipped = 0
        for raw in page:
            record = normalize(resource_type, raw)
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if not records:
            return 0, skipped

        ids = {record.marvel_id for record in records}
        result = await session.execute(select(model.marvel_id).where(model.marvel_id.in_(ids)))
        seen = set(result.scalars().all())

        new_rows = []
        for record in records:
            if record.marvel_id in seen:
                skipped += 1
                continue
            seen.add(record.marvel_id)
            new_rows.append(model(**record.to_row()))

        session.add_all(new_rows)
        await session.flush()
        return len(new_rows), skipped
