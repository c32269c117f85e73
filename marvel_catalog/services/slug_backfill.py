"""
Comic slug backfill

Recomputes Comic.slug from Comic.title for rows imported before slugs were
derived at import time, or whose title changed. Idempotent.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from marvel_catalog.core.config import settings
from marvel_catalog.core.database import AsyncSessionLocal
from marvel_catalog.core.job_control import JobLockManager, job_locks
from marvel_catalog.models.catalog import Comic
from marvel_catalog.services.normalizer import make_slug

logger = logging.getLogger(__name__)


async def backfill_comic_slugs(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    chunk_size: Optional[int] = None,
    lock_manager: JobLockManager = job_locks,
) -> int:
    """Returns the number of comics whose slug changed."""
    chunk_size = chunk_size or settings.LINK_CHUNK_SIZE
    updated = 0

    async with await lock_manager.get_lock("comics"):
        async with session_factory() as session:
            last_id = 0
            while True:
                result = await session.execute(
                    select(Comic.id, Comic.title, Comic.slug)
                    .where(Comic.id > last_id)
                    .order_by(Comic.id)
                    .limit(chunk_size)
                )
                rows = result.all()
                if not rows:
                    break
                last_id = rows[-1].id

                changes = [
                    {"id": row.id, "slug": make_slug(row.title)}
                    for row in rows
                    if row.slug != make_slug(row.title)
                ]
                if changes:
                    await session.execute(update(Comic), changes)
                    await session.commit()
                    updated += len(changes)
                session.expunge_all()

    logger.info(f"[SLUG_BACKFILL] Updated {updated} comic slugs")
    return updated
