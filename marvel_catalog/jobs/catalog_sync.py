"""
Catalog Sync Jobs

Operator entry points for the ingestion pipeline. Each job returns a status
dict so the CLI (or a scheduler) can report results and set an exit code.

Pipeline order:
    import (characters, comics, creators, series)   -- sequential or concurrent
    -> barrier
    -> link (comic_series, comic/serie characters, comic/serie creators)
    -> index (characters, comics, series)

Usage:
    from marvel_catalog.jobs.catalog_sync import run_full_sync
    result = await run_full_sync(concurrent_imports=True)
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from marvel_catalog.adapters.marvel_adapter import RESOURCE_TYPES, create_marvel_adapter
from marvel_catalog.core.job_control import CancelToken
from marvel_catalog.core.query_cache import QueryCache
from marvel_catalog.core.utils import utcnow
from marvel_catalog.services.batch_importer import BatchImporter
from marvel_catalog.services.relationship_linker import RelationshipLinker
from marvel_catalog.services.search_index import SearchIndexClient
from marvel_catalog.services.search_sync import SEARCHABLE_TYPES, SearchIndexSynchronizer
from marvel_catalog.services.slug_backfill import backfill_comic_slugs

logger = logging.getLogger(__name__)


# =============================================================================
# JOB: IMPORT
# =============================================================================


async def run_import_job(
    resource_type: str,
    modified_since: Optional[str] = None,
    cancel_token: Optional[CancelToken] = None,
    importer: Optional[BatchImporter] = None,
) -> Dict[str, Any]:
    """Import one resource type from the Marvel gateway."""
    job_name = f"import_{resource_type}"
    logger.info(f"[{job_name}] Starting")

    if importer is not None:
        stats = await importer.import_resource(resource_type, modified_since, cancel_token)
    else:
        adapter = create_marvel_adapter()
        try:
            stats = await BatchImporter(adapter).import_resource(resource_type, modified_since, cancel_token)
        finally:
            await adapter.client.close()

    status = "failed" if stats.aborted else "completed"
    logger.info(f"[{job_name}] {status}: {stats.to_dict()}")
    return {"status": status, "job": job_name, "stats": stats.to_dict()}


async def run_imports(
    resource_types: Iterable[str] = RESOURCE_TYPES,
    modified_since: Optional[str] = None,
    concurrent: bool = False,
    cancel_token: Optional[CancelToken] = None,
    importer: Optional[BatchImporter] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Import several resource types.

    A failed type does not stop the others. Returns only once every import
    has finished, which is the barrier the linker relies on.
    """
    resource_types = list(resource_types)
    if concurrent:
        results = await asyncio.gather(
            *(run_import_job(rt, modified_since, cancel_token, importer) for rt in resource_types)
        )
    else:
        results = [await run_import_job(rt, modified_since, cancel_token, importer) for rt in resource_types]
    return dict(zip(resource_types, results))


# =============================================================================
# JOB: LINK
# =============================================================================


async def run_link_job(linker: Optional[RelationshipLinker] = None) -> Dict[str, Any]:
    """Resolve recorded references into relations. Run after all imports."""
    linker = linker or RelationshipLinker()
    try:
        stats = await linker.link_all()
    except Exception as e:
        logger.error(f"[link] Failed: {type(e).__name__}: {e}")
        return {"status": "failed", "job": "link", "error": str(e)}
    return {"status": "completed", "job": "link", "stats": stats.to_dict()}


async def run_slug_backfill_job() -> Dict[str, Any]:
    try:
        updated = await backfill_comic_slugs()
    except Exception as e:
        logger.error(f"[backfill_slugs] Failed: {type(e).__name__}: {e}")
        return {"status": "failed", "job": "backfill_slugs", "error": str(e)}
    return {"status": "completed", "job": "backfill_slugs", "updated": updated}


# =============================================================================
# JOB: SEARCH INDEX
# =============================================================================


async def run_index_job(
    entity_type: str,
    synchronizer: Optional[SearchIndexSynchronizer] = None,
) -> Dict[str, Any]:
    """Project one entity type into the search index."""
    job_name = f"index_{entity_type}"

    if synchronizer is not None:
        stats = await synchronizer.sync(entity_type)
    else:
        async with SearchIndexClient() as index_client:
            stats = await SearchIndexSynchronizer(index_client).sync(entity_type)

    status = "failed" if stats.aborted else "completed"
    if status == "completed" and stats.failed:
        status = "completed_with_errors"
    logger.info(f"[{job_name}] {status}: {stats.to_dict()}")
    return {"status": status, "job": job_name, "stats": stats.to_dict()}


# =============================================================================
# JOB: FULL SYNC
# =============================================================================


async def run_full_sync(
    modified_since: Optional[str] = None,
    concurrent_imports: bool = False,
    cancel_token: Optional[CancelToken] = None,
    importer: Optional[BatchImporter] = None,
    linker: Optional[RelationshipLinker] = None,
    synchronizer: Optional[SearchIndexSynchronizer] = None,
    cache: Optional[QueryCache] = None,
) -> Dict[str, Any]:
    """
    Import every type, then link, then rebuild the search projections.

    Linking always runs, even when some imports failed: whatever was
    imported is linked. When a query cache is passed it is cleared at the
    end so list and search pages reflect the new catalog.
    """
    started_at = utcnow()
    logger.info(f"[full_sync] Starting (concurrent_imports={concurrent_imports})")

    imports = await run_imports(
        modified_since=modified_since,
        concurrent=concurrent_imports,
        cancel_token=cancel_token,
        importer=importer,
    )
    link = await run_link_job(linker)

    index = {}
    for entity_type in SEARCHABLE_TYPES:
        index[entity_type] = await run_index_job(entity_type, synchronizer)

    failed = [
        result["job"]
        for result in list(imports.values()) + [link] + list(index.values())
        if result["status"] == "failed"
    ]
    if cache is not None:
        cache.clear()

    duration = (utcnow() - started_at).total_seconds()
    logger.info(f"[full_sync] Finished in {duration:.1f}s, failed jobs: {failed or 'none'}")

    return {
        "status": "failed" if failed else "completed",
        "failed_jobs": failed,
        "imports": imports,
        "link": link,
        "index": index,
        "duration_seconds": round(duration, 2),
    }
