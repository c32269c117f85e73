"""
Jobs Package

Batch jobs for the catalog ingestion pipeline.
"""
from marvel_catalog.jobs.catalog_sync import (
    run_import_job,
    run_imports,
    run_link_job,
    run_slug_backfill_job,
    run_index_job,
    run_full_sync,
)
