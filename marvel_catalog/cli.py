"""
Catalog Admin CLI

Command-line interface for the catalog ingestion pipeline.

Usage:
    # Create tables (development only; production uses migrations)
    catalog-admin init-db

    # Import one resource type, optionally only records changed since a date
    catalog-admin import comics --modified-since 2024-01-01

    # Resolve references once every type is imported
    catalog-admin link

    # Rebuild one search projection
    catalog-admin index comics

    # Everything, in order
    catalog-admin sync-all --concurrent

Environment:
    DATABASE_URL, MARVEL_PUBLIC_KEY, MARVEL_PRIVATE_KEY, ELASTICSEARCH_URL
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from marvel_catalog.adapters.marvel_adapter import RESOURCE_TYPES
from marvel_catalog.services.search_sync import SEARCHABLE_TYPES

logger = logging.getLogger(__name__)


def _print_result(result: Dict[str, Any]) -> int:
    """Print a job result and return the process exit code."""
    print(json.dumps(result, indent=2, default=str))
    return 1 if result.get("status") == "failed" else 0


# =============================================================================
# COMMANDS
# =============================================================================


def cmd_init_db(args) -> int:
    from marvel_catalog.core.database import init_models

    asyncio.run(init_models())
    print("Tables created")
    return 0


def cmd_import(args) -> int:
    from marvel_catalog.jobs.catalog_sync import run_import_job, run_imports

    if args.resource_type == "all":
        results = asyncio.run(run_imports(modified_since=args.modified_since, concurrent=args.concurrent))
        codes = [_print_result(result) for result in results.values()]
        return max(codes)
    return _print_result(asyncio.run(run_import_job(args.resource_type, args.modified_since)))


def cmd_link(args) -> int:
    from marvel_catalog.jobs.catalog_sync import run_link_job

    return _print_result(asyncio.run(run_link_job()))


def cmd_index(args) -> int:
    from marvel_catalog.jobs.catalog_sync import run_index_job

    entity_types = SEARCHABLE_TYPES if args.entity_type == "all" else (args.entity_type,)
    return max(_print_result(asyncio.run(run_index_job(entity_type))) for entity_type in entity_types)


def cmd_backfill_slugs(args) -> int:
    from marvel_catalog.jobs.catalog_sync import run_slug_backfill_job

    return _print_result(asyncio.run(run_slug_backfill_job()))


def cmd_sync_all(args) -> int:
    from marvel_catalog.jobs.catalog_sync import run_full_sync

    return _print_result(
        asyncio.run(run_full_sync(modified_since=args.modified_since, concurrent_imports=args.concurrent))
    )


# =============================================================================
# MAIN
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-admin",
        description="Marvel Catalog Admin CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db                       # Create tables
  %(prog)s import comics                 # Import all comics
  %(prog)s import all --concurrent       # Import every type in parallel
  %(prog)s link                          # Resolve relations
  %(prog)s index all                     # Rebuild search projections
  %(prog)s sync-all                      # Import, link, index
        """,
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_db = subparsers.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(func=cmd_init_db)

    import_parser = subparsers.add_parser("import", help="Import a resource type from the Marvel API")
    import_parser.add_argument("resource_type", choices=list(RESOURCE_TYPES) + ["all"])
    import_parser.add_argument("--modified-since", help="Only records modified since this date (YYYY-MM-DD)")
    import_parser.add_argument("--concurrent", action="store_true", help="With 'all': import types in parallel")
    import_parser.set_defaults(func=cmd_import)

    link = subparsers.add_parser("link", help="Resolve series, character and creator references")
    link.set_defaults(func=cmd_link)

    index = subparsers.add_parser("index", help="Sync a search index projection")
    index.add_argument("entity_type", choices=list(SEARCHABLE_TYPES) + ["all"])
    index.set_defaults(func=cmd_index)

    backfill = subparsers.add_parser("backfill-slugs", help="Recompute comic slugs from titles")
    backfill.set_defaults(func=cmd_backfill_slugs)

    sync_all = subparsers.add_parser("sync-all", help="Import every type, link, then index")
    sync_all.add_argument("--modified-since", help="Only records modified since this date (YYYY-MM-DD)")
    sync_all.add_argument("--concurrent", action="store_true", help="Import types in parallel")
    sync_all.set_defaults(func=cmd_sync_all)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
