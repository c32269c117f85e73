#!/usr/bin/env python3
"""
Marvel Catalog - Admin CLI runner

Runs the catalog admin CLI from a source checkout without installing the
package. Installed environments can use the `catalog-admin` command instead.

Usage:
    python scripts/catalog_admin.py sync-all --concurrent
"""
import sys
from pathlib import Path

# Ensure the package is importable when running from a checkout
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from marvel_catalog.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
