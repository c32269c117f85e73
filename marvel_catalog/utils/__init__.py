"""
Utility modules for the catalog.
"""
from marvel_catalog.utils.natural_sort import natural_sort_key, natural_sorted

__all__ = [
    "natural_sort_key",
    "natural_sorted",
]
