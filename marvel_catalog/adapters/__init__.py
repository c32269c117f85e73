"""
Data Source Adapters

Adapters for external data sources. Each adapter handles authentication,
pagination and error mapping; normalization lives in services.normalizer.
"""
from marvel_catalog.adapters.marvel_adapter import MarvelAdapter, create_marvel_adapter, RESOURCE_TYPES

__all__ = [
    "MarvelAdapter",
    "create_marvel_adapter",
    "RESOURCE_TYPES",
]
