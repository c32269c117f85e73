"""
Search Index Client

Thin async client for an Elasticsearch-compatible REST API, built on the
shared ResilientHTTPClient.

Indices (one per searchable entity type):
- comics:     marvelId, title (text + keyword), date, thumbnail
- series:     marvelId, title (text + keyword), thumbnail
- characters: marvelId, name (text + keyword), thumbnail

The index is a rebuildable projection of the relational catalog; mappings
are created once and never migrated.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from marvel_catalog.core.config import settings
from marvel_catalog.core.exceptions import IndexUnavailable, SearchIndexError
from marvel_catalog.core.http_client import RateLimitExceeded, ResilientHTTPClient, get_search_http_client

logger = logging.getLogger(__name__)

_TITLE_FIELD = {"type": "text", "fields": {"keyword": {"type": "keyword"}}}

INDEX_MAPPINGS: Dict[str, Dict[str, Any]] = {
    "comics": {
        "properties": {
            "marvelId": {"type": "integer"},
            "title": _TITLE_FIELD,
            "date": {"type": "date"},
            "thumbnail": {"type": "keyword"},
        }
    },
    "series": {
        "properties": {
            "marvelId": {"type": "integer"},
            "title": _TITLE_FIELD,
            "thumbnail": {"type": "keyword"},
        }
    },
    "characters": {
        "properties": {
            "marvelId": {"type": "integer"},
            "name": _TITLE_FIELD,
            "thumbnail": {"type": "keyword"},
        }
    },
}

# Primary full-text field per index
SEARCH_FIELDS = {
    "comics": "title",
    "series": "title",
    "characters": "name",
}


def build_search_body(
    field: str,
    query: str,
    exclude: Optional[List[str]] = None,
    size: int = 100,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Fuzzy AND match on field, one must_not match per excluded word,
    sorted by the keyword sub-field.
    """
    return {
        "from": offset,
        "size": size,
        "query": {
            "bool": {
                "must": [
                    {
                        "match": {
                            field: {
                                "query": query.lower(),
                                "fuzziness": "AUTO",
                                "operator": "and",
                            }
                        }
                    }
                ],
                "must_not": [{"match": {field: word}} for word in (exclude or [])],
            }
        },
        "sort": [{f"{field}.keyword": {"order": "asc"}}],
    }


class SearchIndexClient:
    """
    REST client for the search index.

    Usage:
        async with SearchIndexClient() as index:
            await index.ensure_index("comics")
            await index.index_document("comics", 4001, {...})
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[ResilientHTTPClient] = None):
        self.base_url = (base_url or settings.ELASTICSEARCH_URL).rstrip("/")
        self.client = client or get_search_http_client(timeout=settings.ELASTICSEARCH_TIMEOUT_SECONDS)

    async def __aenter__(self):
        await self.client.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.close()

    async def close(self):
        await self.client.close()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code if e.response is not None else None
            raise SearchIndexError(
                f"Search index error {status} on {method} /{path}",
                details={"status_code": status, "path": path},
            )
        except (httpx.TransportError, RateLimitExceeded) as e:
            raise IndexUnavailable(
                f"Search index unreachable at {self.base_url}: {e}",
                details={"path": path},
            )

    async def index_exists(self, index: str) -> bool:
        response = await self._request("HEAD", index)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise SearchIndexError(
            f"Unexpected status {response.status_code} checking index {index}",
            details={"status_code": response.status_code, "index": index},
        )

    async def create_index(self, index: str, mappings: Dict[str, Any]) -> None:
        response = await self._request("PUT", index, content=json.dumps({"mappings": mappings}))
        if response.status_code not in (200, 201):
            raise SearchIndexError(
                f"Could not create index {index}: {response.status_code} {response.text[:200]}",
                details={"status_code": response.status_code, "index": index},
            )
        logger.info(f"[SEARCH_INDEX] Created index {index}")

    async def ensure_index(self, index: str) -> bool:
        """Create index with its mapping if missing. Returns True when it was created."""
        if await self.index_exists(index):
            return False
        await self.create_index(index, INDEX_MAPPINGS[index])
        return True

    async def index_document(self, index: str, doc_id: int, document: Dict[str, Any]) -> None:
        """Upsert one document keyed by the external id."""
        response = await self._request("PUT", f"{index}/_doc/{doc_id}", content=json.dumps(document))
        if response.status_code not in (200, 201):
            raise SearchIndexError(
                f"Indexing {index}/{doc_id} failed: {response.status_code} {response.text[:200]}",
                details={"status_code": response.status_code, "index": index, "doc_id": doc_id},
            )

    async def search(self, index: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a search and return the _source of each hit, in hit order."""
        response = await self._request("POST", f"{index}/_search", content=json.dumps(body))
        if response.status_code == 404:
            logger.warning(f"[SEARCH_INDEX] Index {index} does not exist yet")
            return []
        if response.status_code != 200:
            raise SearchIndexError(
                f"Search on {index} failed: {response.status_code} {response.text[:200]}",
                details={"status_code": response.status_code, "index": index},
            )
        try:
            hits = response.json()["hits"]["hits"]
        except (ValueError, KeyError, TypeError) as e:
            raise SearchIndexError(f"Malformed search response from {index}: {e}", details={"index": index})
        return [hit.get("_source", {}) for hit in hits]
