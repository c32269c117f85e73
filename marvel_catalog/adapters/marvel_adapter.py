"""
Marvel Public API Adapter

Paginated, authenticated reads from the Marvel gateway.

API Docs: https://developer.marvel.com/docs
Auth: ts + apikey + hash=md5(ts + private_key + public_key), per request
Limits: page size <= 100, 3000 calls/day

The adapter only fetches raw records. Normalization and persistence belong
to the normalizer and the batch importer.
"""
import hashlib
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from marvel_catalog.core.config import settings
from marvel_catalog.core.exceptions import DecodingError, TransportError, UpstreamHttpError
from marvel_catalog.core.http_client import RateLimitExceeded, ResilientHTTPClient, get_marvel_client

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("characters", "comics", "creators", "series")
MAX_PAGE_SIZE = 100


class MarvelAdapter:
    """
    Adapter for the Marvel public gateway.

    Usage:
        async with get_marvel_client() as client:
            adapter = MarvelAdapter(client)
            comics = await adapter.fetch_page("comics", limit=100, offset=0)
    """

    def __init__(
        self,
        client: ResilientHTTPClient,
        public_key: Optional[str] = None,
        private_key: Optional[str] = None,
        base_url: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.public_key = public_key if public_key is not None else settings.MARVEL_PUBLIC_KEY
        self.private_key = private_key if private_key is not None else settings.MARVEL_PRIVATE_KEY
        self.base_url = (base_url or settings.MARVEL_API_BASE).rstrip("/")
        self._clock = clock

        if not self.public_key or not self.private_key:
            logger.warning("[MARVEL] No API keys set. Set MARVEL_PUBLIC_KEY and MARVEL_PRIVATE_KEY.")

    def _auth_params(self) -> Dict[str, str]:
        """Fresh ts/apikey/hash triple; the gateway rejects reused timestamps over time."""
        ts = str(int(self._clock()))
        digest = hashlib.md5(f"{ts}{self.private_key}{self.public_key}".encode()).hexdigest()
        return {"ts": ts, "apikey": self.public_key, "hash": digest}

    def _build_params(self, limit: int, offset: int, modified_since: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        params.update(self._auth_params())
        if modified_since:
            params["modifiedSince"] = modified_since
        return params

    def _parse_response(self, response: httpx.Response, resource_type: str) -> List[Dict[str, Any]]:
        """Extract data.results, raising on any non-200 status or malformed body."""
        if response.status_code != 200:
            logger.error(f"[MARVEL] {resource_type}: HTTP {response.status_code}")
            raise UpstreamHttpError(
                f"Marvel API error: {response.status_code}",
                status_code=response.status_code,
                details={"resource_type": resource_type},
            )

        try:
            payload = response.json()
        except ValueError as e:
            body = response.text[:200] if response.text else "empty"
            logger.error(f"[MARVEL] {resource_type}: JSON parse error: {e}, body: {body}")
            raise DecodingError(f"Invalid JSON from Marvel API: {e}", details={"resource_type": resource_type})

        results = (payload.get("data") or {}).get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise DecodingError(
                "Marvel API response has no data.results list",
                details={"resource_type": resource_type},
            )
        return results

    async def fetch_page(
        self,
        resource_type: str,
        limit: int = MAX_PAGE_SIZE,
        offset: int = 0,
        modified_since: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of raw records.

        Args:
            resource_type: characters | comics | creators | series
            limit: Page size, clamped to 100
            offset: Zero-based record offset
            modified_since: Optional upstream modifiedSince filter (ISO date)

        Raises:
            TransportError: Network failure or timeout
            UpstreamHttpError: Non-200 status
            DecodingError: Body is not JSON or has no data.results list
        """
        if resource_type not in RESOURCE_TYPES:
            raise ValueError(f"Unknown resource type: {resource_type}")
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        url = f"{self.base_url}/{resource_type}"
        params = self._build_params(limit, offset, modified_since)

        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"[MARVEL] {resource_type} offset={offset}: HTTP {status}")
            raise UpstreamHttpError(
                f"Marvel API error: {status}",
                status_code=status,
                details={"resource_type": resource_type, "offset": offset},
            )
        except (httpx.TransportError, RateLimitExceeded) as e:
            logger.error(f"[MARVEL] {resource_type} offset={offset}: {type(e).__name__}: {e}")
            raise TransportError(
                f"Marvel API unreachable: {e}",
                details={"resource_type": resource_type, "offset": offset},
            )

        records = self._parse_response(response, resource_type)
        logger.debug(f"[MARVEL] {resource_type} offset={offset}: {len(records)} records")
        return records

    async def iter_pages(
        self,
        resource_type: str,
        limit: int = MAX_PAGE_SIZE,
        modified_since: Optional[str] = None,
        start_offset: int = 0,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield pages until a page shorter than limit arrives.

        The short page (possibly empty) is yielded too, then iteration stops.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = start_offset

        while True:
            page = await self.fetch_page(resource_type, limit=limit, offset=offset, modified_since=modified_since)
            yield page
            if len(page) < limit:
                break
            offset += limit

    async def fetch_all(
        self,
        resource_type: str,
        limit: int = MAX_PAGE_SIZE,
        modified_since: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Concatenate every page of a resource type."""
        records: List[Dict[str, Any]] = []
        async for page in self.iter_pages(resource_type, limit=limit, modified_since=modified_since):
            records.extend(page)
        logger.info(f"[MARVEL] {resource_type}: fetched {len(records)} records")
        return records

    async def health_check(self) -> bool:
        """Check the gateway is reachable and the keys are accepted."""
        if not self.public_key or not self.private_key:
            return False
        try:
            await self.fetch_page("characters", limit=1)
            return True
        except (TransportError, UpstreamHttpError, DecodingError) as e:
            logger.error(f"[MARVEL] Health check failed: {e}")
            return False


def create_marvel_adapter(client: Optional[ResilientHTTPClient] = None) -> MarvelAdapter:
    """Factory using settings for keys and a Marvel-tuned HTTP client."""
    return MarvelAdapter(client or get_marvel_client(timeout=settings.IMPORT_PAGE_TIMEOUT_SECONDS))
