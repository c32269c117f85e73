"""
Resilient HTTP Client for the upstream content API and the search index

- Exponential backoff with jitter on retryable statuses and transport errors
- 429 detection with Retry-After header respect
- Minimum interval between requests per host
- Per-host request serialization (one in-flight request per host)
- Fail fast when the server asks us to wait longer than MAX_RATE_LIMIT_WAIT

The Marvel gateway enforces a daily call quota; every upstream call goes
through this client so a burst of retries cannot burn through it.
"""
import asyncio
import logging
import random
import time
from collections import defaultdict
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

MAX_RATE_LIMIT_WAIT = 60.0  # Maximum seconds we'll wait for a rate limit


class RateLimitExceeded(Exception):
    """Raised when a host asks us to back off longer than MAX_RATE_LIMIT_WAIT."""

    def __init__(self, host: str, wait_time: float):
        self.host = host
        self.wait_time = wait_time
        super().__init__(f"Rate limited by {host} for {wait_time:.0f}s")


class HostLockManager:
    """
    Per-host locks so only one request to a given host is in flight.

    Concurrent import jobs share one upstream host; without this the
    Retry-After state of one job would not be seen by the others.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock = asyncio.Lock()

    async def get_lock(self, host: str) -> asyncio.Lock:
        async with self._lock:
            if host not in self._locks:
                self._locks[host] = asyncio.Lock()
            return self._locks[host]


_host_locks = HostLockManager()


@dataclass
class RateLimitConfig:
    """Configuration for pacing requests to a single host."""
    min_request_interval: float = 0.5  # Minimum seconds between requests


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.5  # Random jitter (0-1)

    retryable_status_codes: tuple = (429, 500, 502, 503, 504)

    # Permanent failures, raised without retry
    fatal_status_codes: tuple = (400, 401, 403)


@dataclass
class HostState:
    """Tracks pacing state for a specific host."""
    last_request_time: float = 0.0
    blocked_until: Optional[float] = None  # Set from 429 Retry-After


class ResilientHTTPClient:
    """
    Async HTTP client with built-in retry and pacing.

    Usage:
        async with ResilientHTTPClient() as client:
            response = await client.get("https://gateway.marvel.com/v1/public/comics")
    """

    def __init__(
        self,
        rate_limit_config: Optional[RateLimitConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.rate_limit_config = rate_limit_config or RateLimitConfig()
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}

        self._client: Optional[httpx.AsyncClient] = None
        self._host_states: Dict[str, HostState] = {}

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                follow_redirects=True,
            )
        return self

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def _get_host_state(self, host: str) -> HostState:
        if host not in self._host_states:
            self._host_states[host] = HostState()
        return self._host_states[host]

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Delay with exponential backoff and jitter.

        Formula: min(base * (exp_base ^ attempt) +/- jitter, max_delay)
        """
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        delay += delay * cfg.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay, cfg.max_delay))

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Parse Retry-After header (seconds or HTTP date) into an absolute timestamp."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None

        try:
            return time.time() + int(retry_after)
        except ValueError:
            pass

        try:
            return parsedate_to_datetime(retry_after).timestamp()
        except (ValueError, TypeError):
            return None

    async def _wait_for_host(self, host: str) -> None:
        """Honor a pending Retry-After block and the minimum request interval."""
        state = self._get_host_state(host)
        now = time.time()

        if state.blocked_until:
            if now < state.blocked_until:
                wait_time = state.blocked_until - now
                if wait_time > MAX_RATE_LIMIT_WAIT:
                    logger.warning(
                        f"[RATE_LIMIT] {host}: Blocked for {wait_time:.0f}s - "
                        f"failing fast (max: {MAX_RATE_LIMIT_WAIT}s)"
                    )
                    raise RateLimitExceeded(host, wait_time)
                logger.info(f"[RATE_LIMIT] {host}: Waiting {wait_time:.1f}s for block to clear")
                await asyncio.sleep(wait_time)
            state.blocked_until = None

        elapsed = time.time() - state.last_request_time
        interval = self.rate_limit_config.min_request_interval
        if elapsed < interval:
            await asyncio.sleep(interval - elapsed)

        state.last_request_time = time.time()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request with retries, serialized per host.

        Returns:
            httpx.Response for any status that is neither retryable nor fatal

        Raises:
            httpx.HTTPStatusError: On fatal status or retries exhausted on a retryable one
            httpx.TransportError: On timeouts/connection errors after retries
            RateLimitExceeded: When the host asks for a wait above MAX_RATE_LIMIT_WAIT
        """
        if not self._client:
            await self.init()

        host = self._get_host(url)
        host_lock = await _host_locks.get_lock(host)

        async with host_lock:
            return await self._do_request_with_retry(method, url, host, **kwargs)

    async def _do_request_with_retry(self, method: str, url: str, host: str, **kwargs) -> httpx.Response:
        cfg = self.retry_config
        last_exception: Optional[Exception] = None

        for attempt in range(cfg.max_retries + 1):
            try:
                await self._wait_for_host(host)

                logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{cfg.max_retries + 1})")
                response = await self._client.request(method, url, **kwargs)

                if response.status_code == 429:
                    retry_after = self._parse_retry_after(response)
                    if retry_after:
                        wait_time = retry_after - time.time()
                    else:
                        wait_time = self._calculate_backoff(attempt)
                        retry_after = time.time() + wait_time
                    state = self._get_host_state(host)
                    state.blocked_until = retry_after
                    logger.warning(f"[429] {host}: Rate limited for {wait_time:.1f}s")

                    if wait_time > MAX_RATE_LIMIT_WAIT:
                        raise RateLimitExceeded(host, wait_time)
                    if attempt < cfg.max_retries:
                        continue
                    response.raise_for_status()

                if response.status_code in cfg.retryable_status_codes:
                    if attempt < cfg.max_retries:
                        delay = self._calculate_backoff(attempt)
                        logger.warning(
                            f"[HTTP] {host}: Status {response.status_code}, "
                            f"retrying in {delay:.1f}s (attempt {attempt + 1})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    response.raise_for_status()

                if response.status_code in cfg.fatal_status_codes:
                    logger.error(f"[HTTP] {host}: Fatal status {response.status_code}, not retrying")
                    response.raise_for_status()

                return response

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_exception = e
                if attempt < cfg.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(f"[HTTP] {host}: {type(e).__name__}, retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    continue

        logger.error(f"[HTTP] {host}: All {cfg.max_retries + 1} attempts failed")
        if last_exception:
            raise last_exception
        raise httpx.TransportError(f"Request to {url} failed after {cfg.max_retries + 1} attempts")

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)


# Pre-configured clients

def get_marvel_client(timeout: float = 30.0) -> ResilientHTTPClient:
    """
    Client configured for the Marvel public gateway.

    The gateway allows 3000 calls/day; page-level pacing is done by the
    importer, this only guards against hammering on retries.
    """
    return ResilientHTTPClient(
        rate_limit_config=RateLimitConfig(min_request_interval=0.25),
        retry_config=RetryConfig(
            max_retries=3,
            base_delay=2.0,
            max_delay=60.0,
        ),
        timeout=timeout,
        default_headers={"Accept": "application/json"},
    )


def get_search_http_client(timeout: float = 10.0) -> ResilientHTTPClient:
    """
    Client configured for the search index REST API.

    404 is a regular answer here (missing index or document), so it is not fatal.
    """
    return ResilientHTTPClient(
        rate_limit_config=RateLimitConfig(min_request_interval=0),
        retry_config=RetryConfig(
            max_retries=2,
            base_delay=0.5,
            max_delay=10.0,
            fatal_status_codes=(401, 403),
        ),
        timeout=timeout,
        default_headers={"Content-Type": "application/json"},
    )
