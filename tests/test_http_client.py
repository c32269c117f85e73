import httpx
import pytest

from marvel_catalog.core.http_client import (
    ResilientHTTPClient,
    RateLimitConfig,
    RetryConfig,
    RateLimitExceeded,
)


def _client(handler, **retry) -> ResilientHTTPClient:
    retry_config = RetryConfig(max_retries=1, base_delay=0, max_delay=0, jitter_factor=0)
    for key, value in retry.items():
        setattr(retry_config, key, value)
    client = ResilientHTTPClient(
        rate_limit_config=RateLimitConfig(min_request_interval=0),
        retry_config=retry_config,
        timeout=5.0,
    )
    client._client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        timeout=client.timeout,
        headers=client.default_headers,
    )
    return client


@pytest.mark.asyncio
async def test_request_retries_after_retry_after_header():
    """
    Ensure 429 with Retry-After sets blocked_until, then recovers on retry.
    """
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            # Immediate retry allowed; no real sleep expected
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"ok": True})

    client = _client(handler)
    resp = await client.get("https://example.com/test")
    await client.close()

    assert resp.status_code == 200
    assert call_count == 2
    state = client._get_host_state("example.com")
    assert state.blocked_until is None


@pytest.mark.asyncio
async def test_rate_limit_exceeded_raises_fast():
    """
    Very long Retry-After should raise RateLimitExceeded without blocking for minutes.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "120"})

    client = _client(handler, max_retries=0)

    with pytest.raises(RateLimitExceeded):
        await client.get("https://example.com/test")

    await client.close()
    state = client._get_host_state("example.com")
    assert state.blocked_until is not None


@pytest.mark.asyncio
async def test_server_error_is_retried_then_succeeds():
    statuses = [503, 200]
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses[len(seen)]
        seen.append(status)
        return httpx.Response(status, json={})

    client = _client(handler, max_retries=2)
    resp = await client.get("https://example.com/flaky")
    await client.close()

    assert resp.status_code == 200
    assert seen == [503, 200]


@pytest.mark.asyncio
async def test_fatal_status_is_not_retried():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(401, json={"code": "InvalidCredentials"})

    client = _client(handler, max_retries=3)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get("https://example.com/private")

    await client.close()
    assert call_count == 1


@pytest.mark.asyncio
async def test_connect_errors_exhaust_retries():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, max_retries=2)

    with pytest.raises(httpx.ConnectError):
        await client.get("https://example.com/down")

    await client.close()
    assert call_count == 3


@pytest.mark.asyncio
async def test_non_retryable_status_is_returned():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"code": 409, "status": "Limit greater than 100."})

    client = _client(handler)
    resp = await client.get("https://example.com/conflict")
    await client.close()

    assert resp.status_code == 409


def test_backoff_is_capped():
    client = ResilientHTTPClient(
        retry_config=RetryConfig(base_delay=1.0, max_delay=5.0, jitter_factor=0),
    )
    assert client._calculate_backoff(0) == 1.0
    assert client._calculate_backoff(1) == 2.0
    assert client._calculate_backoff(10) == 5.0
