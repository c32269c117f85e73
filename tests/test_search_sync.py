"""
Search index client and synchronizer tests.

The index is an httpx.MockTransport that records every request and keeps
indexed documents in a dict.
"""
import json
import datetime

import httpx
import pytest

from marvel_catalog.core.exceptions import IndexUnavailable
from marvel_catalog.core.http_client import RateLimitConfig, ResilientHTTPClient, RetryConfig
from marvel_catalog.models import Character, Comic
from marvel_catalog.services.search_index import SearchIndexClient, build_search_body
from marvel_catalog.services.search_sync import SearchIndexSynchronizer


class FakeIndexServer:
    def __init__(self, existing=(), failing_ids=(), down=False):
        self.indices = set(existing)
        self.failing_ids = {str(i) for i in failing_ids}
        self.down = down
        self.documents = {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append((request.method, request.url.path))
        parts = request.url.path.strip("/").split("/")
        index = parts[0]

        if request.method == "HEAD":
            return httpx.Response(200 if index in self.indices else 404)
        if request.method == "PUT" and len(parts) == 1:
            self.indices.add(index)
            return httpx.Response(200, json={"acknowledged": True})
        if request.method == "PUT" and parts[1] == "_doc":
            if parts[2] in self.failing_ids:
                return httpx.Response(400, json={"error": "mapper_parsing_exception"})
            self.documents[(index, parts[2])] = json.loads(request.content)
            return httpx.Response(201, json={"result": "created"})
        if request.method == "POST" and parts[1] == "_search":
            if index not in self.indices:
                return httpx.Response(404, json={"error": "index_not_found_exception"})
            hits = [{"_source": doc} for (i, _), doc in self.documents.items() if i == index]
            return httpx.Response(200, json={"hits": {"hits": hits}})
        return httpx.Response(405)


def index_client(server: FakeIndexServer) -> SearchIndexClient:
    http = ResilientHTTPClient(
        rate_limit_config=RateLimitConfig(min_request_interval=0),
        retry_config=RetryConfig(
            max_retries=0, base_delay=0, max_delay=0, jitter_factor=0, fatal_status_codes=(401, 403)
        ),
    )
    http._client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return SearchIndexClient(base_url="http://search.test:9200", client=http)


async def seed_comics(session_factory, count: int = 5):
    async with session_factory() as session:
        session.add_all([
            Comic(
                marvel_id=1000 + i,
                title=f"Comic #{i}",
                date=datetime.date(2020, 1, i + 1),
                thumbnail="" if i == 0 else f"http://img/{i}.jpg",
            )
            for i in range(count)
        ])
        await session.commit()


def test_build_search_body():
    body = build_search_body("title", "Spider MAN", exclude=["variant", "omnibus"], size=100)

    match = body["query"]["bool"]["must"][0]["match"]["title"]
    assert match == {"query": "spider man", "fuzziness": "AUTO", "operator": "and"}
    assert body["query"]["bool"]["must_not"] == [
        {"match": {"title": "variant"}},
        {"match": {"title": "omnibus"}},
    ]
    assert body["sort"] == [{"title.keyword": {"order": "asc"}}]
    assert body["size"] == 100
    assert body["from"] == 0


@pytest.mark.asyncio
async def test_sync_creates_missing_index_and_upserts_documents(session_factory, lock_manager):
    await seed_comics(session_factory)
    server = FakeIndexServer()
    client = index_client(server)
    sync = SearchIndexSynchronizer(client, session_factory=session_factory, batch_size=2, lock_manager=lock_manager)

    stats = await sync.sync("comics")
    await client.close()

    assert stats.index_created is True
    assert stats.indexed == 5
    assert stats.batches == 3
    assert stats.failed == 0
    assert ("PUT", "/comics") in server.requests
    assert server.documents[("comics", "1001")] == {
        "marvelId": 1001,
        "title": "Comic #1",
        "date": "2020-01-02",
        "thumbnail": "http://img/1.jpg",
    }
    assert server.documents[("comics", "1000")]["thumbnail"] == ""


@pytest.mark.asyncio
async def test_existing_index_is_not_recreated(session_factory, lock_manager):
    await seed_comics(session_factory, count=1)
    server = FakeIndexServer(existing={"comics"})
    client = index_client(server)

    stats = await SearchIndexSynchronizer(client, session_factory=session_factory, lock_manager=lock_manager).sync("comics")
    await client.close()

    assert stats.index_created is False
    assert ("PUT", "/comics") not in server.requests


@pytest.mark.asyncio
async def test_failing_document_is_counted_and_skipped(session_factory, lock_manager):
    await seed_comics(session_factory)
    server = FakeIndexServer(existing={"comics"}, failing_ids=[1002])
    client = index_client(server)

    stats = await SearchIndexSynchronizer(
        client, session_factory=session_factory, batch_size=2, lock_manager=lock_manager
    ).sync("comics")
    await client.close()

    assert stats.aborted is False
    assert stats.indexed == 4
    assert stats.failed == 1
    assert stats.error_samples[0].startswith("1002:")
    assert ("comics", "1003") in server.documents


@pytest.mark.asyncio
async def test_unreachable_index_aborts_sync(session_factory, lock_manager):
    await seed_comics(session_factory, count=1)
    client = index_client(FakeIndexServer(down=True))

    stats = await SearchIndexSynchronizer(client, session_factory=session_factory, lock_manager=lock_manager).sync("comics")
    await client.close()

    assert stats.aborted is True
    assert "IndexUnavailable" in stats.error
    assert stats.indexed == 0


@pytest.mark.asyncio
async def test_characters_are_indexed_by_name(session_factory, lock_manager):
    async with session_factory() as session:
        session.add(Character(marvel_id=1009610, name="Spider-Man", thumbnail="http://img/spidey.jpg"))
        await session.commit()
    server = FakeIndexServer()
    client = index_client(server)

    await SearchIndexSynchronizer(client, session_factory=session_factory, lock_manager=lock_manager).sync("characters")
    results = await client.search("characters", build_search_body("name", "spider"))
    await client.close()

    assert results == [{"marvelId": 1009610, "name": "Spider-Man", "thumbnail": "http://img/spidey.jpg"}]


@pytest.mark.asyncio
async def test_search_on_missing_index_returns_nothing():
    client = index_client(FakeIndexServer())
    assert await client.search("series", build_search_body("title", "x")) == []
    await client.close()


@pytest.mark.asyncio
async def test_transport_failure_maps_to_index_unavailable():
    client = index_client(FakeIndexServer(down=True))
    with pytest.raises(IndexUnavailable):
        await client.index_exists("comics")
    await client.close()


@pytest.mark.asyncio
async def test_unsearchable_type_is_rejected(session_factory, lock_manager):
    client = index_client(FakeIndexServer())
    with pytest.raises(ValueError):
        await SearchIndexSynchronizer(client, session_factory=session_factory, lock_manager=lock_manager).sync("creators")
    await client.close()


@pytest.mark.asyncio
async def test_sync_all_covers_every_searchable_type(session_factory, lock_manager):
    await seed_comics(session_factory, count=2)
    server = FakeIndexServer()
    client = index_client(server)

    results = await SearchIndexSynchronizer(client, session_factory=session_factory, lock_manager=lock_manager).sync_all()
    await client.close()

    assert set(results) == {"characters", "comics", "series"}
    assert results["comics"].indexed == 2
    assert results["series"].indexed == 0
    assert server.indices == {"characters", "comics", "series"}


@pytest.mark.asyncio
async def test_error_samples_are_capped(session_factory, lock_manager):
    await seed_comics(session_factory, count=15)
    server = FakeIndexServer(existing={"comics"}, failing_ids=range(1000, 1015))
    client = index_client(server)

    stats = await SearchIndexSynchronizer(
        client, session_factory=session_factory, batch_size=4, lock_manager=lock_manager
    ).sync("comics")
    await client.close()

    assert stats.failed == 15
    assert len(stats.error_samples) == 10
    assert stats.error_samples[-1].startswith("1009:")
