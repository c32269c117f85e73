"""
Batch importer tests against an in-memory SQLite catalog.

The adapter is replaced by a scripted fake so paging, skipping and abort
behavior can be driven page by page.
"""
import asyncio

import pytest
from sqlalchemy import func, select

from marvel_catalog.core.exceptions import UpstreamHttpError
from marvel_catalog.core.job_control import CancelToken
from marvel_catalog.models import Character, Comic, Creator, Serie
from marvel_catalog.services.batch_importer import BatchImporter


class ScriptedAdapter:
    """Serves pages by offset; an Exception value is raised instead."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def fetch_page(self, resource_type, limit=100, offset=0, modified_since=None):
        self.calls.append((resource_type, limit, offset, modified_since))
        page = self.pages.get(offset, [])
        if isinstance(page, Exception):
            raise page
        return page


class SlowAdapter:
    async def fetch_page(self, resource_type, limit=100, offset=0, modified_since=None):
        await asyncio.sleep(5)
        return []


def comic(marvel_id: int, title: str = None) -> dict:
    return {
        "id": marvel_id,
        "title": title or f"Comic #{marvel_id}",
        "series": {"resourceURI": "http://gateway.marvel.com/v1/public/series/1"},
        "characters": {"items": []},
        "creators": {"items": []},
        "dates": [{"type": "onsaleDate", "date": "2020-01-01T00:00:00-0500"}],
    }


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(model.id)))).scalar_one()


def importer_for(adapter, session_factory, lock_manager, no_sleep, page_limit=2, page_timeout=None):
    return BatchImporter(
        adapter,
        session_factory=session_factory,
        page_limit=page_limit,
        page_delay=0.5,
        page_timeout=page_timeout,
        lock_manager=lock_manager,
        sleep=no_sleep,
    )


@pytest.mark.asyncio
async def test_import_pages_until_short_page(session_factory, lock_manager, no_sleep):
    adapter = ScriptedAdapter({0: [comic(1), comic(2)], 2: [comic(3)]})
    importer = importer_for(adapter, session_factory, lock_manager, no_sleep)

    stats = await importer.import_resource("comics", modified_since="2019-01-01")

    assert stats.aborted is False
    assert stats.pages == 2
    assert stats.fetched == 3
    assert stats.inserted == 3
    assert [call[2] for call in adapter.calls] == [0, 2]
    assert all(call[3] == "2019-01-01" for call in adapter.calls)
    # One courtesy pause between the two pages
    assert no_sleep.delays == [0.5]
    assert await count(session_factory, Comic) == 3


def character(marvel_id: int) -> dict:
    return {"id": marvel_id, "name": f"Hero {marvel_id}", "comics": {"items": []}, "series": {"items": []}}


def creator(marvel_id: int) -> dict:
    return {"id": marvel_id, "firstName": "Jack", "lastName": f"Kirby {marvel_id}", "fullName": f"Jack Kirby {marvel_id}"}


def serie(marvel_id: int) -> dict:
    return {"id": marvel_id, "title": f"Series {marvel_id}", "startYear": 1963, "endYear": 1998}


RAW_BUILDERS = {
    "characters": (character, Character),
    "comics": (comic, Comic),
    "creators": (creator, Creator),
    "series": (serie, Serie),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("resource_type", sorted(RAW_BUILDERS))
async def test_reimport_is_idempotent(resource_type, session_factory, lock_manager, no_sleep):
    build, model = RAW_BUILDERS[resource_type]
    pages = {0: [build(1), build(2)], 2: [build(3)]}

    first = await importer_for(ScriptedAdapter(pages), session_factory, lock_manager, no_sleep).import_resource(resource_type)
    second = await importer_for(ScriptedAdapter(pages), session_factory, lock_manager, no_sleep).import_resource(resource_type)

    assert first.inserted == 3
    assert second.inserted == 0
    assert second.skipped == 3
    assert await count(session_factory, model) == 3


@pytest.mark.asyncio
async def test_duplicates_within_a_page_are_inserted_once(session_factory, lock_manager, no_sleep):
    adapter = ScriptedAdapter({0: [comic(7), comic(7, "Same id again")]})
    stats = await importer_for(adapter, session_factory, lock_manager, no_sleep, page_limit=5).import_resource("comics")

    assert stats.inserted == 1
    assert stats.skipped == 1
    async with session_factory() as session:
        stored = (await session.execute(select(Comic))).scalar_one()
    assert stored.title == "Comic #7"
    assert stored.slug == "comic-7"
    assert stored.marvel_id_serie == 1


@pytest.mark.asyncio
async def test_failure_aborts_but_keeps_committed_pages(session_factory, lock_manager, no_sleep):
    adapter = ScriptedAdapter({
        0: [comic(1), comic(2)],
        2: UpstreamHttpError("Marvel API error: 500", status_code=500),
    })
    stats = await importer_for(adapter, session_factory, lock_manager, no_sleep).import_resource("comics")

    assert stats.aborted is True
    assert "UpstreamHttpError" in stats.error
    assert stats.pages == 1
    assert stats.inserted == 2
    assert await count(session_factory, Comic) == 2


@pytest.mark.asyncio
async def test_cancellation_between_pages(session_factory, lock_manager):
    token = CancelToken()

    async def cancel_on_pause(seconds):
        token.cancel("operator request")

    adapter = ScriptedAdapter({0: [comic(1), comic(2)], 2: [comic(3), comic(4)], 4: []})
    importer = BatchImporter(
        adapter,
        session_factory=session_factory,
        page_limit=2,
        page_delay=0,
        lock_manager=lock_manager,
        sleep=cancel_on_pause,
    )

    stats = await importer.import_resource("comics", cancel_token=token)

    assert stats.aborted is True
    assert "JobCancelled" in stats.error
    assert len(adapter.calls) == 1
    assert await count(session_factory, Comic) == 2


@pytest.mark.asyncio
async def test_page_timeout_aborts_import(session_factory, lock_manager, no_sleep):
    importer = importer_for(SlowAdapter(), session_factory, lock_manager, no_sleep, page_timeout=0.01)

    stats = await importer.import_resource("characters")

    assert stats.aborted is True
    assert "TransportError" in stats.error


@pytest.mark.asyncio
async def test_nameless_creators_are_skipped(session_factory, lock_manager, no_sleep):
    adapter = ScriptedAdapter({0: [
        {"id": 30, "firstName": "Stan", "lastName": "Lee", "fullName": "Stan Lee"},
        {"id": 31, "firstName": "", "lastName": "", "fullName": ""},
    ]})
    stats = await importer_for(adapter, session_factory, lock_manager, no_sleep, page_limit=10).import_resource("creators")

    assert stats.inserted == 1
    assert stats.skipped == 1
    assert await count(session_factory, Creator) == 1


@pytest.mark.asyncio
async def test_import_holds_type_lock(session_factory, lock_manager, no_sleep):
    observed = []

    class LockCheckingAdapter(ScriptedAdapter):
        async def fetch_page(self, *args, **kwargs):
            observed.append(lock_manager.is_locked("comics"))
            return await super().fetch_page(*args, **kwargs)

    await importer_for(LockCheckingAdapter({0: [comic(1)]}), session_factory, lock_manager, no_sleep).import_resource("comics")

    assert observed == [True]
    assert lock_manager.is_locked("comics") is False


@pytest.mark.asyncio
async def test_unknown_resource_type(session_factory, lock_manager, no_sleep):
    importer = importer_for(ScriptedAdapter({}), session_factory, lock_manager, no_sleep)
    with pytest.raises(ValueError):
        await importer.import_resource("events")
