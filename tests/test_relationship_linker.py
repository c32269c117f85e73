"""
Relationship linker tests: series, characters (with placeholders) and
creator credits, run twice to check idempotence.
"""
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from marvel_catalog.models import (
    Character,
    Comic,
    Creator,
    Serie,
    comic_characters,
    comic_creators,
    serie_characters,
    serie_creators,
)
from marvel_catalog.services.relationship_linker import RelationshipLinker, coerce_marvel_id


@pytest_asyncio.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        session.add_all([
            Serie(
                marvel_id=100,
                title="Amazing Spider-Man (1963 - 1998)",
                marvel_ids_character=[11],
                creators=[{"marvelCreatorId": 7, "role": "editor"}],
            ),
            Character(marvel_id=10, name="Spider-Man"),
            Creator(marvel_id=7, full_name="Stan Lee"),
            Comic(
                marvel_id=1,
                title="Amazing Spider-Man (1963) #1",
                marvel_id_serie=100,
                marvel_ids_character=[10, 11, "bad"],
                creators=[
                    {"marvelCreatorId": 7, "role": "writer"},
                    {"marvelCreatorId": 7, "role": "editor"},
                    {"marvelCreatorId": 99, "role": "inker"},
                    {"role": "colorist"},
                ],
            ),
            Comic(marvel_id=2, title="Orphan #1", marvel_id_serie=555, marvel_ids_character=[], creators=[]),
        ])
        await session.commit()
    return session_factory


async def count(session_factory, table) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar_one()


@pytest.mark.asyncio
async def test_link_all_resolves_references(seeded, lock_manager):
    linker = RelationshipLinker(session_factory=seeded, chunk_size=1, lock_manager=lock_manager)

    stats = await linker.link_all()

    series_pass = stats.passes["comic_series"]
    assert series_pass.linked == 1
    assert series_pass.unresolved == 1
    assert series_pass.unresolved_samples[0]["details"] == {"entity_type": "series", "marvel_id": 555}

    characters_pass = stats.passes["comic_characters"]
    assert characters_pass.linked == 2
    assert characters_pass.placeholders_created == 1
    assert characters_pass.malformed == 1

    # The placeholder made by the comic pass is reused by the serie pass
    assert stats.passes["serie_characters"].placeholders_created == 0
    assert stats.passes["serie_characters"].linked == 1

    creators_pass = stats.passes["comic_creators"]
    assert creators_pass.linked == 2
    assert creators_pass.unresolved == 1
    assert creators_pass.malformed == 1

    async with seeded() as session:
        comic = (await session.execute(select(Comic).where(Comic.marvel_id == 1))).scalar_one()
        serie = (await session.execute(select(Serie).where(Serie.marvel_id == 100))).scalar_one()
        placeholder = (await session.execute(select(Character).where(Character.marvel_id == 11))).scalar_one()
        roles = (await session.execute(select(comic_creators.c.role).order_by(comic_creators.c.role))).scalars().all()

    assert comic.serie_id == serie.id
    assert placeholder.name == "Unknown 11"
    assert roles == ["editor", "writer"]
    assert await count(seeded, comic_characters) == 2
    assert await count(seeded, serie_characters) == 1
    assert await count(seeded, serie_creators) == 1


@pytest.mark.asyncio
async def test_second_run_changes_nothing(seeded, lock_manager):
    linker = RelationshipLinker(session_factory=seeded, chunk_size=50, lock_manager=lock_manager)
    await linker.link_all()

    stats = await linker.link_all()

    for pass_stats in stats.passes.values():
        assert pass_stats.linked == 0
        assert pass_stats.placeholders_created == 0
    assert stats.passes["comic_series"].already_linked == 1
    assert stats.passes["comic_characters"].already_linked == 2
    assert stats.passes["comic_creators"].already_linked == 2
    assert await count(seeded, comic_characters) == 2
    async with seeded() as session:
        characters = (await session.execute(select(func.count(Character.id)))).scalar_one()
    assert characters == 2


@pytest.mark.asyncio
async def test_linker_on_empty_catalog(session_factory, lock_manager):
    stats = await RelationshipLinker(session_factory=session_factory, lock_manager=lock_manager).link_all()

    assert set(stats.passes) == {
        "comic_series",
        "comic_characters",
        "serie_characters",
        "comic_creators",
        "serie_creators",
    }
    assert all(p.processed == 0 for p in stats.passes.values())


@pytest.mark.parametrize("value,expected", [
    (12, 12),
    ("12", 12),
    (" 12 ", 12),
    ("abc", None),
    (None, None),
    (True, None),
    (1.5, None),
])
def test_coerce_marvel_id(value, expected):
    assert coerce_marvel_id(value) == expected
