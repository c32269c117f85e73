"""
Relationship Linker

Resolves the external ids recorded at import time into real relations.
Must run after every resource type has been imported.

Passes, in order:
1. comic_series      Comic.marvel_id_serie -> Comic.serie_id
2. comic_characters  Comic.marvel_ids_character -> comic_characters
3. serie_characters  Serie.marvel_ids_character -> serie_characters
4. comic_creators    Comic.creators -> comic_creators (with role)
5. serie_creators    Serie.creators -> serie_creators (with role)

Every pass is idempotent: join rows are only inserted when absent, and a
character missing from the catalog is created once as an "Unknown {id}"
placeholder. Missing series and creators are left unresolved.

Roots are read as narrow column projections in id-ordered chunks of
LINK_CHUNK_SIZE; each chunk is committed and the identity map cleared.
"""
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

from sqlalchemy import Table, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marvel_catalog.core.config import settings
from marvel_catalog.core.database import AsyncSessionLocal
from marvel_catalog.core.exceptions import NotFoundReference
from marvel_catalog.core.job_control import JobLockManager, job_locks
from marvel_catalog.models.catalog import (
    Character,
    Comic,
    Creator,
    Serie,
    comic_characters,
    comic_creators,
    serie_characters,
    serie_creators,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Unknown {marvel_id}"


@dataclass
class PassStats:
    """Counters for one linking pass."""
    name: str
    processed: int = 0
    linked: int = 0
    already_linked: int = 0
    unresolved: int = 0
    placeholders_created: int = 0
    malformed: int = 0
    unresolved_samples: List[dict] = field(default_factory=list)

    def record_unresolved(self, entity_type: str, marvel_id: int) -> None:
        self.unresolved += 1
        if len(self.unresolved_samples) < 10:
            ref = NotFoundReference(
                f"{entity_type} {marvel_id} not in catalog", entity_type=entity_type, marvel_id=marvel_id
            )
            self.unresolved_samples.append(ref.to_dict())

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "linked": self.linked,
            "already_linked": self.already_linked,
            "unresolved": self.unresolved,
            "placeholders_created": self.placeholders_created,
            "malformed": self.malformed,
            "unresolved_samples": self.unresolved_samples,
        }


@dataclass
class LinkStats:
    passes: Dict[str, PassStats] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {name: stats.to_dict() for name, stats in self.passes.items()}


def coerce_marvel_id(value: Any) -> Optional[int]:
    """Recorded ids are ints; tolerate numeric strings, reject anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class RelationshipLinker:
    """Runs the post-import linking passes."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        chunk_size: Optional[int] = None,
        lock_manager: JobLockManager = job_locks,
    ):
        self.session_factory = session_factory
        self.chunk_size = chunk_size or settings.LINK_CHUNK_SIZE
        self.lock_manager = lock_manager

    @asynccontextmanager
    async def _locked(self, *entity_types: str):
        """Hold the locks of every written entity type, acquired in a fixed order."""
        async with AsyncExitStack() as stack:
            for entity_type in sorted(set(entity_types)):
                lock = await self.lock_manager.get_lock(entity_type)
                await stack.enter_async_context(lock)
            yield

    async def _iter_chunks(self, session: AsyncSession, columns: List[Any], id_column) -> AsyncIterator[List[Tuple]]:
        """Keyset pagination over a projection; first column must be the primary key."""
        last_id = 0
        while True:
            result = await session.execute(
                select(*columns).where(id_column > last_id).order_by(id_column).limit(self.chunk_size)
            )
            rows = result.all()
            if not rows:
                break
            yield rows
            last_id = rows[-1][0]

    # =========================================================================
    # PASS 1: Comic -> Serie
    # =========================================================================

    async def link_comic_series(self) -> PassStats:
        stats = PassStats(name="comic_series")
        async with self._locked("comics"):
            async with self.session_factory() as session:
                async for rows in self._iter_chunks(
                    session, [Comic.id, Comic.marvel_id_serie, Comic.serie_id], Comic.id
                ):
                    wanted = {coerce_marvel_id(r.marvel_id_serie) for r in rows if r.marvel_id_serie}
                    wanted.discard(None)
                    serie_ids: Dict[int, int] = {}
                    if wanted:
                        result = await session.execute(
                            select(Serie.marvel_id, Serie.id).where(Serie.marvel_id.in_(wanted))
                        )
                        serie_ids = dict(result.all())

                    updates = []
                    for row in rows:
                        if not row.marvel_id_serie:
                            continue
                        stats.processed += 1
                        marvel_id = coerce_marvel_id(row.marvel_id_serie)
                        if marvel_id is None:
                            stats.malformed += 1
                            continue
                        serie_id = serie_ids.get(marvel_id)
                        if serie_id is None:
                            stats.record_unresolved("series", marvel_id)
                        elif row.serie_id == serie_id:
                            stats.already_linked += 1
                        else:
                            updates.append({"id": row.id, "serie_id": serie_id})

                    if updates:
                        await session.execute(update(Comic), updates)
                        stats.linked += len(updates)
                    await session.commit()
                    session.expunge_all()

        logger.info(f"[LINKER] comic_series: {stats.to_dict()}")
        return stats

    # =========================================================================
    # PASSES 2-3: Comic/Serie <-> Character
    # =========================================================================

    async def _resolve_characters(
        self,
        session: AsyncSession,
        marvel_ids: Set[int],
        stats: PassStats,
    ) -> Dict[int, int]:
        """Map character external ids to local ids, creating placeholders for missing ones."""
        if not marvel_ids:
            return {}
        result = await session.execute(
            select(Character.marvel_id, Character.id).where(Character.marvel_id.in_(marvel_ids))
        )
        resolved = dict(result.all())

        missing = sorted(marvel_ids - resolved.keys())
        if missing:
            placeholders = [
                Character(marvel_id=marvel_id, name=PLACEHOLDER_NAME.format(marvel_id=marvel_id))
                for marvel_id in missing
            ]
            session.add_all(placeholders)
            await session.flush()
            for character in placeholders:
                resolved[character.marvel_id] = character.id
            stats.placeholders_created += len(placeholders)
            logger.info(f"[LINKER] Created {len(placeholders)} placeholder characters")
        return resolved

    async def _link_characters(self, name: str, root_model, join_table: Table, root_fk: str) -> PassStats:
        stats = PassStats(name=name)
        root_type = root_model.__tablename__
        async with self._locked(root_type, "characters"):
            async with self.session_factory() as session:
                async for rows in self._iter_chunks(
                    session, [root_model.id, root_model.marvel_ids_character], root_model.id
                ):
                    recorded: Dict[int, List[int]] = {}
                    for row in rows:
                        ids = []
                        for value in row.marvel_ids_character or []:
                            marvel_id = coerce_marvel_id(value)
                            if marvel_id is None:
                                stats.malformed += 1
                                logger.warning(f"[LINKER] {name}: malformed character ref {value!r} on {root_type} {row.id}")
                                continue
                            ids.append(marvel_id)
                        if ids:
                            recorded[row.id] = ids
                    if not recorded:
                        continue

                    all_ids = {marvel_id for ids in recorded.values() for marvel_id in ids}
                    character_ids = await self._resolve_characters(session, all_ids, stats)

                    result = await session.execute(
                        select(join_table.c[root_fk], join_table.c.character_id)
                        .where(join_table.c[root_fk].in_(list(recorded)))
                    )
                    existing = set(result.all())

                    new_rows = []
                    for root_id, ids in recorded.items():
                        for marvel_id in ids:
                            stats.processed += 1
                            pair = (root_id, character_ids[marvel_id])
                            if pair in existing:
                                stats.already_linked += 1
                                continue
                            existing.add(pair)
                            new_rows.append({root_fk: pair[0], "character_id": pair[1]})

                    if new_rows:
                        await session.execute(insert(join_table), new_rows)
                        stats.linked += len(new_rows)
                    await session.commit()
                    session.expunge_all()

        logger.info(f"[LINKER] {name}: {stats.to_dict()}")
        return stats

    async def link_comic_characters(self) -> PassStats:
        return await self._link_characters("comic_characters", Comic, comic_characters, "comic_id")

    async def link_serie_characters(self) -> PassStats:
        return await self._link_characters("serie_characters", Serie, serie_characters, "serie_id")

    # =========================================================================
    # PASSES 4-5: Comic/Serie <-> Creator (with role)
    # =========================================================================

    async def _link_creators(self, name: str, root_model, join_table: Table, root_fk: str) -> PassStats:
        stats = PassStats(name=name)
        root_type = root_model.__tablename__
        async with self._locked(root_type):
            async with self.session_factory() as session:
                async for rows in self._iter_chunks(session, [root_model.id, root_model.creators], root_model.id):
                    recorded: Dict[int, List[Tuple[int, str]]] = {}
                    for row in rows:
                        credits = []
                        for credit in row.creators or []:
                            marvel_id = coerce_marvel_id((credit or {}).get("marvelCreatorId")) if isinstance(credit, dict) else None
                            if marvel_id is None:
                                stats.malformed += 1
                                continue
                            credits.append((marvel_id, (credit.get("role") or "").strip()))
                        if credits:
                            recorded[row.id] = credits
                    if not recorded:
                        continue

                    wanted = {marvel_id for credits in recorded.values() for marvel_id, _ in credits}
                    result = await session.execute(
                        select(Creator.marvel_id, Creator.id).where(Creator.marvel_id.in_(wanted))
                    )
                    creator_ids = dict(result.all())

                    result = await session.execute(
                        select(join_table.c[root_fk], join_table.c.creator_id, join_table.c.role)
                        .where(join_table.c[root_fk].in_(list(recorded)))
                    )
                    existing = set(result.all())

                    new_rows = []
                    for root_id, credits in recorded.items():
                        for marvel_id, role in credits:
                            stats.processed += 1
                            creator_id = creator_ids.get(marvel_id)
                            if creator_id is None:
                                stats.record_unresolved("creators", marvel_id)
                                continue
                            triple = (root_id, creator_id, role)
                            if triple in existing:
                                stats.already_linked += 1
                                continue
                            existing.add(triple)
                            new_rows.append({root_fk: root_id, "creator_id": creator_id, "role": role})

                    if new_rows:
                        await session.execute(insert(join_table), new_rows)
                        stats.linked += len(new_rows)
                    await session.commit()
                    session.expunge_all()

        logger.info(f"[LINKER] {name}: {stats.to_dict()}")
        return stats

    async def link_comic_creators(self) -> PassStats:
        return await self._link_creators("comic_creators", Comic, comic_creators, "comic_id")

    async def link_serie_creators(self) -> PassStats:
        return await self._link_creators("serie_creators", Serie, serie_creators, "serie_id")

    # =========================================================================
    # ALL PASSES
    # =========================================================================

    async def link_all(self) -> LinkStats:
        """Run every pass in dependency order."""
        stats = LinkStats()
        for link_pass in (
            self.link_comic_series,
            self.link_comic_characters,
            self.link_serie_characters,
            self.link_comic_creators,
            self.link_serie_creators,
        ):
            result = await link_pass()
            stats.passes[result.name] = result
        return stats
