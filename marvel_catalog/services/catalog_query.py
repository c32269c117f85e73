"""
Catalog Query Service

Read-only, paginated views over the catalog, served from two stores:

- list_entities / count_entities: relational store, exclusion vocabulary
  applied as case-insensitive NOT LIKE filters, natural title order; the
  natural sort runs in Python over the whole filtered table on every
  uncached page
- search_entities: search index, fuzzy AND match with the same vocabulary
  as must_not clauses; at most SEARCH_CANDIDATE_CAP candidates are fetched
  and the requested page is sliced from them in memory
- recent_comics: newest released comics for the landing page
- get_*_detail: one entity by external id with its related entities;
  creator credits carry their role, variants without artwork are dropped

Pages outside 1..max(total_pages, 1) raise PageOutOfRange; the caller is
expected to redirect to page 1. Results can be cached in a QueryCache.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, not_, select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import async_sessionmaker

from marvel_catalog.core.config import settings
from marvel_catalog.core.database import AsyncSessionLocal
from marvel_catalog.core.query_cache import QueryCache
from marvel_catalog.models.catalog import Character, Comic, Creator, Serie, comic_creators, serie_creators
from marvel_catalog.schemas.catalog import (
    CatalogItem,
    CatalogPage,
    CharacterDetail,
    CharacterListItem,
    ComicDetail,
    ComicListItem,
    CreatorCredit,
    CreatorDetail,
    CreatorListItem,
    CreditedWork,
    PagingInfo,
    SerieDetail,
    SerieListItem,
    VariantItem,
)
from marvel_catalog.services.normalizer import display_thumbnail
from marvel_catalog.services.paging import Paging, compute_paging
from marvel_catalog.services.relationship_linker import coerce_marvel_id
from marvel_catalog.services.search_index import SEARCH_FIELDS, SearchIndexClient, build_search_body
from marvel_catalog.utils.natural_sort import natural_sort_key, natural_sorted

logger = logging.getLogger(__name__)

# Title terms hidden from list and search results
EXCLUDED_TITLE_TERMS: Dict[str, Tuple[str, ...]] = {
    "comics": ("variant", "paperback", "hardcover", "mini-poster"),
    "series": ("variant", "paperback", "hardcover", "omnibus", "mini-poster"),
    "characters": (),
    "creators": (),
}

# entity type -> (model, display column, projection)
_LISTINGS = {
    "comics": (Comic, Comic.title, (Comic.marvel_id, Comic.title, Comic.date, Comic.thumbnail)),
    "series": (Serie, Serie.title, (Serie.marvel_id, Serie.title, Serie.thumbnail)),
    "characters": (Character, Character.name, (Character.marvel_id, Character.name, Character.thumbnail)),
    "creators": (Creator, Creator.full_name, (Creator.marvel_id, Creator.full_name, Creator.thumbnail)),
}


def is_excluded(entity_type: str, title: Optional[str]) -> bool:
    """Case-insensitive substring match against the exclusion vocabulary."""
    lowered = (title or "").lower()
    return any(term in lowered for term in EXCLUDED_TITLE_TERMS[entity_type])


def _paging_info(paging: Paging) -> PagingInfo:
    return PagingInfo(
        page=paging.page,
        items_per_page=paging.items_per_page,
        total_pages=paging.total_pages,
        start_page=paging.start_page,
        end_page=paging.end_page,
        pages=paging.pages,
    )


class CatalogQueryService:
    """
    Usage:
        service = CatalogQueryService(index_client=SearchIndexClient())
        page = await service.list_entities("comics", page=2, items_per_page=20)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        index_client: Optional[SearchIndexClient] = None,
        cache: Optional[QueryCache] = None,
        candidate_cap: Optional[int] = None,
        window: Optional[int] = None,
        fallback_thumbnail: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.index_client = index_client
        self.cache = cache
        self.candidate_cap = candidate_cap or settings.SEARCH_CANDIDATE_CAP
        self.window = window or settings.PAGER_WINDOW_SIZE
        self.fallback_thumbnail = (
            settings.FALLBACK_THUMBNAIL_URL if fallback_thumbnail is None else fallback_thumbnail
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _listing(self, entity_type: str):
        try:
            return _LISTINGS[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type}")

    def _exclusion_filters(self, entity_type: str, column) -> List[Any]:
        return [not_(func.lower(column).like(f"%{term}%")) for term in EXCLUDED_TITLE_TERMS[entity_type]]

    def _to_item(self, entity_type: str, data: Dict[str, Any]) -> CatalogItem:
        thumbnail = self._thumb(data.get("thumbnail"))
        if entity_type == "comics":
            return ComicListItem(
                marvel_id=data["marvel_id"], title=data["title"], date=data.get("date"), thumbnail=thumbnail
            )
        if entity_type == "series":
            return SerieListItem(marvel_id=data["marvel_id"], title=data["title"], thumbnail=thumbnail)
        if entity_type == "creators":
            return CreatorListItem(marvel_id=data["marvel_id"], full_name=data["full_name"] or "", thumbnail=thumbnail)
        return CharacterListItem(marvel_id=data["marvel_id"], name=data["name"], thumbnail=thumbnail)

    def _thumb(self, value: Optional[str]) -> str:
        return display_thumbnail(value, self.fallback_thumbnail)

    def _cached(self, operation: str, entity_type: str, **params) -> Optional[Any]:
        if self.cache is None:
            return None
        return self.cache.get(operation, entity_type, **params)

    def _store(self, operation: str, entity_type: str, value: Any, ttl: int, **params) -> None:
        if self.cache is not None:
            self.cache.set(operation, entity_type, value, ttl_seconds=ttl, **params)

    # =========================================================================
    # RELATIONAL PATH
    # =========================================================================

    async def count_entities(self, entity_type: str) -> int:
        """Total rows of entity_type under the exclusion filter."""
        model, column, _ = self._listing(entity_type)
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(model.id)).where(*self._exclusion_filters(entity_type, column))
            )
            return result.scalar_one()

    async def list_entities(self, entity_type: str, page: int = 1, items_per_page: int = 20) -> CatalogPage:
        """
        Filtered, naturally ordered page of entity_type.

        Natural order cannot be expressed in SQL, so every uncached call loads
        the whole filtered projection and sorts it in Python: the cost is
        O(catalog) per page, not O(page). Pass a QueryCache for repeat pages.
        """
        cached = self._cached("list", entity_type, page=page, per_page=items_per_page)
        if cached is not None:
            return cached

        model, column, projection = self._listing(entity_type)
        total = await self.count_entities(entity_type)
        paging = compute_paging(total, page, items_per_page, self.window)

        async with self.session_factory() as session:
            result = await session.execute(
                select(*projection)
                .where(*self._exclusion_filters(entity_type, column))
                .order_by(column, model.marvel_id)
            )
            rows = [dict(row._mapping) for row in result.all()]

        title_key = column.key
        rows.sort(key=lambda row: natural_sort_key(row[title_key] or ""))
        window_rows = rows[paging.offset:paging.offset + items_per_page]

        page_result = CatalogPage(
            total_items=total,
            items=[self._to_item(entity_type, row) for row in window_rows],
            paging=_paging_info(paging),
        )
        self._store("list", entity_type, page_result, settings.LIST_CACHE_TTL_SECONDS, page=page, per_page=items_per_page)
        return page_result

    async def recent_comics(self, limit: int = 30, today: Optional[date] = None) -> List[ComicListItem]:
        """Newest comics already on sale, same exclusion vocabulary."""
        today = today or date.today()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Comic.marvel_id, Comic.title, Comic.date, Comic.thumbnail)
                .where(Comic.date.is_not(None), Comic.date <= today)
                .where(*self._exclusion_filters("comics", Comic.title))
                .order_by(Comic.date.desc(), Comic.marvel_id)
                .limit(limit)
            )
            return [self._to_item("comics", dict(row._mapping)) for row in result.all()]

    # =========================================================================
    # DETAIL VIEWS
    # =========================================================================

    def _comic_items(self, comics) -> List[ComicListItem]:
        comics = natural_sorted(comics, key=lambda c: c.title)
        return [
            ComicListItem(marvel_id=c.marvel_id, title=c.title, date=c.date, thumbnail=self._thumb(c.thumbnail))
            for c in comics
        ]

    def _serie_items(self, series) -> List[SerieListItem]:
        series = natural_sorted(series, key=lambda s: s.title)
        return [SerieListItem(marvel_id=s.marvel_id, title=s.title, thumbnail=self._thumb(s.thumbnail)) for s in series]

    def _character_items(self, characters) -> List[CharacterListItem]:
        characters = natural_sorted(characters, key=lambda c: c.name)
        return [
            CharacterListItem(marvel_id=c.marvel_id, name=c.name, thumbnail=self._thumb(c.thumbnail))
            for c in characters
        ]

    async def _credits(self, session, credit_table, owner_column, owner_id: int) -> List[CreatorCredit]:
        """Creators credited on one comic or series, with their role."""
        result = await session.execute(
            select(Creator.marvel_id, Creator.full_name, Creator.thumbnail, credit_table.c.role)
            .join(credit_table, credit_table.c.creator_id == Creator.id)
            .where(owner_column == owner_id)
            .order_by(credit_table.c.role, Creator.full_name, Creator.marvel_id)
        )
        return [
            CreatorCredit(
                marvel_id=row.marvel_id,
                full_name=row.full_name or "",
                role=row.role or "",
                thumbnail=self._thumb(row.thumbnail),
            )
            for row in result.all()
        ]

    async def _credited_works(self, session, model, credit_table, owner_column, creator_id: int) -> List[CreditedWork]:
        """Reverse credit lookup: comics or series a creator worked on."""
        result = await session.execute(
            select(model.marvel_id, model.title, model.thumbnail, credit_table.c.role)
            .join(credit_table, owner_column == model.id)
            .where(credit_table.c.creator_id == creator_id)
        )
        rows = sorted(result.all(), key=lambda row: (natural_sort_key(row.title or ""), row.role or ""))
        return [
            CreditedWork(
                marvel_id=row.marvel_id,
                title=row.title,
                role=row.role or "",
                thumbnail=self._thumb(row.thumbnail),
            )
            for row in rows
        ]

    async def _variants(self, session, recorded_ids) -> List[VariantItem]:
        """Recorded variant ids resolved to local comics that have artwork, in recorded order."""
        variant_ids = []
        for value in recorded_ids or []:
            marvel_id = coerce_marvel_id(value)
            if marvel_id is not None and marvel_id not in variant_ids:
                variant_ids.append(marvel_id)
        if not variant_ids:
            return []

        result = await session.execute(
            select(Comic.marvel_id, Comic.title, Comic.description, Comic.slug, Comic.thumbnail)
            .where(Comic.marvel_id.in_(variant_ids))
            .where(Comic.thumbnail.is_not(None), Comic.thumbnail != "")
        )
        found = {row.marvel_id: row for row in result.all()}
        return [
            VariantItem(
                marvel_id=found[marvel_id].marvel_id,
                title=found[marvel_id].title,
                description=found[marvel_id].description,
                slug=found[marvel_id].slug,
                thumbnail=found[marvel_id].thumbnail,
            )
            for marvel_id in variant_ids
            if marvel_id in found
        ]

    async def get_comic_detail(self, marvel_id: int) -> Optional[ComicDetail]:
        """
        One comic with its series, characters, creator credits and variants.

        Returns None when no comic has this external id.
        """
        cached = self._cached("detail", "comics", marvel_id=marvel_id)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            result = await session.execute(
                select(Comic)
                .where(Comic.marvel_id == marvel_id)
                .options(selectinload(Comic.serie), selectinload(Comic.characters))
            )
            comic = result.scalar_one_or_none()
            if comic is None:
                return None

            creators = await self._credits(session, comic_creators, comic_creators.c.comic_id, comic.id)
            variants = await self._variants(session, comic.variants)

        serie = None
        if comic.serie is not None:
            serie = SerieListItem(
                marvel_id=comic.serie.marvel_id,
                title=comic.serie.title,
                thumbnail=self._thumb(comic.serie.thumbnail),
            )

        detail = ComicDetail(
            marvel_id=comic.marvel_id,
            title=comic.title,
            description=comic.description,
            page_count=comic.page_count,
            date=comic.date,
            slug=comic.slug,
            thumbnail=self._thumb(comic.thumbnail),
            serie=serie,
            characters=self._character_items(comic.characters),
            creators=creators,
            variants=variants,
        )
        self._store("detail", "comics", detail, settings.LIST_CACHE_TTL_SECONDS, marvel_id=marvel_id)
        return detail

    async def get_serie_detail(self, marvel_id: int) -> Optional[SerieDetail]:
        cached = self._cached("detail", "series", marvel_id=marvel_id)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            result = await session.execute(
                select(Serie)
                .where(Serie.marvel_id == marvel_id)
                .options(selectinload(Serie.comics), selectinload(Serie.characters))
            )
            serie = result.scalar_one_or_none()
            if serie is None:
                return None
            creators = await self._credits(session, serie_creators, serie_creators.c.serie_id, serie.id)

        detail = SerieDetail(
            marvel_id=serie.marvel_id,
            title=serie.title,
            description=serie.description,
            start_year=serie.start_year,
            end_year=serie.end_year,
            thumbnail=self._thumb(serie.thumbnail),
            comics=self._comic_items(serie.comics),
            characters=self._character_items(serie.characters),
            creators=creators,
        )
        self._store("detail", "series", detail, settings.LIST_CACHE_TTL_SECONDS, marvel_id=marvel_id)
        return detail

    async def get_character_detail(self, marvel_id: int) -> Optional[CharacterDetail]:
        cached = self._cached("detail", "characters", marvel_id=marvel_id)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            result = await session.execute(
                select(Character)
                .where(Character.marvel_id == marvel_id)
                .options(selectinload(Character.comics), selectinload(Character.series))
            )
            character = result.scalar_one_or_none()
            if character is None:
                return None

        detail = CharacterDetail(
            marvel_id=character.marvel_id,
            name=character.name,
            description=character.description,
            thumbnail=self._thumb(character.thumbnail),
            comics=self._comic_items(character.comics),
            series=self._serie_items(character.series),
        )
        self._store("detail", "characters", detail, settings.LIST_CACHE_TTL_SECONDS, marvel_id=marvel_id)
        return detail

    async def get_creator_detail(self, marvel_id: int) -> Optional[CreatorDetail]:
        """A creator with every comic and series credit, looked up by creator id."""
        cached = self._cached("detail", "creators", marvel_id=marvel_id)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            result = await session.execute(select(Creator).where(Creator.marvel_id == marvel_id))
            creator = result.scalar_one_or_none()
            if creator is None:
                return None

            comics = await self._credited_works(
                session, Comic, comic_creators, comic_creators.c.comic_id, creator.id
            )
            series = await self._credited_works(
                session, Serie, serie_creators, serie_creators.c.serie_id, creator.id
            )

        detail = CreatorDetail(
            marvel_id=creator.marvel_id,
            full_name=creator.full_name or "",
            first_name=creator.first_name,
            last_name=creator.last_name,
            thumbnail=self._thumb(creator.thumbnail),
            comics=comics,
            series=series,
        )
        self._store("detail", "creators", detail, settings.LIST_CACHE_TTL_SECONDS, marvel_id=marvel_id)
        return detail

    # =========================================================================
    # SEARCH PATH
    # =========================================================================

    async def search_entities(
        self,
        entity_type: str,
        query: str,
        page: int = 1,
        items_per_page: int = 20,
    ) -> CatalogPage:
        """
        Fuzzy search over the index.

        Only the first SEARCH_CANDIDATE_CAP matches are considered; larger
        result sets are truncated.
        """
        if entity_type not in SEARCH_FIELDS:
            raise ValueError(f"Entity type is not searchable: {entity_type}")

        query = (query or "").strip()
        if not query:
            return CatalogPage(
                total_items=0,
                items=[],
                paging=_paging_info(compute_paging(0, 1, items_per_page, self.window)),
            )

        cached = self._cached("search", entity_type, query=query, page=page, per_page=items_per_page)
        if cached is not None:
            return cached

        if self.index_client is None:
            raise RuntimeError("CatalogQueryService needs an index_client to search")

        field = SEARCH_FIELDS[entity_type]
        body = build_search_body(
            field,
            query,
            exclude=list(EXCLUDED_TITLE_TERMS[entity_type]),
            size=self.candidate_cap,
        )
        hits = await self.index_client.search(entity_type, body)

        candidates = []
        for source in hits[:self.candidate_cap]:
            if source.get("marvelId") is None or is_excluded(entity_type, source.get(field)):
                continue
            candidates.append({
                "marvel_id": source["marvelId"],
                field: source.get(field) or "",
                "date": source.get("date"),
                "thumbnail": source.get("thumbnail"),
            })

        paging = compute_paging(len(candidates), page, items_per_page, self.window)
        window_rows = candidates[paging.offset:paging.offset + items_per_page]

        page_result = CatalogPage(
            total_items=len(candidates),
            items=[self._to_item(entity_type, row) for row in window_rows],
            paging=_paging_info(paging),
        )
        logger.debug(f"[QUERY] search {entity_type} {query!r}: {len(candidates)} candidates")
        self._store(
            "search", entity_type, page_result, settings.SEARCH_CACHE_TTL_SECONDS,
            query=query, page=page, per_page=items_per_page,
        )
        return page_result
