"""
Catalog query schemas

Lightweight list items (external id + display fields), the page envelope
returned by the query layer, and the detail views that pull an entity
together with its related entities.
"""
import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict


class ComicListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    marvel_id: int
    title: str
    date: Optional[datetime.date] = None
    thumbnail: str


class SerieListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    marvel_id: int
    title: str
    thumbnail: str


class CharacterListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    marvel_id: int
    name: str
    thumbnail: str


class CreatorListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    marvel_id: int
    full_name: str
    thumbnail: str


CatalogItem = Union[ComicListItem, SerieListItem, CharacterListItem, CreatorListItem]


class PagingInfo(BaseModel):
    page: int
    items_per_page: int
    total_pages: int
    start_page: int
    end_page: int
    pages: List[int] = []


class CatalogPage(BaseModel):
    total_items: int
    items: List[CatalogItem] = []
    paging: PagingInfo


# =============================================================================
# DETAIL VIEWS
# =============================================================================


class CreatorCredit(BaseModel):
    """A creator as credited on one comic or series."""
    marvel_id: int
    full_name: str
    role: str
    thumbnail: str


class CreditedWork(BaseModel):
    """A comic or series seen from the creator's side, with the role held."""
    marvel_id: int
    title: str
    role: str
    thumbnail: str


class VariantItem(BaseModel):
    """Alternate cover of a comic. Only variants with artwork are listed."""
    marvel_id: int
    title: str
    description: Optional[str] = None
    slug: Optional[str] = None
    thumbnail: str


class ComicDetail(BaseModel):
    marvel_id: int
    title: str
    description: Optional[str] = None
    page_count: Optional[int] = None
    date: Optional[datetime.date] = None
    slug: Optional[str] = None
    thumbnail: str
    serie: Optional[SerieListItem] = None
    characters: List[CharacterListItem] = []
    creators: List[CreatorCredit] = []
    variants: List[VariantItem] = []


class SerieDetail(BaseModel):
    marvel_id: int
    title: str
    description: Optional[str] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    thumbnail: str
    comics: List[ComicListItem] = []
    characters: List[CharacterListItem] = []
    creators: List[CreatorCredit] = []


class CharacterDetail(BaseModel):
    marvel_id: int
    name: str
    description: Optional[str] = None
    thumbnail: str
    comics: List[ComicListItem] = []
    series: List[SerieListItem] = []


class CreatorDetail(BaseModel):
    marvel_id: int
    full_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    thumbnail: str
    comics: List[CreditedWork] = []
    series: List[CreditedWork] = []
