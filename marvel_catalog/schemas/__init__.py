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
