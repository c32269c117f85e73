from marvel_catalog.models.catalog import (
    Character,
    Comic,
    Creator,
    Serie,
    comic_characters,
    serie_characters,
    comic_creators,
    serie_creators,
    MODEL_BY_RESOURCE,
)
