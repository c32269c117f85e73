"""
Record Normalizer

Pure functions mapping raw upstream records to flat, column-shaped records.
No I/O, no session access: the importer decides what to persist.

Rules carried over from the Marvel payload conventions:
- Cross-references arrive as resourceURIs; the external id is the trailing
  numeric path segment
- The on-sale date is the "onsaleDate" entry of the dates list; sentinel
  years (0001, 1899, 1900) mean "unknown"
- Thumbnails pointing at the "image_not_available" placeholder are dropped
- Creators with no name at all are skipped
"""
import datetime
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from slugify import slugify

from marvel_catalog.core.exceptions import DecodingError

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description available"
UNTITLED = "Untitled"
PLACEHOLDER_IMAGE_MARKER = "image_not_available"
MIN_VALID_YEAR = 1900  # Years at or below are upstream sentinels

_TRAILING_ID = re.compile(r'/(\d+)$')


# =============================================================================
# FIELD HELPERS
# =============================================================================


def catch_id_with_uri(uri: Optional[str]) -> Optional[int]:
    """
    Extract the trailing numeric id from a resource URI.

    >>> catch_id_with_uri("http://gateway.marvel.com/v1/public/comics/4001")
    4001
    """
    if not uri or not isinstance(uri, str):
        return None
    match = _TRAILING_ID.search(uri.strip())
    if not match:
        return None
    return int(match.group(1))


def extract_onsale_date(dates: Optional[List[Dict[str, Any]]]) -> Optional[datetime.date]:
    """
    Return the on-sale date from an upstream dates list.

    Uses the first "onsaleDate" entry with a non-empty value. Unparseable
    values and years <= 1900 return None.
    """
    for entry in dates or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("type") != "onsaleDate" or not entry.get("date"):
            continue
        try:
            parsed = date_parser.parse(entry["date"])
        except (ValueError, OverflowError, TypeError):
            logger.debug(f"[NORMALIZER] Unparseable onsaleDate: {entry['date']!r}")
            return None
        if parsed.year > MIN_VALID_YEAR:
            return parsed.date()
        # Sentinel date; a later entry may still be valid
    return None


def build_thumbnail(thumbnail: Optional[Dict[str, Any]]) -> str:
    """Join path and extension; placeholder images become an empty string."""
    if not thumbnail or not thumbnail.get("path"):
        return ""
    path = thumbnail["path"]
    if PLACEHOLDER_IMAGE_MARKER in path:
        return ""
    extension = thumbnail.get("extension") or ""
    return f"{path}.{extension}" if extension else path


def display_thumbnail(thumbnail: Optional[str], fallback: str) -> str:
    """Thumbnail to render, falling back to the static placeholder asset."""
    return thumbnail if thumbnail else fallback


def make_slug(title: Optional[str]) -> str:
    """Transliterated, lowercase, hyphen-separated slug. Not unique."""
    if not title:
        return "untitled"
    return slugify(title) or "untitled"


def _description(raw: Dict[str, Any]) -> str:
    value = raw.get("description")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return NO_DESCRIPTION


def _require_id(raw: Dict[str, Any], resource_type: str) -> int:
    value = raw.get("id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DecodingError(
            f"{resource_type} record without a usable id",
            details={"resource_type": resource_type, "id": value},
        )


def _reference_ids(container: Optional[Dict[str, Any]]) -> List[int]:
    """External ids from a {"items": [{"resourceURI": ...}]} block, dropping bad ones."""
    ids = []
    for item in (container or {}).get("items") or []:
        marvel_id = catch_id_with_uri((item or {}).get("resourceURI"))
        if marvel_id is not None:
            ids.append(marvel_id)
    return ids


def _creator_credits(container: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "marvelCreatorId": catch_id_with_uri((item or {}).get("resourceURI")),
            "role": (item or {}).get("role") or "",
        }
        for item in (container or {}).get("items") or []
    ]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# NORMALIZED RECORDS
# =============================================================================


@dataclass
class NormalizedCharacter:
    marvel_id: int
    name: str
    description: str = NO_DESCRIPTION
    thumbnail: str = ""
    modified: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedComic:
    marvel_id: int
    title: str
    slug: str
    description: str = NO_DESCRIPTION
    thumbnail: str = ""
    page_count: int = 0
    date: Optional[datetime.date] = None
    modified: Optional[str] = None
    variants: List[int] = field(default_factory=list)
    creators: List[Dict[str, Any]] = field(default_factory=list)
    marvel_id_serie: Optional[int] = None
    marvel_ids_character: List[int] = field(default_factory=list)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedCreator:
    marvel_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    thumbnail: str = ""
    modified: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedSerie:
    marvel_id: int
    title: str
    description: str = NO_DESCRIPTION
    thumbnail: str = ""
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    modified: Optional[str] = None
    creators: List[Dict[str, Any]] = field(default_factory=list)
    marvel_ids_character: List[int] = field(default_factory=list)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# NORMALIZERS
# =============================================================================


def normalize_character(raw: Dict[str, Any]) -> NormalizedCharacter:
    marvel_id = _require_id(raw, "characters")
    return NormalizedCharacter(
        marvel_id=marvel_id,
        name=(raw.get("name") or "").strip() or f"Unknown {marvel_id}",
        description=_description(raw),
        thumbnail=build_thumbnail(raw.get("thumbnail")),
        modified=raw.get("modified"),
    )


def normalize_comic(raw: Dict[str, Any]) -> NormalizedComic:
    title = raw.get("title") or UNTITLED
    return NormalizedComic(
        marvel_id=_require_id(raw, "comics"),
        title=title,
        slug=make_slug(raw.get("title")),
        description=_description(raw),
        thumbnail=build_thumbnail(raw.get("thumbnail")),
        page_count=_to_int(raw.get("pageCount")) or 0,
        date=extract_onsale_date(raw.get("dates")),
        modified=raw.get("modified"),
        variants=[
            marvel_id
            for marvel_id in (catch_id_with_uri((v or {}).get("resourceURI")) for v in raw.get("variants") or [])
            if marvel_id is not None
        ],
        creators=_creator_credits(raw.get("creators")),
        marvel_id_serie=catch_id_with_uri((raw.get("series") or {}).get("resourceURI")),
        marvel_ids_character=_reference_ids(raw.get("characters")),
    )


def normalize_creator(raw: Dict[str, Any]) -> Optional[NormalizedCreator]:
    """Returns None for creators with no full, first or last name."""
    full_name = (raw.get("fullName") or "").strip()
    first_name = (raw.get("firstName") or "").strip()
    last_name = (raw.get("lastName") or "").strip()
    if not (full_name or first_name or last_name):
        return None

    return NormalizedCreator(
        marvel_id=_require_id(raw, "creators"),
        first_name=first_name or None,
        last_name=last_name or None,
        full_name=full_name or " ".join(part for part in (first_name, last_name) if part),
        thumbnail=build_thumbnail(raw.get("thumbnail")),
        modified=raw.get("modified"),
    )


def normalize_serie(raw: Dict[str, Any]) -> NormalizedSerie:
    return NormalizedSerie(
        marvel_id=_require_id(raw, "series"),
        title=raw.get("title") or UNTITLED,
        description=_description(raw),
        thumbnail=build_thumbnail(raw.get("thumbnail")),
        start_year=_to_int(raw.get("startYear")),
        end_year=_to_int(raw.get("endYear")),
        modified=raw.get("modified"),
        creators=_creator_credits(raw.get("creators")),
        marvel_ids_character=_reference_ids(raw.get("characters")),
    )


NORMALIZERS = {
    "characters": normalize_character,
    "comics": normalize_comic,
    "creators": normalize_creator,
    "series": normalize_serie,
}


def normalize(resource_type: str, raw: Dict[str, Any]):
    """Dispatch to the normalizer for resource_type. May return None (skipped record)."""
    try:
        normalizer = NORMALIZERS[resource_type]
    except KeyError:
        raise ValueError(f"Unknown resource type: {resource_type}")
    return normalizer(raw)
