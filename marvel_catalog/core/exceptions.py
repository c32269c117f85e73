"""
Marvel Catalog Exception Hierarchy

Structured exception classes for the ingestion pipeline and query layer.
All exceptions carry code, message and details so job summaries and logs
can report them uniformly.

Exception Hierarchy:
    CatalogBaseError
    ├── UpstreamError
    │   ├── TransportError
    │   ├── UpstreamHttpError
    │   └── DecodingError
    ├── NotFoundReference
    ├── SearchIndexError
    │   └── IndexUnavailable
    ├── PageOutOfRange
    └── JobCancelled
"""
from typing import Optional, Dict, Any


class CatalogBaseError(Exception):
    """
    Base exception for all catalog errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "CATALOG_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

class UpstreamError(CatalogBaseError):
    """Base exception for upstream content API failures."""
    default_code = "UPSTREAM_ERROR"
    default_severity = "P1"


class TransportError(UpstreamError):
    """Network failure or timeout talking to the upstream API."""
    default_code = "UPSTREAM_TRANSPORT_FAILED"


class UpstreamHttpError(UpstreamError):
    """Upstream answered with a non-200 status."""
    default_code = "UPSTREAM_HTTP_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message, details=details, **kwargs)


class DecodingError(UpstreamError):
    """Upstream body could not be decoded into records."""
    default_code = "UPSTREAM_DECODING_FAILED"


# =============================================================================
# LINKING ERRORS
# =============================================================================

class NotFoundReference(CatalogBaseError):
    """A recorded external id has no matching local entity."""
    default_code = "REFERENCE_NOT_FOUND"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        marvel_id: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "entity_type": entity_type,
            "marvel_id": marvel_id,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SEARCH INDEX ERRORS
# =============================================================================

class SearchIndexError(CatalogBaseError):
    """Base exception for search index failures."""
    default_code = "SEARCH_INDEX_ERROR"
    default_severity = "P2"


class IndexUnavailable(SearchIndexError):
    """Search index could not be reached."""
    default_code = "SEARCH_INDEX_UNAVAILABLE"
    default_severity = "P1"


# =============================================================================
# QUERY / JOB ERRORS
# =============================================================================

class PageOutOfRange(CatalogBaseError):
    """Requested page is outside 1..max(total_pages, 1)."""
    default_code = "PAGE_OUT_OF_RANGE"
    default_severity = "P3"

    def __init__(self, page: int, total_pages: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"page": page, "total_pages": total_pages})
        self.page = page
        self.total_pages = total_pages
        super().__init__(
            f"Page {page} is out of range (total pages: {total_pages})",
            details=details,
            **kwargs
        )


class JobCancelled(CatalogBaseError):
    """A batch job was cancelled between pages."""
    default_code = "JOB_CANCELLED"
    default_severity = "P3"
