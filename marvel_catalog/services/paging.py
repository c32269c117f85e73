"""
Pagination math for catalog pages.

The pager shows a sliding window of page links: the current page sits about
a third of the way into the window.
"""
import math
from dataclasses import dataclass
from typing import List

from marvel_catalog.core.exceptions import PageOutOfRange

DEFAULT_WINDOW = 8


@dataclass(frozen=True)
class Paging:
    page: int
    items_per_page: int
    total_items: int
    total_pages: int
    start_page: int
    end_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.items_per_page

    @property
    def pages(self) -> List[int]:
        """Page numbers to render in the pager window."""
        return list(range(self.start_page, self.end_page + 1))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def compute_paging(total_items: int, page: int, items_per_page: int, window: int = DEFAULT_WINDOW) -> Paging:
    """
    total_pages = ceil(total_items / items_per_page)
    start_page  = max(1, page - window // 3)
    end_page    = min(total_pages, start_page + window - 1)

    Raises PageOutOfRange for page < 1 or page > max(total_pages, 1), so an
    empty result set still has a valid page 1.
    """
    if items_per_page < 1:
        raise ValueError("items_per_page must be at least 1")
    if window < 1:
        raise ValueError("window must be at least 1")

    total_items = max(0, total_items)
    total_pages = math.ceil(total_items / items_per_page)

    if page < 1 or page > max(total_pages, 1):
        raise PageOutOfRange(page, total_pages)

    start_page = max(1, page - window // 3)
    end_page = min(total_pages, start_page + window - 1)

    return Paging(
        page=page,
        items_per_page=items_per_page,
        total_items=total_items,
        total_pages=total_pages,
        start_page=start_page,
        end_page=end_page,
    )
