"""
Natural ordering for catalog titles.

"Issue 2" sorts before "Issue 10"; comparison ignores case.
"""
import re
from typing import Any, Callable, Iterable, List, Tuple, TypeVar

T = TypeVar("T")

_DIGITS = re.compile(r'(\d+)')


def natural_sort_key(value: str) -> Tuple[Any, ...]:
    """
    Split a string into text and integer chunks for natural comparison.

    Each chunk becomes a (kind, value) pair so integers and text never get
    compared with each other: ints sort before text at the same position.
    """
    if not value:
        return ()
    key = []
    for chunk in _DIGITS.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), ""))
        else:
            key.append((1, 0, chunk.casefold()))
    return tuple(key)


def natural_sorted(items: Iterable[T], key: Callable[[T], str] = None) -> List[T]:
    """Return items sorted in natural order, optionally by a string attribute."""
    if key is None:
        return sorted(items, key=lambda item: natural_sort_key(item))
    return sorted(items, key=lambda item: natural_sort_key(key(item) or ""))
