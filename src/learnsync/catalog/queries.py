"""Collection query parameters and page normalization.

Pure functions only: building the query string for GET /courses and
turning the different list response shapes into one Page object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from learnsync.api.schemas import Pagination, unwrap_data

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 12


class SortKey(str, Enum):
    """Course listing order understood by the backend."""

    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"
    RATING = "rating"
    POPULARITY = "popularity"


# Spellings used by older screens
_SORT_ALIASES = {
    "popular": SortKey.POPULARITY,
    "price_low": SortKey.PRICE_LOW,
    "price_high": SortKey.PRICE_HIGH,
}


def normalize_sort_key(value: str | SortKey | None) -> SortKey:
    """Map any input to a valid SortKey. Unknown or missing -> NEWEST."""
    if isinstance(value, SortKey):
        return value
    if not value:
        return SortKey.NEWEST
    text = str(value).strip().lower()
    if text in _SORT_ALIASES:
        return _SORT_ALIASES[text]
    try:
        return SortKey(text)
    except ValueError:
        return SortKey.NEWEST


@dataclass(frozen=True)
class CourseFilters:
    """Filters for the course listing."""

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    search: str | None = None
    category: str | None = None
    level: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    rating: float | None = None
    sort_by: str | SortKey | None = None


def build_course_params(filters: CourseFilters | None = None) -> dict[str, Any]:
    """Build query parameters for GET /courses.

    page, limit and sortBy are always present; other filters only when set.

    Args:
        filters: Listing filters (defaults when None)

    Returns:
        Parameter dict using the backend's camelCase names
    """
    filters = filters or CourseFilters()
    page = filters.page if filters.page and filters.page > 0 else DEFAULT_PAGE
    limit = filters.limit if filters.limit and filters.limit > 0 else DEFAULT_LIMIT

    params: dict[str, Any] = {
        "page": page,
        "limit": limit,
        "sortBy": normalize_sort_key(filters.sort_by).value,
    }

    optional = {
        "search": filters.search.strip() if filters.search else None,
        "category": filters.category,
        "level": filters.level,
        "minPrice": filters.min_price,
        "maxPrice": filters.max_price,
        "rating": filters.rating,
    }
    for key, value in optional.items():
        if value is None or value == "":
            continue
        params[key] = value

    return params


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a collection."""

    items: list[T] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)

    @property
    def has_next(self) -> bool:
        return self.pagination.current_page < self.pagination.total_pages

    @property
    def has_prev(self) -> bool:
        return self.pagination.current_page > 1


def normalize_page(
    body: Any,
    items_key: str,
    model: type[BaseModel] | None = None,
) -> Page:
    """Turn a list response into a Page.

    Accepts `{data: {<items_key>: [...], pagination}}`, the same without
    the data envelope, and a bare list. Missing pagination is derived from
    the item count.

    Args:
        body: Parsed JSON response
        items_key: Name of the item list, e.g. "courses"
        model: Optional pydantic model to validate each item with

    Raises:
        pydantic.ValidationError: If an item does not match model
    """
    data = unwrap_data(body)
    pagination_data: Any = None

    if isinstance(data, list):
        raw_items = data
    elif isinstance(data, dict):
        raw_items = data.get(items_key)
        if raw_items is None and isinstance(body, dict):
            raw_items = body.get(items_key)
        pagination_data = data.get("pagination")
        if pagination_data is None and isinstance(body, dict):
            pagination_data = body.get("pagination")
    else:
        raw_items = None

    if not isinstance(raw_items, list):
        raw_items = []

    items = [model.model_validate(item) for item in raw_items] if model else list(raw_items)

    if isinstance(pagination_data, dict):
        pagination = Pagination.model_validate(pagination_data)
    else:
        pagination = Pagination(
            current_page=1,
            total_pages=1,
            total_items=len(items),
            limit=len(items),
        )

    return Page(items=items, pagination=pagination)
