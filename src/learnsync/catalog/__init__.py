"""Course collections: query building, page normalization, catalog state."""

from learnsync.catalog.catalog import CatalogState, CourseCatalog
from learnsync.catalog.queries import (
    CourseFilters,
    Page,
    SortKey,
    build_course_params,
    normalize_page,
    normalize_sort_key,
)

__all__ = [
    "CatalogState",
    "CourseCatalog",
    "CourseFilters",
    "Page",
    "SortKey",
    "build_course_params",
    "normalize_page",
    "normalize_sort_key",
]
