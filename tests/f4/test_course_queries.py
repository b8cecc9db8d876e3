"""Tests for course query building and page normalization (F4)."""

import pytest

from learnsync.api.schemas import CourseSummary
from learnsync.catalog.queries import (
    CourseFilters,
    SortKey,
    build_course_params,
    normalize_page,
    normalize_sort_key,
)


class TestSortKey:
    """Tests for sort key normalization."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, SortKey.NEWEST),
            ("", SortKey.NEWEST),
            ("bogus", SortKey.NEWEST),
            ("rating", SortKey.RATING),
            ("PRICE-LOW", SortKey.PRICE_LOW),
            ("popular", SortKey.POPULARITY),
            (SortKey.OLDEST, SortKey.OLDEST),
        ],
    )
    def test_normalize(self, value, expected):
        """Unknown or missing values fall back to newest."""
        assert normalize_sort_key(value) is expected


class TestBuildCourseParams:
    """Tests for GET /courses parameters."""

    def test_defaults_always_include_sort(self):
        """Even with no filters, sortBy is present."""
        assert build_course_params() == {"page": 1, "limit": 12, "sortBy": "newest"}

    def test_unknown_sort_still_sent(self):
        """An invalid sort value becomes newest, never absent."""
        params = build_course_params(CourseFilters(sort_by="whatever"))
        assert params["sortBy"] == "newest"

    def test_filters_use_backend_names(self):
        """Snake-case filters map to camelCase parameters."""
        params = build_course_params(
            CourseFilters(
                page=2,
                limit=24,
                search="  python ",
                category="programming",
                level="beginner",
                min_price=0,
                max_price=50,
                rating=4,
                sort_by="price-high",
            )
        )
        assert params == {
            "page": 2,
            "limit": 24,
            "sortBy": "price-high",
            "search": "python",
            "category": "programming",
            "level": "beginner",
            "minPrice": 0,
            "maxPrice": 50,
            "rating": 4,
        }

    def test_empty_filters_omitted(self):
        """Blank strings and None are not sent."""
        params = build_course_params(CourseFilters(search="", category=None))
        assert "search" not in params
        assert "category" not in params

    def test_invalid_page_falls_back(self):
        """Non-positive page and limit use defaults."""
        params = build_course_params(CourseFilters(page=0, limit=-5))
        assert params["page"] == 1
        assert params["limit"] == 12


class TestNormalizePage:
    """Tests for list response normalization."""

    def test_enveloped_response(self):
        """data.courses and data.pagination are read."""
        body = {
            "success": True,
            "data": {
                "courses": [{"_id": "c1", "title": "Python", "averageRating": 4.5}],
                "pagination": {"currentPage": 2, "totalPages": 5, "totalCourses": 48},
            },
        }
        page = normalize_page(body, "courses", CourseSummary)
        assert page.items[0].id == "c1"
        assert page.items[0].rating == 4.5
        assert page.pagination.current_page == 2
        assert page.pagination.total_pages == 5
        assert page.pagination.total_items == 48
        assert page.has_next and page.has_prev

    def test_top_level_items(self):
        """Items beside the envelope are accepted too."""
        body = {
            "success": True,
            "courses": [{"id": 7}],
            "pagination": {"page": 1, "pages": 1, "total": 1},
        }
        page = normalize_page(body, "courses", CourseSummary)
        assert page.items[0].id == "7"
        assert page.pagination.total_items == 1
        assert not page.has_next

    def test_bare_list_without_pagination(self):
        """A list body derives pagination from its length."""
        page = normalize_page({"success": True, "data": ["a", "b"]}, "categories")
        assert page.items == ["a", "b"]
        assert page.pagination.total_items == 2
        assert page.pagination.total_pages == 1

    def test_missing_items(self):
        """No items key gives an empty page."""
        page = normalize_page({"success": True, "data": {}}, "courses")
        assert page.items == []
