"""Course catalog: coordinated collection queries with immutable state.

Every fetch goes through FetchCoordinator.run_query, so rapid filter
changes cancel the stale request and only the newest response lands in
CatalogState.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from learnsync.api import endpoints
from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.errors import ApiError, GenericHttpError
from learnsync.api.registry import QueryResult, QueryStatus
from learnsync.api.schemas import Category, Course, CourseSummary, Pagination, unwrap_data
from learnsync.catalog.queries import (
    DEFAULT_LIMIT,
    CourseFilters,
    Page,
    build_course_params,
    normalize_page,
)

logger = structlog.get_logger(__name__)

# Logical query names
COURSES_QUERY = "courses.list"
COURSE_DETAIL_QUERY = "courses.detail"
CATEGORIES_QUERY = "courses.categories"
INSTRUCTOR_COURSES_QUERY = "courses.instructor"
ENROLLED_COURSES_QUERY = "courses.enrolled"


@dataclass(frozen=True)
class CatalogState:
    """Snapshot of everything the catalog has loaded."""

    courses: tuple[CourseSummary, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)
    filters: CourseFilters = field(default_factory=CourseFilters)
    categories: tuple[Category, ...] = ()
    instructor_courses: tuple[CourseSummary, ...] = ()
    enrolled_courses: tuple[CourseSummary, ...] = ()
    current_course: Course | None = None
    is_loading: bool = False
    error: str | None = None


def _malformed(what: str, error: SchemaError) -> GenericHttpError:
    logger.warning("malformed_response", what=what, errors=error.error_count())
    return GenericHttpError(f"Received malformed {what} response")


class CourseCatalog:
    """Loads course collections and course details."""

    def __init__(self, coordinator: FetchCoordinator, default_page_size: int = DEFAULT_LIMIT):
        self._coordinator = coordinator
        self.default_page_size = default_page_size
        self._state = CatalogState(filters=CourseFilters(limit=default_page_size))

    @property
    def state(self) -> CatalogState:
        return self._state

    def _update(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)

    def clear_error(self) -> None:
        self._update(error=None)

    def _record_failure(self, query: str, result: QueryResult) -> None:
        # A newer request for the same query owns the loading/error state
        if result.ok or self._coordinator.in_flight(query):
            return
        if result.cancelled:
            self._update(is_loading=False)
            return
        message = getattr(result.error, "message", str(result.error))
        logger.warning("catalog_query_failed", query=query, error=message)
        self._update(is_loading=False, error=message)

    async def _get_page(
        self,
        endpoint: str,
        params: dict[str, Any] | None,
        model: type[BaseModel],
        what: str,
        items_key: str = "courses",
    ) -> Page:
        body = await self._coordinator.execute("GET", endpoint, params=params)
        try:
            return normalize_page(body, items_key, model)
        except SchemaError as e:
            raise _malformed(what, e) from e

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    async def fetch_courses(
        self, filters: CourseFilters | None = None
    ) -> QueryResult[Page[CourseSummary]]:
        """Load one page of the course listing.

        Args:
            filters: Listing filters (default: first page, configured size)

        Returns:
            QueryResult; CANCELLED if a newer listing request superseded it
        """
        filters = filters or CourseFilters(limit=self.default_page_size)
        params = build_course_params(filters)
        self._update(is_loading=True, filters=filters)

        async def fetch() -> Page[CourseSummary]:
            return await self._get_page(endpoints.COURSES, params, CourseSummary, "course list")

        def apply(page: Page[CourseSummary]) -> None:
            self._update(
                courses=tuple(page.items),
                pagination=page.pagination,
                is_loading=False,
                error=None,
            )
            logger.info(
                "courses_loaded",
                count=len(page.items),
                page=page.pagination.current_page,
                total_pages=page.pagination.total_pages,
            )

        result = await self._coordinator.run_query(COURSES_QUERY, params, fetch, apply)
        self._record_failure(COURSES_QUERY, result)
        return result

    async def fetch_categories(self) -> QueryResult[list[Category]]:
        """Load course categories. Failures are logged, not stored."""

        async def fetch() -> list[Category]:
            page = await self._get_page(
                endpoints.COURSE_CATEGORIES, None, Category, "category", items_key="categories"
            )
            return page.items

        def apply(categories: list[Category]) -> None:
            self._update(categories=tuple(categories))

        result = await self._coordinator.run_query(CATEGORIES_QUERY, None, fetch, apply)
        if result.status is QueryStatus.FAILED:
            logger.warning("categories_fetch_failed", error=str(result.error))
        return result

    async def fetch_instructor_courses(self) -> QueryResult[list[CourseSummary]]:
        """Load courses owned by the signed-in instructor."""
        return await self._fetch_collection(
            INSTRUCTOR_COURSES_QUERY,
            endpoints.INSTRUCTOR_COURSES,
            "instructor_courses",
        )

    async def fetch_enrolled_courses(self) -> QueryResult[list[CourseSummary]]:
        """Load courses the signed-in student is enrolled in."""
        return await self._fetch_collection(
            ENROLLED_COURSES_QUERY,
            endpoints.ENROLLED_COURSES,
            "enrolled_courses",
        )

    async def _fetch_collection(
        self, query: str, endpoint: str, state_field: str
    ) -> QueryResult[list[CourseSummary]]:
        self._update(is_loading=True)

        async def fetch() -> list[CourseSummary]:
            page = await self._get_page(endpoint, None, CourseSummary, state_field)
            return page.items

        def apply(courses: list[CourseSummary]) -> None:
            self._update(**{state_field: tuple(courses)}, is_loading=False, error=None)
            logger.info("collection_loaded", query=query, count=len(courses))

        result = await self._coordinator.run_query(query, None, fetch, apply)
        self._record_failure(query, result)
        return result

    # =========================================================================
    # SINGLE COURSE
    # =========================================================================

    async def get_course(self, course_id: str) -> QueryResult[Course]:
        """Load a course with its sections and lessons.

        Args:
            course_id: Course identifier

        Returns:
            QueryResult carrying the Course on success
        """
        self._update(is_loading=True)

        async def fetch() -> Course:
            body = await self._coordinator.execute("GET", endpoints.course_detail(course_id))
            try:
                return Course.model_validate(unwrap_data(body, "course"))
            except SchemaError as e:
                raise _malformed("course", e) from e

        def apply(course: Course) -> None:
            self._update(current_course=course, is_loading=False, error=None)
            logger.info("course_loaded", course_id=course.id, lessons=course.total_lessons)

        result = await self._coordinator.run_query(
            COURSE_DETAIL_QUERY, {"course_id": course_id}, fetch, apply
        )
        self._record_failure(COURSE_DETAIL_QUERY, result)
        return result

    async def enroll(self, course_id: str, payment_method: str = "free") -> dict[str, Any]:
        """Enroll the signed-in student in a course.

        Args:
            course_id: Course identifier
            payment_method: Payment method sent to the backend

        Returns:
            The response data object

        Raises:
            ApiError: If enrollment fails
        """
        try:
            body = await self._coordinator.execute(
                "POST",
                endpoints.course_enroll(course_id),
                json_body={"paymentMethod": payment_method},
            )
        except ApiError as e:
            self._update(error=e.message)
            logger.warning("enroll_failed", course_id=course_id, kind=e.kind)
            raise

        logger.info("enrolled", course_id=course_id, payment_method=payment_method)
        data = unwrap_data(body)
        return data if isinstance(data, dict) else {"result": data}
