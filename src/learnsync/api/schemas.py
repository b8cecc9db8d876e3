"""Pydantic schemas for backend payloads.

The backend wraps payloads in a {success, data, message} envelope and has
used several field spellings over time (`_id`/`id`, `accessToken`/`token`,
`totalCourses`/`total`). These models accept all of them and expose one
internal shape.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def unwrap_data(body: Any, key: str | None = None) -> Any:
    """Return `body["data"]` (or the body itself when not enveloped).

    Args:
        body: Parsed JSON response
        key: Optional key to take from inside the data object, e.g. "progress".
            Falls back to the data object itself when the key is absent.
    """
    data = body.get("data", body) if isinstance(body, dict) else body
    if key is not None and isinstance(data, dict) and key in data:
        return data[key]
    return data


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# Ids arrive as strings or numbers depending on the backend store
StrId = Annotated[str, BeforeValidator(_to_str)]


class ApiModel(BaseModel):
    """Base model: accept field names and aliases, ignore unknown fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# AUTH SCHEMAS
# =============================================================================


class UserPayload(ApiModel):
    """Authenticated user as returned by the auth endpoints."""

    id: StrId = Field(validation_alias=AliasChoices("_id", "id", "userId"))
    email: str = ""
    role: str = "student"
    first_name: str = Field(default="", validation_alias=AliasChoices("firstName", "first_name"))
    last_name: str = Field(default="", validation_alias=AliasChoices("lastName", "last_name"))
    name: str = ""

    @model_validator(mode="after")
    def _fill_name(self) -> UserPayload:
        if not self.name:
            self.name = f"{self.first_name} {self.last_name}".strip()
        return self


class AuthPayload(ApiModel):
    """Login/registration result."""

    user: UserPayload | None = None
    token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("accessToken", "token", "access_token"),
    )
    requires_verification: bool = Field(
        default=False,
        validation_alias=AliasChoices("requiresVerification", "requires_verification"),
    )


class TokenValidationPayload(ApiModel):
    """Result of GET /auth/validate-token."""

    valid: bool = True
    user: UserPayload


# =============================================================================
# COURSE SCHEMAS
# =============================================================================


class Video(ApiModel):
    """Video attached to a lesson."""

    url: str = Field(default="", validation_alias=AliasChoices("url", "videoUrl", "secure_url"))
    duration_seconds: float = Field(
        default=0.0,
        validation_alias=AliasChoices("durationSeconds", "duration", "duration_seconds"),
    )


class Lesson(ApiModel):
    """A lesson inside a course section."""

    id: StrId = Field(validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    video: Video | None = None


class Section(ApiModel):
    """A course section grouping lessons."""

    id: StrId = Field(default="", validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    lessons: list[Lesson] = Field(default_factory=list)


class Course(ApiModel):
    """Course detail with its section/lesson structure."""

    id: StrId = Field(validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    sections: list[Section] = Field(default_factory=list)

    def lesson_ids(self) -> list[str]:
        """All lesson ids in course order."""
        return [lesson.id for section in self.sections for lesson in section.lessons]

    @property
    def total_lessons(self) -> int:
        return len(self.lesson_ids())


class CourseSummary(BaseModel):
    """Course as listed in collections. Unknown fields are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: StrId = Field(validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    price: float = 0.0
    rating: float = Field(default=0.0, validation_alias=AliasChoices("averageRating", "rating"))
    level: str = ""


class Category(ApiModel):
    """Course category. Plain strings are accepted as names."""

    id: StrId = Field(default="", validation_alias=AliasChoices("_id", "id"))
    name: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"id": value, "name": value}
        return value


class Pagination(ApiModel):
    """Pagination block, normalized across endpoints."""

    current_page: int = Field(default=1, validation_alias=AliasChoices("currentPage", "page"))
    total_pages: int = Field(default=1, validation_alias=AliasChoices("totalPages", "pages"))
    total_items: int = Field(
        default=0,
        validation_alias=AliasChoices("totalCourses", "totalItems", "total", "count"),
    )
    limit: int = 0


# =============================================================================
# PROGRESS SCHEMAS
# =============================================================================


class ProgressPayload(ApiModel):
    """Course progress as stored by the backend."""

    completed_lesson_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "completedLessons", "completedLessonIds", "completedVideos"
        ),
    )
    total_lessons: int = Field(default=0, validation_alias=AliasChoices("totalLessons", "totalVideos"))
    time_spent_seconds: float = Field(
        default=0.0, validation_alias=AliasChoices("timeSpent", "timeSpentSeconds")
    )
    last_accessed: str = Field(
        default="", validation_alias=AliasChoices("lastAccessed", "lastAccessedAt")
    )

    @model_validator(mode="before")
    @classmethod
    def _from_lesson_list(cls, value: Any) -> Any:
        # Older payloads: lessons: [{lessonId, completed}]
        if isinstance(value, dict) and isinstance(value.get("lessons"), list):
            has_completed = any(
                k in value for k in ("completedLessons", "completedLessonIds", "completedVideos")
            )
            if not has_completed:
                lessons = value["lessons"]
                value = {
                    **value,
                    "completedLessons": [
                        item.get("lessonId") or item.get("_id")
                        for item in lessons
                        if isinstance(item, dict) and item.get("completed")
                    ],
                    "totalLessons": value.get("totalLessons", len(lessons)),
                }
        return value

    @field_validator("completed_lesson_ids", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        ids = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("lessonId") or item.get("lesson") or item.get("_id")
            if item is not None:
                ids.append(str(item))
        return ids
