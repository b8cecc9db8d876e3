"""Progress data types and pure progress arithmetic."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

# Watch percentage at which a lesson counts as completed
COMPLETION_THRESHOLD = 90


class ProgressStatus(Enum):
    """Course-level progress state."""

    NOT_STARTED = auto()
    IN_PROGRESS = auto()
    COMPLETED = auto()


def round_half_up(value: float) -> int:
    """Round .5 upwards (89.5 -> 90), unlike Python's banker's rounding."""
    return math.floor(value + 0.5)


def completion_percentage(completed: int, total: int) -> int:
    """Whole-number completion percentage, 0 when total is unknown."""
    if total <= 0:
        return 0
    return min(100, round_half_up(100 * completed / total))


def progress_status(completed: int, total: int) -> ProgressStatus:
    """Status for `completed` of `total` lessons."""
    if completed <= 0:
        return ProgressStatus.NOT_STARTED
    if total > 0 and completed >= total:
        return ProgressStatus.COMPLETED
    return ProgressStatus.IN_PROGRESS


@dataclass(frozen=True)
class CourseProgress:
    """Progress of one course.

    pending_lesson_ids holds completed lessons the backend has not
    confirmed yet (persist in flight or failed).
    """

    course_id: str
    completed_lesson_ids: frozenset[str] = frozenset()
    total_lessons: int = 0
    time_spent_seconds: float = 0.0
    last_accessed: str | None = None
    pending_lesson_ids: frozenset[str] = frozenset()

    @property
    def completed_count(self) -> int:
        return len(self.completed_lesson_ids)

    @property
    def percentage(self) -> int:
        return completion_percentage(self.completed_count, self.total_lessons)

    @property
    def status(self) -> ProgressStatus:
        return progress_status(self.completed_count, self.total_lessons)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display or JSON output."""
        return {
            "course_id": self.course_id,
            "completed_lesson_ids": sorted(self.completed_lesson_ids),
            "total_lessons": self.total_lessons,
            "percentage": self.percentage,
            "status": self.status.name.lower(),
            "time_spent_seconds": self.time_spent_seconds,
            "last_accessed": self.last_accessed,
            "pending_lesson_ids": sorted(self.pending_lesson_ids),
        }


@dataclass(frozen=True)
class ProgressStats:
    """Aggregate numbers for a course."""

    completed_count: int
    total_lessons: int
    percentage: int
    remaining: int

    @classmethod
    def from_progress(cls, progress: CourseProgress) -> ProgressStats:
        return cls(
            completed_count=progress.completed_count,
            total_lessons=progress.total_lessons,
            percentage=progress.percentage,
            remaining=max(0, progress.total_lessons - progress.completed_count),
        )


@dataclass(frozen=True)
class LessonProgress:
    """Derived view of one lesson."""

    lesson_id: str
    completed: bool
    watched_percentage: int = 0
