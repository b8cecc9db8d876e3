"""Lesson and course progress engine.

Keeps one CourseProgress per course in a map that is replaced on every
change. Local state is optimistic: a completed lesson stays completed even
when the backend cannot be reached, and is re-sent by retry_pending().

Rules:
- completion is a set: marking a lesson twice changes nothing
- a lesson watched to >= 90% is completed
- completed lessons are always a subset of the course's lessons once the
  course structure is registered
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

import structlog
from pydantic import ValidationError as SchemaError

from learnsync.api import endpoints
from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.errors import ApiError
from learnsync.api.schemas import Course, ProgressPayload, unwrap_data
from learnsync.progress.state import (
    COMPLETION_THRESHOLD,
    CourseProgress,
    LessonProgress,
    ProgressStats,
    round_half_up,
)

logger = structlog.get_logger(__name__)


class UnknownLessonError(ValueError):
    """Lesson id does not belong to the registered course."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgressEngine:
    """Tracks and synchronizes lesson completion per course."""

    def __init__(self, coordinator: FetchCoordinator):
        self._coordinator = coordinator
        self._progress: dict[str, CourseProgress] = {}
        self._lessons: dict[str, tuple[str, ...]] = {}
        self._positions: dict[tuple[str, str], float] = {}
        # Bumped on every local change; a fetch that saw a change is discarded
        self._revisions: dict[str, int] = {}
        # (course_id, lesson_id, percentage) of the lesson being watched
        self._watching: tuple[str, str, int] | None = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def progress(self) -> Mapping[str, CourseProgress]:
        """Read-only view of the progress map."""
        return MappingProxyType(self._progress)

    def get_progress(self, course_id: str) -> CourseProgress | None:
        return self._progress.get(course_id)

    def revision(self, course_id: str) -> int:
        """Counter of local changes made to a course's progress."""
        return self._revisions.get(course_id, 0)

    def _put(self, progress: CourseProgress, *, local: bool = True) -> CourseProgress:
        if local:
            course_id = progress.course_id
            self._revisions = {**self._revisions, course_id: self.revision(course_id) + 1}
        self._progress = {**self._progress, progress.course_id: progress}
        return progress

    def _default(self, course_id: str) -> CourseProgress:
        lessons = self._lessons.get(course_id)
        return CourseProgress(course_id=course_id, total_lessons=len(lessons) if lessons else 0)

    def _current(self, course_id: str) -> CourseProgress:
        return self._progress.get(course_id) or self._default(course_id)

    def _total_for(self, course_id: str, reported_total: int, completed_count: int) -> int:
        lessons = self._lessons.get(course_id)
        if lessons:
            return len(lessons)
        return max(reported_total, completed_count)

    def _check_lesson(self, course_id: str, lesson_id: str) -> None:
        lessons = self._lessons.get(course_id)
        if lessons is not None and lesson_id not in lessons:
            raise UnknownLessonError(f"Lesson {lesson_id} is not part of course {course_id}")

    def register_course(self, course: Course) -> None:
        """Record the lesson structure of a course.

        Existing progress is filtered to the known lessons and its total is
        set to the course's lesson count.
        """
        lessons = tuple(course.lesson_ids())
        self._lessons = {**self._lessons, course.id: lessons}

        existing = self._progress.get(course.id)
        if existing is not None:
            known = frozenset(lessons)
            self._put(
                replace(
                    existing,
                    completed_lesson_ids=existing.completed_lesson_ids & known,
                    pending_lesson_ids=existing.pending_lesson_ids & known,
                    total_lessons=len(lessons),
                ),
                local=False,
            )
        logger.debug("course_registered", course_id=course.id, lessons=len(lessons))

    # =========================================================================
    # SYNCHRONIZATION
    # =========================================================================

    async def fetch_progress(self, course_id: str) -> CourseProgress:
        """Load course progress from the backend.

        On failure the existing local entry is kept, or a zeroed default is
        installed. Lessons completed locally but not yet confirmed survive
        the server snapshot. A response is discarded when the course was
        changed locally (marked, watched or reset) while it was in flight.

        Returns:
            The progress now held for the course
        """
        revision = self.revision(course_id)
        try:
            body = await self._coordinator.execute("GET", endpoints.course_progress(course_id))
            payload = ProgressPayload.model_validate(unwrap_data(body, "progress"))
        except ApiError as e:
            logger.warning("progress_fetch_failed", course_id=course_id, kind=e.kind)
            return self._progress.get(course_id) or self._put(self._default(course_id), local=False)
        except SchemaError as e:
            logger.warning("progress_fetch_malformed", course_id=course_id, errors=e.error_count())
            return self._progress.get(course_id) or self._put(self._default(course_id), local=False)

        if self.revision(course_id) != revision:
            logger.info(
                "progress_fetch_result_discarded",
                course_id=course_id,
                revision=self.revision(course_id),
            )
            return self._progress.get(course_id) or self._put(self._default(course_id), local=False)

        existing = self._progress.get(course_id)
        pending = existing.pending_lesson_ids if existing else frozenset()
        completed = frozenset(payload.completed_lesson_ids) | pending

        lessons = self._lessons.get(course_id)
        if lessons is not None:
            known = frozenset(lessons)
            completed &= known
            pending &= known

        local_time = existing.time_spent_seconds if existing else 0.0
        progress = CourseProgress(
            course_id=course_id,
            completed_lesson_ids=completed,
            total_lessons=self._total_for(course_id, payload.total_lessons, len(completed)),
            time_spent_seconds=max(payload.time_spent_seconds, local_time),
            last_accessed=payload.last_accessed or (existing.last_accessed if existing else None),
            pending_lesson_ids=pending,
        )
        logger.info(
            "progress_loaded",
            course_id=course_id,
            completed=progress.completed_count,
            total=progress.total_lessons,
        )
        return self._put(progress, local=False)

    async def _persist(
        self, course_id: str, lesson_id: str, completed: bool, watched_percentage: int
    ) -> None:
        await self._coordinator.execute(
            "PUT",
            endpoints.lesson_progress(course_id, lesson_id),
            json_body={
                "completed": completed,
                "watchTime": watched_percentage,
                "timeSpent": round(self._current(course_id).time_spent_seconds),
            },
        )

    async def mark_lesson_complete(self, course_id: str, lesson_id: str) -> CourseProgress:
        """Complete a lesson locally, then persist it.

        Already completed and confirmed lessons are a no-op. A failed
        persist keeps the lesson completed locally and pending for retry.

        Returns:
            The course progress after the update

        Raises:
            UnknownLessonError: If the lesson is not part of a registered course
            ApiError: If the backend rejected or never received the update
        """
        self._check_lesson(course_id, lesson_id)
        current = self._current(course_id)

        if (
            lesson_id in current.completed_lesson_ids
            and lesson_id not in current.pending_lesson_ids
        ):
            logger.debug("lesson_already_completed", course_id=course_id, lesson_id=lesson_id)
            return current

        completed = current.completed_lesson_ids | {lesson_id}
        self._put(
            replace(
                current,
                completed_lesson_ids=completed,
                pending_lesson_ids=current.pending_lesson_ids | {lesson_id},
                total_lessons=self._total_for(course_id, current.total_lessons, len(completed)),
                last_accessed=_now(),
            )
        )

        try:
            await self._persist(course_id, lesson_id, completed=True, watched_percentage=100)
        except ApiError as e:
            logger.warning(
                "lesson_completion_not_persisted",
                course_id=course_id,
                lesson_id=lesson_id,
                kind=e.kind,
            )
            raise

        latest = self._current(course_id)
        logger.info("lesson_completed", course_id=course_id, lesson_id=lesson_id)
        return self._put(replace(latest, pending_lesson_ids=latest.pending_lesson_ids - {lesson_id}))

    async def update_watch_time(
        self,
        course_id: str,
        lesson_id: str,
        watched_seconds: float,
        total_seconds: float,
    ) -> CourseProgress:
        """Record a playback position.

        Reaching 90% completes the lesson; below that the partial
        percentage is persisted, unless the lesson is already completed.

        Args:
            course_id: Course identifier
            lesson_id: Lesson being watched
            watched_seconds: Current playback position
            total_seconds: Video duration

        Returns:
            The course progress after the update

        Raises:
            ValueError: If total_seconds is not a positive finite number or
                watched_seconds is not a finite non-negative number
            UnknownLessonError: If the lesson is not part of a registered course
            ApiError: If persisting failed
        """
        if not math.isfinite(total_seconds) or total_seconds <= 0:
            raise ValueError(f"total_seconds must be positive and finite, got {total_seconds}")
        if not math.isfinite(watched_seconds) or watched_seconds < 0:
            raise ValueError(f"watched_seconds must be finite and >= 0, got {watched_seconds}")
        self._check_lesson(course_id, lesson_id)

        percentage = min(100, round_half_up(100 * watched_seconds / total_seconds))
        self._watching = (course_id, lesson_id, percentage)

        key = (course_id, lesson_id)
        last_position = self._positions.get(key)
        self._positions = {**self._positions, key: watched_seconds}

        current = self._current(course_id)
        if last_position is not None and watched_seconds > last_position:
            current = self._put(
                replace(
                    current,
                    time_spent_seconds=current.time_spent_seconds + (watched_seconds - last_position),
                    last_accessed=_now(),
                )
            )

        if percentage >= COMPLETION_THRESHOLD:
            return await self.mark_lesson_complete(course_id, lesson_id)

        if lesson_id in current.completed_lesson_ids:
            return current

        await self._persist(course_id, lesson_id, completed=False, watched_percentage=percentage)
        logger.debug(
            "watch_time_saved",
            course_id=course_id,
            lesson_id=lesson_id,
            percentage=percentage,
        )
        return self._current(course_id)

    async def reset_course_progress(self, course_id: str) -> CourseProgress:
        """Reset a course on the backend, then locally.

        Raises:
            ApiError: If the backend reset failed (local state is unchanged)
        """
        await self._coordinator.execute("POST", endpoints.course_progress_reset(course_id))

        self._positions = {k: v for k, v in self._positions.items() if k[0] != course_id}
        if self._watching is not None and self._watching[0] == course_id:
            self._watching = None
        logger.info("course_progress_reset", course_id=course_id)
        return self._put(self._default(course_id))

    async def retry_pending(self, course_id: str) -> frozenset[str]:
        """Re-send completions the backend has not confirmed.

        Returns:
            Lesson ids still pending afterwards
        """
        pending = self._current(course_id).pending_lesson_ids
        for lesson_id in sorted(pending):
            try:
                await self._persist(course_id, lesson_id, completed=True, watched_percentage=100)
            except ApiError as e:
                logger.warning(
                    "pending_retry_failed",
                    course_id=course_id,
                    lesson_id=lesson_id,
                    kind=e.kind,
                )
                continue
            latest = self._current(course_id)
            self._put(replace(latest, pending_lesson_ids=latest.pending_lesson_ids - {lesson_id}))

        remaining = self._current(course_id).pending_lesson_ids
        logger.info("pending_retry_done", course_id=course_id, remaining=len(remaining))
        return remaining

    # =========================================================================
    # DERIVED VIEWS
    # =========================================================================

    def get_progress_stats(self, course_id: str) -> ProgressStats:
        """Completed count, total, percentage and remaining lessons."""
        return ProgressStats.from_progress(self._current(course_id))

    def get_lesson_progress(self, course_id: str, lesson_id: str) -> LessonProgress:
        progress = self._current(course_id)
        if lesson_id in progress.completed_lesson_ids:
            return LessonProgress(lesson_id=lesson_id, completed=True, watched_percentage=100)
        watched = 0
        if self._watching is not None and self._watching[:2] == (course_id, lesson_id):
            watched = self._watching[2]
        return LessonProgress(lesson_id=lesson_id, completed=False, watched_percentage=watched)

    def next_incomplete_lesson(self, course_id: str) -> str | None:
        """First lesson in course order that is not completed.

        None when everything is done or the course structure is unknown.
        """
        completed = self._current(course_id).completed_lesson_ids
        for lesson_id in self._lessons.get(course_id, ()):
            if lesson_id not in completed:
                return lesson_id
        return None
