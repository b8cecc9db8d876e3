"""Lesson/course progress tracking and playback sampling."""

from learnsync.progress.engine import ProgressEngine, UnknownLessonError
from learnsync.progress.playback import PlaybackProgressReporter, PlaybackSource
from learnsync.progress.state import (
    COMPLETION_THRESHOLD,
    CourseProgress,
    LessonProgress,
    ProgressStats,
    ProgressStatus,
    completion_percentage,
    progress_status,
    round_half_up,
)

__all__ = [
    "COMPLETION_THRESHOLD",
    "CourseProgress",
    "LessonProgress",
    "PlaybackProgressReporter",
    "PlaybackSource",
    "ProgressEngine",
    "ProgressStats",
    "ProgressStatus",
    "UnknownLessonError",
    "completion_percentage",
    "progress_status",
    "round_half_up",
]
