"""Periodic playback sampling for a single lesson video.

The reporter reads the player position on a fixed interval while playing
and forwards it to ProgressEngine.update_watch_time. It never forwards a
sample without a usable duration, and never leaves its sampling task
running after pause() or close().
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from typing import Protocol

import structlog

from learnsync.api.errors import ApiError
from learnsync.progress.engine import ProgressEngine, UnknownLessonError

logger = structlog.get_logger(__name__)

DEFAULT_SAMPLE_INTERVAL_SECONDS = 5.0


class PlaybackSource(Protocol):
    """Anything exposing the current playback position and media duration."""

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...


def _usable(value: object) -> float | None:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class PlaybackProgressReporter:
    """Samples a playback source and reports watch time."""

    def __init__(
        self,
        engine: ProgressEngine,
        course_id: str,
        lesson_id: str,
        source: PlaybackSource,
        interval_seconds: float = DEFAULT_SAMPLE_INTERVAL_SECONDS,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._engine = engine
        self.course_id = course_id
        self.lesson_id = lesson_id
        self._source = source
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._last_sent: float | None = None
        self._closed = False
        # Set once the engine refuses the lesson; no further samples are sent
        self._rejected = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def rejected(self) -> bool:
        """True if the engine does not know this lesson."""
        return self._rejected

    def play(self) -> None:
        """Start sampling. Calling it while already playing does nothing."""
        if self._closed:
            raise RuntimeError("Reporter is closed")
        if self.running or self._rejected:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"playback:{self.course_id}:{self.lesson_id}"
        )
        logger.debug("playback_sampling_started", lesson_id=self.lesson_id)

    async def pause(self) -> None:
        """Stop sampling immediately."""
        await self._stop()

    async def ended(self) -> bool:
        """Report the full duration (the video finished)."""
        await self._stop()
        duration = _usable(self._source.duration)
        if duration is None:
            return False
        return await self._report(duration, duration)

    async def close(self) -> None:
        """Stop sampling and flush one final sample."""
        await self._stop()
        if self._closed:
            return
        self._closed = True
        await self.sample()
        logger.debug("playback_reporter_closed", lesson_id=self.lesson_id)

    async def sample(self) -> bool:
        """Take one sample now.

        Returns:
            True if a position was forwarded to the engine
        """
        return await self._report(self._source.current_time, self._source.duration)

    async def _stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("playback_sampling_stopped", lesson_id=self.lesson_id)

    async def _run(self) -> None:
        # Background task: nothing awaits it, so failures end sampling here
        try:
            while not self._rejected:
                await asyncio.sleep(self.interval_seconds)
                await self.sample()
        except Exception:
            logger.exception(
                "playback_sampling_crashed",
                course_id=self.course_id,
                lesson_id=self.lesson_id,
            )
            return
        logger.debug("playback_sampling_stopped", lesson_id=self.lesson_id, reason="rejected")

    async def _report(self, position: object, duration: object) -> bool:
        if self._rejected:
            return False

        total = _usable(duration)
        if total is None or total <= 0:
            logger.debug("playback_sample_dropped", reason="duration", lesson_id=self.lesson_id)
            return False

        watched = _usable(position)
        if watched is None or watched < 0:
            logger.debug("playback_sample_dropped", reason="position", lesson_id=self.lesson_id)
            return False
        watched = min(watched, total)

        if watched == self._last_sent:
            return False

        try:
            await self._engine.update_watch_time(self.course_id, self.lesson_id, watched, total)
        except ApiError as e:
            logger.warning(
                "playback_progress_not_saved",
                course_id=self.course_id,
                lesson_id=self.lesson_id,
                kind=e.kind,
            )
            return False
        except UnknownLessonError as e:
            self._rejected = True
            logger.error(
                "playback_lesson_unknown",
                course_id=self.course_id,
                lesson_id=self.lesson_id,
                error=str(e),
            )
            return False

        self._last_sent = watched
        return True
