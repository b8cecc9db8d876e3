"""LearningClient: wires storage, session, fetching and progress together.

Usage:
    async with LearningClient.from_config() as client:
        await client.auth.login("ada@example.com", "secret")
        await client.catalog.fetch_courses()
"""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.schemas import Course
from learnsync.auth.session_manager import SessionManager
from learnsync.auth.session_state import Session
from learnsync.catalog.catalog import CourseCatalog
from learnsync.config.app_config import ClientConfig, load_client_config
from learnsync.progress.engine import ProgressEngine
from learnsync.progress.playback import PlaybackProgressReporter, PlaybackSource
from learnsync.progress.state import CourseProgress
from learnsync.storage.credential_store import (
    CredentialStore,
    create_default_credential_store,
)

logger = structlog.get_logger(__name__)


class LearningClient:
    """Owns every component and their lifecycle."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        store: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            config: Client configuration (default: load_client_config())
            store: Credential store (default: SQLite + JSON file + memory)
            transport: httpx transport override, used by tests
        """
        self.config = config or load_client_config()
        self.store = store or create_default_credential_store(
            Path(self.config.storage.db_path),
            Path(self.config.storage.state_dir),
        )
        self.coordinator = FetchCoordinator(
            self.config.api.base_url,
            debounce_seconds=self.config.fetch.debounce_seconds,
            max_attempts=self.config.fetch.max_attempts,
            retry_delay_seconds=self.config.fetch.retry_delay_seconds,
            timeout=self.config.api.timeout_seconds,
            transport=transport,
        )
        self.auth = SessionManager(
            self.store,
            self.coordinator,
            refresh_interval_seconds=self.config.session.refresh_interval_seconds,
        )
        self.coordinator.set_token_provider(self.auth.get_token)
        self.coordinator.set_authentication_error_hook(self.auth.handle_authentication_error)
        self.catalog = CourseCatalog(
            self.coordinator,
            default_page_size=self.config.fetch.default_page_size,
        )
        self.progress = ProgressEngine(self.coordinator)
        self._reporters: list[PlaybackProgressReporter] = []

    @classmethod
    def from_config(
        cls,
        config_path: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> LearningClient:
        """Build a client from a YAML config file (or the default one)."""
        return cls(load_client_config(config_path), transport=transport)

    async def start(self) -> Session:
        """Restore a stored session, if any."""
        session = await self.auth.initialize()
        logger.info("client_started", authenticated=session.is_authenticated)
        return session

    async def open_course(self, course_id: str) -> tuple[Course | None, CourseProgress]:
        """Load a course structure and its progress.

        The course is registered with the progress engine so completion is
        checked against its lessons. Progress is returned even when the
        course itself could not be loaded.
        """
        result = await self.catalog.get_course(course_id)
        course = result.data if result.ok else None
        if course is not None:
            self.progress.register_course(course)
        progress = await self.progress.fetch_progress(course_id)
        return course, progress

    def playback_reporter(
        self,
        course_id: str,
        lesson_id: str,
        source: PlaybackSource,
    ) -> PlaybackProgressReporter:
        """Create a reporter that is closed together with the client."""
        reporter = PlaybackProgressReporter(
            self.progress,
            course_id,
            lesson_id,
            source,
            interval_seconds=self.config.playback.sample_interval_seconds,
        )
        self._reporters = [r for r in self._reporters if not r.closed] + [reporter]
        return reporter

    async def close(self) -> None:
        """Stop background tasks and release the HTTP client."""
        for reporter in self._reporters:
            await reporter.close()
        self._reporters = []
        await self.auth.close()
        await self.coordinator.close()
        logger.debug("client_closed")

    async def __aenter__(self) -> LearningClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


# Global client instance
_client: LearningClient | None = None


def get_client() -> LearningClient:
    """Get the global client instance."""
    global _client
    if _client is None:
        _client = LearningClient()
    return _client


def reset_client() -> None:
    """Reset the global client (for testing)."""
    global _client
    _client = None
