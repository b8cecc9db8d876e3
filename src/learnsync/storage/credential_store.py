"""Credential store over redundant storage locations.

One logical bearer token is copied to several locations:
- write() fans out to every location; a failing location is logged and skipped
- read() probes locations in priority order, first non-empty value wins
- clear() removes the token everywhere, including key names used by
  older client versions

No network access happens here.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from learnsync.storage.backends import (
    JsonFileStorage,
    MemoryStorage,
    SqliteStorage,
    StorageBackend,
    StorageError,
)

logger = structlog.get_logger(__name__)

TOKEN_KEY = "token"

# Key names written by earlier client versions
LEGACY_TOKEN_KEYS = ("lms_auth_token", "auth_token", "access_token", "user_token")

# Cached user blobs that must not outlive the token
USER_DATA_KEYS = ("user_data", "lms_user")


@dataclass(frozen=True)
class StorageLocation:
    """A (backend, key) pair holding one copy of the credential."""

    backend: StorageBackend
    key: str = TOKEN_KEY

    @property
    def label(self) -> str:
        return f"{self.backend.name}:{self.key}"


class CredentialStore:
    """Reads and writes the bearer token across ordered storage backends."""

    def __init__(
        self,
        backends: list[StorageBackend],
        legacy_keys: tuple[str, ...] = LEGACY_TOKEN_KEYS,
    ):
        """Initialize credential store.

        Args:
            backends: Storage backends in read priority order (at least two)
            legacy_keys: Older key names probed after the primary locations
                and cleared on logout
        """
        if len(backends) < 2:
            raise ValueError("CredentialStore needs at least two storage backends")

        self._locations = tuple(StorageLocation(b) for b in backends)
        self._legacy_locations = tuple(
            StorageLocation(b, key) for b in backends for key in legacy_keys
        )
        self._user_locations = tuple(
            StorageLocation(b, key) for b in backends for key in USER_DATA_KEYS
        )

    @property
    def locations(self) -> tuple[StorageLocation, ...]:
        """Primary locations in priority order."""
        return self._locations

    def write(self, token: str) -> int:
        """Write token to every primary location.

        Args:
            token: Non-empty bearer token

        Returns:
            Number of locations written successfully
        """
        if not token:
            raise ValueError("Refusing to store an empty credential")

        written = 0
        for location in self._locations:
            try:
                location.backend.set(location.key, token)
                written += 1
            except StorageError as e:
                logger.warning(
                    "credential_write_failed",
                    location=location.label,
                    error=str(e),
                )

        if written == 0:
            logger.error("credential_write_failed_everywhere")
        else:
            logger.debug("credential_written", locations=written)
        return written

    def read(self) -> str | None:
        """Return the first non-empty token in priority order, or None."""
        for location in self._locations + self._legacy_locations:
            try:
                value = location.backend.get(location.key)
            except StorageError as e:
                logger.warning(
                    "credential_read_failed",
                    location=location.label,
                    error=str(e),
                )
                continue
            if value:
                logger.debug("credential_found", location=location.label)
                return value
        return None

    def clear(self) -> None:
        """Remove token, legacy copies and cached user data from all locations."""
        failures = 0
        for location in self._locations + self._legacy_locations + self._user_locations:
            try:
                location.backend.delete(location.key)
            except StorageError as e:
                failures += 1
                logger.warning(
                    "credential_clear_failed",
                    location=location.label,
                    error=str(e),
                )
        logger.info("credentials_cleared", failures=failures)


def create_default_credential_store(db_path: Path, state_dir: Path) -> CredentialStore:
    """Build the standard store: SQLite, then JSON file, then process memory."""
    return CredentialStore(
        [
            SqliteStorage(db_path),
            JsonFileStorage(state_dir),
            MemoryStorage(),
        ]
    )
