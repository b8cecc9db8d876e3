"""Storage backends for client-side key/value state.

Three locations are provided:
- SqliteStorage: durable key/value table (survives restarts)
- JsonFileStorage: durable JSON document, kept for older client installs
- MemoryStorage: session-scoped, lost when the process exits

Backends know nothing about credentials; CredentialStore decides which
keys live where.
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from learnsync.storage.database import get_db, init_db

logger = structlog.get_logger(__name__)

JSON_STORE_SCHEMA = "client_storage_v1"
JSON_STORE_FILENAME = "client_storage_v1.json"


class StorageError(Exception):
    """A storage location could not be read or written."""

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class StorageBackend(ABC):
    """A single key/value storage location."""

    name: str = "storage"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""


class MemoryStorage(StorageBackend):
    """Session-scoped storage held in process memory."""

    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data = {**self._data, key: value}

    def delete(self, key: str) -> None:
        if key in self._data:
            self._data = {k: v for k, v in self._data.items() if k != key}

    def keys(self) -> list[str]:
        return list(self._data)


class SqliteStorage(StorageBackend):
    """Durable storage in the key_value table."""

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._initialized = False

    def _ensure_schema(self) -> None:
        if not self._initialized:
            init_db(self.db_path)
            self._initialized = True

    def get(self, key: str) -> str | None:
        try:
            self._ensure_schema()
            with get_db(self.db_path) as conn:
                row = conn.execute(
                    "SELECT value FROM key_value WHERE key = ?", (key,)
                ).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(self.name, f"read '{key}' failed: {e}") from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            self._ensure_schema()
            with get_db(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO key_value (key, value, updated_at)
                    VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except (sqlite3.Error, OSError) as e:
            raise StorageError(self.name, f"write '{key}' failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._ensure_schema()
            with get_db(self.db_path) as conn:
                conn.execute("DELETE FROM key_value WHERE key = ?", (key,))
        except (sqlite3.Error, OSError) as e:
            raise StorageError(self.name, f"delete '{key}' failed: {e}") from e


class JsonFileStorage(StorageBackend):
    """Durable storage in a single JSON document.

    A file with a foreign or missing schema tag is treated as empty and is
    overwritten on the next write.
    """

    name = "json_file"

    def __init__(self, state_dir: Path):
        self.path = state_dir / JSON_STORE_FILENAME

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise StorageError(self.name, f"load {self.path} failed: {e}") from e

        if not isinstance(data, dict) or data.get("$schema") != JSON_STORE_SCHEMA:
            logger.warning(
                "json_storage_invalid_schema",
                path=str(self.path),
                expected=JSON_STORE_SCHEMA,
            )
            return {}

        values = data.get("values", {})
        return {k: v for k, v in values.items() if isinstance(v, str)}

    def _save(self, values: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(
                    {"$schema": JSON_STORE_SCHEMA, "values": values},
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
        except OSError as e:
            raise StorageError(self.name, f"save {self.path} failed: {e}") from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        self._save({**self._load(), key: value})

    def delete(self, key: str) -> None:
        values = self._load()
        if key in values:
            self._save({k: v for k, v in values.items() if k != key})
