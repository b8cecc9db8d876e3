"""Tests for storage backends (F1)."""

import json

import pytest

from learnsync.storage.backends import (
    JSON_STORE_FILENAME,
    JSON_STORE_SCHEMA,
    JsonFileStorage,
    MemoryStorage,
    SqliteStorage,
    StorageError,
)
from learnsync.storage.database import get_db, init_db


class TestMemoryStorage:
    """Tests for process-memory storage."""

    def test_set_get_delete(self):
        """Values round through set/get and disappear on delete."""
        storage = MemoryStorage()
        storage.set("token", "abc")
        assert storage.get("token") == "abc"

        storage.delete("token")
        assert storage.get("token") is None

    def test_delete_missing_key_is_noop(self):
        """Deleting an unknown key does not raise."""
        storage = MemoryStorage()
        storage.delete("nope")
        assert storage.keys() == []


class TestSqliteStorage:
    """Tests for the SQLite key/value backend."""

    def test_init_db_creates_table(self, tmp_path):
        """init_db creates the key_value table."""
        db_path = init_db(tmp_path / "db" / "client.db")
        with get_db(db_path) as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        assert "key_value" in tables

    def test_upsert_overwrites(self, tmp_path):
        """Writing the same key twice keeps the latest value."""
        storage = SqliteStorage(tmp_path / "client.db")
        storage.set("token", "first")
        storage.set("token", "second")
        assert storage.get("token") == "second"

    def test_persists_across_instances(self, tmp_path):
        """A new instance on the same file sees stored values."""
        SqliteStorage(tmp_path / "client.db").set("token", "abc")
        assert SqliteStorage(tmp_path / "client.db").get("token") == "abc"

    def test_unusable_path_raises_storage_error(self, tmp_path):
        """A directory in place of the database file raises StorageError."""
        db_path = tmp_path / "client.db"
        db_path.mkdir()
        storage = SqliteStorage(db_path)
        with pytest.raises(StorageError) as exc_info:
            storage.get("token")
        assert exc_info.value.backend == "sqlite"


class TestJsonFileStorage:
    """Tests for the JSON document backend."""

    def test_writes_schema_tagged_document(self, tmp_path):
        """The file carries the schema tag and a values object."""
        storage = JsonFileStorage(tmp_path)
        storage.set("token", "abc")

        data = json.loads((tmp_path / JSON_STORE_FILENAME).read_text())
        assert data["$schema"] == JSON_STORE_SCHEMA
        assert data["values"] == {"token": "abc"}

    def test_foreign_schema_treated_as_empty(self, tmp_path):
        """A document with another schema tag reads as empty."""
        (tmp_path / JSON_STORE_FILENAME).write_text(
            json.dumps({"$schema": "something_else", "values": {"token": "old"}})
        )
        assert JsonFileStorage(tmp_path).get("token") is None

    def test_corrupt_file_raises_storage_error(self, tmp_path):
        """Unparseable JSON raises StorageError."""
        (tmp_path / JSON_STORE_FILENAME).write_text("{not json")
        with pytest.raises(StorageError):
            JsonFileStorage(tmp_path).get("token")

    def test_delete_keeps_other_keys(self, tmp_path):
        """Deleting one key leaves the others."""
        storage = JsonFileStorage(tmp_path)
        storage.set("token", "abc")
        storage.set("user_data", "{}")
        storage.delete("token")
        assert storage.get("token") is None
        assert storage.get("user_data") == "{}"
