"""Client-side storage: backends and the redundant credential store."""

from learnsync.storage.backends import (
    JsonFileStorage,
    MemoryStorage,
    SqliteStorage,
    StorageBackend,
    StorageError,
)
from learnsync.storage.credential_store import (
    CredentialStore,
    create_default_credential_store,
)

__all__ = [
    "CredentialStore",
    "JsonFileStorage",
    "MemoryStorage",
    "SqliteStorage",
    "StorageBackend",
    "StorageError",
    "create_default_credential_store",
]
