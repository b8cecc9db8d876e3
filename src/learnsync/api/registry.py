"""In-flight request registry.

Holds at most one PendingRequest per logical query. Registering a request
with a different params key evicts (and cancels) the previous one.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Generic, Mapping, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class QueryStatus(Enum):
    """Terminal state of a coordinated query."""

    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of FetchCoordinator.run_query.

    Cancellation is not an error: a superseded caller gets CANCELLED with
    neither data nor error set.
    """

    status: QueryStatus
    data: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status is QueryStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status is QueryStatus.CANCELLED

    @classmethod
    def success(cls, data: T) -> QueryResult[T]:
        return cls(QueryStatus.SUCCEEDED, data=data)

    @classmethod
    def failure(cls, error: Exception) -> QueryResult[T]:
        return cls(QueryStatus.FAILED, error=error)

    @classmethod
    def cancellation(cls) -> QueryResult[T]:
        return cls(QueryStatus.CANCELLED)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(v) for k, v in value.items() if not _is_empty(v)}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def make_params_key(params: Mapping[str, Any] | None) -> str:
    """Stable, order-independent key for a set of query parameters.

    None and blank values are dropped and strings are stripped, so
    {"search": " go ", "page": 1} and {"page": 1, "search": "go", "level": None}
    produce the same key.
    """
    normalized = _normalize_value(dict(params or {}))
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(eq=False)
class PendingRequest:
    """One in-flight request for a logical query."""

    query: str
    params_key: str
    future: asyncio.Future = field(repr=False)
    task: asyncio.Task | None = field(default=None, repr=False)


class RequestRegistry:
    """Single-slot registry: newest request per logical query evicts the previous."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingRequest] = {}

    def get(self, query: str) -> PendingRequest | None:
        return self._pending.get(query)

    def register(self, query: str, params_key: str) -> PendingRequest:
        """Register a new request, cancelling any previous one for the query."""
        previous = self._pending.get(query)
        if previous is not None:
            self._cancel(previous)

        pending = PendingRequest(
            query=query,
            params_key=params_key,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending = {**self._pending, query: pending}
        return pending

    def is_current(self, pending: PendingRequest) -> bool:
        """True while `pending` is still the active request for its query."""
        return self._pending.get(pending.query) is pending

    def release(self, pending: PendingRequest) -> None:
        """Drop `pending` from the registry if it is still the active one."""
        if self.is_current(pending):
            self._pending = {k: v for k, v in self._pending.items() if k != pending.query}

    def cancel(self, query: str) -> bool:
        """Cancel the active request for a query. Returns False if none."""
        pending = self._pending.get(query)
        if pending is None:
            return False
        self._cancel(pending)
        self._pending = {k: v for k, v in self._pending.items() if k != query}
        return True

    def cancel_all(self) -> int:
        pending_list = list(self._pending.values())
        for pending in pending_list:
            self._cancel(pending)
        self._pending = {}
        return len(pending_list)

    def __len__(self) -> int:
        return len(self._pending)

    @staticmethod
    def _cancel(pending: PendingRequest) -> None:
        if not pending.future.done():
            pending.future.set_result(QueryResult.cancellation())
        if pending.task is not None and not pending.task.done():
            pending.task.cancel()
        logger.debug(
            "request_cancelled",
            query=pending.query,
            params_key=pending.params_key,
        )
