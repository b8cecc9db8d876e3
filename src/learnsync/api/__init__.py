"""Backend access: HTTP execution, error taxonomy and request coordination."""

from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.errors import (
    ApiError,
    AuthenticationError,
    GenericHttpError,
    LogicalFailureError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from learnsync.api.registry import QueryResult, QueryStatus, make_params_key

__all__ = [
    "ApiError",
    "AuthenticationError",
    "FetchCoordinator",
    "GenericHttpError",
    "LogicalFailureError",
    "NetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "QueryResult",
    "QueryStatus",
    "RateLimitedError",
    "ValidationError",
    "make_params_key",
]
