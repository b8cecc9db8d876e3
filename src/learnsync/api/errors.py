"""Error taxonomy for backend requests.

Every failure surfaced by the FetchCoordinator is an ApiError subclass
carrying a machine-readable `kind`, a human-readable `message` and the
HTTP `status_code` (0 for transport failures).
"""

from __future__ import annotations

import json
from typing import Any

import httpx


class ApiError(Exception):
    """Base class for all backend request failures."""

    kind = "http_error"
    default_message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        status_code: int = 0,
        details: Any = None,
    ):
        self.message = message or self.default_message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display or logging."""
        return {
            "kind": self.kind,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class AuthenticationError(ApiError):
    """401: credential missing, expired or rejected. Caller should log out."""

    kind = "authentication"
    default_message = "Authentication failed. Please log in again."


class PermissionDeniedError(ApiError):
    """403: authenticated but not allowed. Surface, do not log out."""

    kind = "permission"
    default_message = "Access denied. You do not have permission to access this resource."


class ValidationError(ApiError):
    """400: request rejected, optionally with field-level messages."""

    kind = "validation"
    default_message = "Validation failed"

    def __init__(
        self,
        message: str | None = None,
        status_code: int = 400,
        field_errors: dict[str, str] | None = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message, status_code, details=self.field_errors or None)


class RateLimitedError(ApiError):
    """429: too many requests. Back off, do not retry immediately."""

    kind = "rate_limited"
    default_message = "Too many requests. Please wait a moment."

    def __init__(
        self,
        message: str | None = None,
        status_code: int = 429,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class NotFoundError(ApiError):
    """404: resource does not exist."""

    kind = "not_found"
    default_message = "The requested resource could not be found."


class NetworkError(ApiError):
    """Transport failure: no HTTP response was received."""

    kind = "network"
    default_message = "Network error. Please check your connection."


class GenericHttpError(ApiError):
    """Any other non-2xx response, or a 2xx body that is not JSON."""

    kind = "http_error"


class LogicalFailureError(ApiError):
    """2xx response whose envelope reports success: false."""

    kind = "logical_failure"
    default_message = "The server could not complete the request"


# =============================================================================
# RESPONSE CLASSIFICATION
# =============================================================================


def _parse_body(response: httpx.Response) -> dict[str, Any] | None:
    """Best-effort JSON object from an error response."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None
    return body if isinstance(body, dict) else None


def extract_message(body: dict[str, Any] | None) -> str | None:
    """Pull a human-readable message out of an error body.

    Tries `message`, then `error.message`, then a string `error`.
    """
    if not body:
        return None
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    error = body.get("error")
    if isinstance(error, dict):
        nested = error.get("message")
        if isinstance(nested, str) and nested:
            return nested
    if isinstance(error, str) and error:
        return error
    return None


def extract_field_errors(body: dict[str, Any] | None) -> dict[str, str]:
    """Collect field-level validation messages.

    Supports `errors: [{field, message}]`, `errors: {field: message}` and
    `error.details: [{path|field, message}]`.
    """
    if not body:
        return {}

    entries: list[Any] = []
    errors = body.get("errors")
    if isinstance(errors, dict):
        return {str(k): str(v) for k, v in errors.items()}
    if isinstance(errors, list):
        entries.extend(errors)

    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("details"), list):
        entries.extend(error["details"])

    result: dict[str, str] = {}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            result[f"_{index}"] = str(entry)
            continue
        field_name = entry.get("field") or entry.get("path") or entry.get("param")
        if isinstance(field_name, list):
            field_name = ".".join(str(p) for p in field_name)
        message = entry.get("message") or entry.get("msg") or "invalid"
        result[str(field_name or f"_{index}")] = str(message)
    return result


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def classify_response(response: httpx.Response) -> ApiError:
    """Map a non-2xx response to the matching ApiError."""
    status = response.status_code
    body = _parse_body(response)
    message = extract_message(body)

    if status == 400:
        field_errors = extract_field_errors(body)
        if not message and field_errors:
            message = "Validation failed: " + ", ".join(field_errors.values())
        return ValidationError(message, status, field_errors)
    if status == 401:
        return AuthenticationError(message, status)
    if status == 403:
        return PermissionDeniedError(message, status)
    if status == 404:
        return NotFoundError(message, status)
    if status == 429:
        return RateLimitedError(message, status, retry_after=_retry_after(response))
    return GenericHttpError(message or f"HTTP error! status: {status}", status)
