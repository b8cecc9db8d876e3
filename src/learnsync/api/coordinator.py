"""Fetch coordinator: HTTP execution and request deduplication.

Two layers:
- execute(): one HTTP call with bearer token, JSON parsing, envelope check
  and error classification
- run_query(): deduplication-with-cancellation for logical queries, so at
  most one request per logical query is in flight and only the newest
  one may apply its result
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx
import structlog

from learnsync.api.errors import (
    ApiError,
    AuthenticationError,
    GenericHttpError,
    LogicalFailureError,
    NetworkError,
    classify_response,
    extract_field_errors,
    extract_message,
)
from learnsync.api.registry import (
    PendingRequest,
    QueryResult,
    RequestRegistry,
    make_params_key,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TokenProvider = Callable[[], "str | None"]
# Receives the error and the bearer token the rejected request carried
AuthErrorHook = Callable[[AuthenticationError, str], Awaitable[None]]

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "X-Client-Version": "learnsync/0.1.0",
}

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0

# Only requests without side effects are retried
RETRYABLE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def is_transient(error: ApiError) -> bool:
    """Network failures and 5xx responses may succeed when repeated."""
    if isinstance(error, NetworkError):
        return True
    return isinstance(error, GenericHttpError) and error.status_code >= 500


class FetchCoordinator:
    """Executes backend requests and coordinates logical queries."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        *,
        debounce_seconds: float = 0.2,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_authentication_error: AuthErrorHook | None = None,
    ):
        """Initialize coordinator.

        Args:
            base_url: API root, e.g. http://localhost:5000/api
            token_provider: Synchronous accessor for the current bearer token
            debounce_seconds: Quiet period before a logical query is dispatched
            max_attempts: Attempts per idempotent request on transient failures
            retry_delay_seconds: Backoff unit; attempt n waits n * this
            timeout: Transport timeout in seconds (None = httpx default)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            on_authentication_error: Awaited with the error and the token
                when a request carrying a token gets a 401
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.base_url = base_url
        self.debounce_seconds = debounce_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._token_provider = token_provider
        self._on_authentication_error = on_authentication_error
        self._registry = RequestRegistry()

        client_kwargs: dict[str, Any] = {
            "base_url": base_url,
            "headers": DEFAULT_HEADERS,
        }
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    def set_token_provider(self, provider: TokenProvider | None) -> None:
        self._token_provider = provider

    def set_authentication_error_hook(self, hook: AuthErrorHook | None) -> None:
        self._on_authentication_error = hook

    def _resolve_token(self, token: str | None) -> str | None:
        if token is not None:
            return token or None
        if self._token_provider is None:
            return None
        return self._token_provider()

    async def execute(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the parsed JSON body.

        GET/HEAD/OPTIONS requests that fail with a network error or a 5xx
        are retried up to `max_attempts` times, waiting
        `retry_delay_seconds * attempt` in between. Other failures
        (400, 401, 403, 404, 429, logical failures) are raised at once.

        Args:
            method: HTTP method
            endpoint: Path relative to the base URL
            params: Query string parameters
            json_body: JSON request body
            token: Explicit bearer token (overrides the token provider;
                "" sends no token)

        Returns:
            Parsed JSON object. Non-object bodies are wrapped as
            {"success": True, "data": body}; empty bodies give {}.

        Raises:
            ApiError: Classified failure (see learnsync.api.errors)
        """
        bearer = self._resolve_token(token)
        attempts = self.max_attempts if method.upper() in RETRYABLE_METHODS else 1

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send(method, endpoint, params, json_body, bearer)
            except ApiError as e:
                if attempt >= attempts or not is_transient(e):
                    raise
                delay = self.retry_delay_seconds * attempt
                logger.info(
                    "request_retrying",
                    method=method,
                    endpoint=endpoint,
                    attempt=attempt,
                    kind=e.kind,
                    delay=delay,
                )
                await asyncio.sleep(delay)

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None,
        json_body: Any,
        bearer: str | None,
    ) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        try:
            response = await self._client.request(
                method,
                endpoint,
                params=dict(params) if params else None,
                json=json_body,
                headers=headers,
            )
        except httpx.RequestError as e:
            logger.warning(
                "request_transport_failed",
                method=method,
                endpoint=endpoint,
                error_type=type(e).__name__,
            )
            raise NetworkError() from e

        if not response.is_success:
            error = classify_response(response)
            logger.warning(
                "request_failed",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
                kind=error.kind,
            )
            if (
                isinstance(error, AuthenticationError)
                and bearer
                and self._on_authentication_error is not None
            ):
                await self._on_authentication_error(error, bearer)
            raise error

        if not response.content:
            return {}

        try:
            body = response.json()
        except ValueError as e:
            raise GenericHttpError(
                "Received non-JSON response from server", response.status_code
            ) from e

        if not isinstance(body, dict):
            return {"success": True, "data": body}

        if body.get("success") is False:
            logger.warning(
                "request_logical_failure",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
            )
            raise LogicalFailureError(
                extract_message(body),
                response.status_code,
                details=extract_field_errors(body) or None,
            )

        logger.debug(
            "request_succeeded",
            method=method,
            endpoint=endpoint,
            status=response.status_code,
        )
        return body

    # =========================================================================
    # LOGICAL QUERIES
    # =========================================================================

    async def run_query(
        self,
        query: str,
        params: Mapping[str, Any] | None,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None] | None = None,
    ) -> QueryResult[T]:
        """Run a logical query with deduplication and supersession.

        - Same params already in flight: join it and return its result.
        - Different params in flight: cancel it (its callers get CANCELLED)
          and start this one.
        - Dispatch waits `debounce_seconds` first; a newer call during that
          window means this one never hits the network.
        - `apply` only runs if this request is still the current one when
          its response arrives.

        Args:
            query: Logical query name, e.g. "courses.list"
            params: Parameters identifying this request
            fetch: Coroutine factory performing the request
            apply: Callback receiving the data of the current request

        Returns:
            QueryResult with SUCCEEDED, FAILED or CANCELLED status
        """
        params_key = make_params_key(params)

        pending = self._registry.get(query)
        if pending is not None and pending.params_key == params_key:
            logger.debug("query_deduplicated", query=query)
            return await asyncio.shield(pending.future)

        pending = self._registry.register(query, params_key)
        pending.task = asyncio.create_task(
            self._dispatch(pending, fetch, apply),
            name=f"query:{query}",
        )
        return await asyncio.shield(pending.future)

    async def _dispatch(
        self,
        pending: PendingRequest,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None] | None,
    ) -> None:
        result: QueryResult[T]
        try:
            if self.debounce_seconds > 0:
                await asyncio.sleep(self.debounce_seconds)
            data = await fetch()
        except asyncio.CancelledError:
            if not pending.future.done():
                pending.future.set_result(QueryResult.cancellation())
            self._registry.release(pending)
            raise
        except ApiError as e:
            result = QueryResult.failure(e)
        except Exception as e:
            self._registry.release(pending)
            if not pending.future.done():
                pending.future.set_exception(e)
            return
        else:
            result = QueryResult.success(data)

        # The transport may deliver a response after supersession
        if not self._registry.is_current(pending):
            logger.info(
                "stale_response_discarded",
                query=pending.query,
                params_key=pending.params_key,
            )
            if not pending.future.done():
                pending.future.set_result(QueryResult.cancellation())
            return

        self._registry.release(pending)
        if result.ok and apply is not None:
            try:
                apply(result.data)
            except Exception as e:
                pending.future.set_exception(e)
                return
        pending.future.set_result(result)

    def in_flight(self, query: str) -> bool:
        """True while a request for the logical query is pending."""
        return self._registry.get(query) is not None

    def cancel(self, query: str) -> bool:
        """Cancel the in-flight request for a logical query."""
        return self._registry.cancel(query)

    def cancel_all(self) -> int:
        """Cancel every in-flight logical query."""
        return self._registry.cancel_all()

    async def close(self) -> None:
        """Cancel pending queries and close the HTTP client."""
        cancelled = self.cancel_all()
        await self._client.aclose()
        logger.debug("fetch_coordinator_closed", cancelled=cancelled)
