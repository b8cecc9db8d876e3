"""Tests for FetchCoordinator (F2)."""

import asyncio

import httpx
import pytest

from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.errors import (
    ApiError,
    AuthenticationError,
    GenericHttpError,
    LogicalFailureError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from learnsync.api.registry import QueryStatus

BASE_URL = "http://lms.test/api"


class TestExecute:
    """Tests for single request execution."""

    @pytest.mark.asyncio
    async def test_returns_parsed_body(self, backend, coordinator):
        """A 2xx JSON body is returned as a dict."""
        backend.add("GET", "/courses/c1", json={"success": True, "data": {"_id": "c1"}})
        body = await coordinator.execute("GET", "/courses/c1")
        assert body == {"success": True, "data": {"_id": "c1"}}

    @pytest.mark.asyncio
    async def test_bearer_header_only_with_token(self, backend):
        """Authorization is sent only when a token is available."""
        backend.add("GET", "/courses", json={"success": True})
        token = {"value": None}
        coordinator = FetchCoordinator(
            BASE_URL,
            token_provider=lambda: token["value"],
            transport=backend.transport,
            debounce_seconds=0,
        )

        await coordinator.execute("GET", "/courses")
        token["value"] = "tok-1"
        await coordinator.execute("GET", "/courses")

        first, second = backend.calls("GET", "/courses")
        assert "authorization" not in first.headers
        assert second.headers["authorization"] == "Bearer tok-1"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_explicit_empty_token_sends_no_header(self, backend):
        """token='' suppresses the provider's token."""
        backend.add("POST", "/auth/login", json={"success": True})
        coordinator = FetchCoordinator(
            BASE_URL,
            token_provider=lambda: "stale",
            transport=backend.transport,
            debounce_seconds=0,
        )
        await coordinator.execute("POST", "/auth/login", json_body={}, token="")
        assert "authorization" not in backend.requests[0].headers
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_success_false_is_logical_failure(self, backend, coordinator):
        """A 2xx envelope with success: false raises LogicalFailureError."""
        backend.add("GET", "/courses", json={"success": False, "message": "Course archived"})
        with pytest.raises(LogicalFailureError) as exc_info:
            await coordinator.execute("GET", "/courses")
        assert exc_info.value.message == "Course archived"
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_non_json_success_is_generic_error(self, backend, coordinator):
        """A 2xx body that is not JSON is an HTTP error."""
        backend.add("GET", "/courses", content=b"<html>maintenance</html>")
        with pytest.raises(GenericHttpError):
            await coordinator.execute("GET", "/courses")

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self, backend, coordinator):
        """204 responses give an empty body."""
        backend.add("POST", "/auth/logout", status=204, content=b"")
        assert await coordinator.execute("POST", "/auth/logout") == {}

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self, backend, coordinator):
        """Connection errors become NetworkError with status 0."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend.add("GET", "/courses", handler=refuse)
        with pytest.raises(NetworkError) as exc_info:
            await coordinator.execute("GET", "/courses")
        assert exc_info.value.status_code == 0

    @pytest.mark.asyncio
    async def test_http_error_is_classified(self, backend, coordinator):
        """Non-2xx statuses raise the matching ApiError."""
        backend.add("GET", "/courses/x", status=404, json={"message": "No such course"})
        with pytest.raises(NotFoundError):
            await coordinator.execute("GET", "/courses/x")

    @pytest.mark.asyncio
    async def test_401_with_token_calls_hook(self, backend):
        """A rejected token triggers the authentication hook."""
        backend.add("GET", "/progress/course/c1", status=401, json={"message": "Expired"})
        seen = []

        async def hook(error, token):
            seen.append((error, token))

        coordinator = FetchCoordinator(
            BASE_URL,
            token_provider=lambda: "tok",
            transport=backend.transport,
            debounce_seconds=0,
            on_authentication_error=hook,
        )
        with pytest.raises(AuthenticationError):
            await coordinator.execute("GET", "/progress/course/c1")
        assert len(seen) == 1
        error, token = seen[0]
        assert error.message == "Expired"
        assert token == "tok"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_401_without_token_skips_hook(self, backend):
        """Anonymous 401s (bad login) do not trigger the hook."""
        backend.add("POST", "/auth/login", status=401, json={"message": "Bad credentials"})
        seen = []

        async def hook(error, token):
            seen.append((error, token))

        coordinator = FetchCoordinator(
            BASE_URL,
            transport=backend.transport,
            debounce_seconds=0,
            on_authentication_error=hook,
        )
        with pytest.raises(AuthenticationError):
            await coordinator.execute("POST", "/auth/login", json_body={})
        assert seen == []
        await coordinator.close()


class TestRetry:
    """Tests for retrying transient failures."""

    @pytest.mark.asyncio
    async def test_get_succeeds_after_server_errors(self, backend, coordinator):
        """5xx answers to a GET are retried until one succeeds."""
        responses = iter(
            [
                httpx.Response(503, json={}),
                httpx.Response(502, json={}),
                httpx.Response(200, json={"success": True, "data": {"courses": []}}),
            ]
        )
        backend.add("GET", "/courses", handler=lambda request: next(responses))

        body = await coordinator.execute("GET", "/courses")

        assert body["data"] == {"courses": []}
        assert len(backend.calls("GET", "/courses")) == 3

    @pytest.mark.asyncio
    async def test_get_succeeds_after_network_error(self, backend, coordinator):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"success": True})

        backend.add("GET", "/courses", handler=flaky)

        assert await coordinator.execute("GET", "/courses") == {"success": True}
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, backend, coordinator):
        backend.add("GET", "/courses", status=500, json={"message": "Database unavailable"})

        with pytest.raises(GenericHttpError) as exc_info:
            await coordinator.execute("GET", "/courses")

        assert exc_info.value.message == "Database unavailable"
        assert len(backend.calls("GET", "/courses")) == coordinator.max_attempts

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self, backend, coordinator):
        """429 is left to the caller to back off."""
        backend.add(
            "GET",
            "/courses",
            status=429,
            json={"message": "Slow down"},
            headers={"Retry-After": "30"},
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await coordinator.execute("GET", "/courses")

        assert exc_info.value.retry_after == 30.0
        assert len(backend.calls("GET", "/courses")) == 1

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, backend, coordinator, status):
        backend.add("GET", "/courses", status=status, json={})

        with pytest.raises(ApiError):
            await coordinator.execute("GET", "/courses")

        assert len(backend.calls("GET", "/courses")) == 1

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self, backend, coordinator):
        """A failed PUT may have been applied, so it is sent once."""
        backend.add("PUT", "/progress/course/c1/lesson/l1", status=500, json={})

        with pytest.raises(GenericHttpError):
            await coordinator.execute("PUT", "/progress/course/c1/lesson/l1", json_body={})

        assert len(backend.calls("PUT", "/progress/course/c1/lesson/l1")) == 1

    @pytest.mark.asyncio
    async def test_backoff_grows_linearly(self, backend, monkeypatch):
        """Attempt n waits n * retry_delay_seconds."""
        backend.add("GET", "/courses", status=503, json={})
        delays = []
        real_sleep = asyncio.sleep

        async def recording_sleep(delay):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(asyncio, "sleep", recording_sleep)
        coordinator = FetchCoordinator(
            BASE_URL,
            transport=backend.transport,
            debounce_seconds=0,
            max_attempts=3,
            retry_delay_seconds=0.5,
        )

        with pytest.raises(GenericHttpError):
            await coordinator.execute("GET", "/courses")

        assert delays == [0.5, 1.0]
        await coordinator.close()

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            FetchCoordinator(BASE_URL, max_attempts=0)


class TestRunQuery:
    """Tests for deduplication with cancellation."""

    @pytest.mark.asyncio
    async def test_identical_params_share_one_request(self, backend, coordinator, gate_factory):
        """Two callers with the same params cause one HTTP request."""
        handler, gate = gate_factory(
            httpx.Response(200, json={"success": True, "data": {"courses": []}})
        )
        backend.add("GET", "/courses", handler=handler)

        async def fetch():
            return await coordinator.execute("GET", "/courses", params={"page": 1})

        first = asyncio.create_task(coordinator.run_query("courses.list", {"page": 1}, fetch))
        second = asyncio.create_task(
            coordinator.run_query("courses.list", {"page": 1, "search": None}, fetch)
        )
        await asyncio.sleep(0.01)
        gate.set()

        r1, r2 = await asyncio.gather(first, second)
        assert r1.ok and r2.ok
        assert r1.data == r2.data
        assert len(backend.calls("GET", "/courses")) == 1

    @pytest.mark.asyncio
    async def test_new_params_cancel_previous(self, coordinator):
        """A superseded caller gets CANCELLED and its result is never applied."""
        started = asyncio.Event()
        release = asyncio.Event()
        answered = asyncio.Event()
        applied = []

        async def stubborn_fetch():
            # Transport that ignores cancellation and answers once released
            started.set()
            while not release.is_set():
                try:
                    await release.wait()
                except asyncio.CancelledError:
                    continue
            answered.set()
            return "late"

        async def fresh_fetch():
            return "fresh"

        first = asyncio.create_task(
            coordinator.run_query("courses.list", {"page": 1}, stubborn_fetch, applied.append)
        )
        await started.wait()

        second = await coordinator.run_query(
            "courses.list", {"page": 2}, fresh_fetch, applied.append
        )
        assert applied == ["fresh"]

        # The superseded request answers only after the newer one was applied
        release.set()
        await answered.wait()
        await asyncio.sleep(0)
        first_result = await first

        assert first_result.status is QueryStatus.CANCELLED
        assert first_result.error is None
        assert first_result.data is None
        assert second.ok and second.data == "fresh"
        assert applied == ["fresh"]

    @pytest.mark.asyncio
    async def test_failure_is_returned_not_raised(self, backend, coordinator):
        """ApiErrors come back as FAILED results."""
        backend.add("GET", "/courses", status=500, json={})

        async def fetch():
            return await coordinator.execute("GET", "/courses")

        result = await coordinator.run_query("courses.list", {}, fetch)
        assert result.status is QueryStatus.FAILED
        assert isinstance(result.error, GenericHttpError)
        assert not coordinator.in_flight("courses.list")

    @pytest.mark.asyncio
    async def test_debounce_skips_superseded_dispatch(self, backend):
        """Calls replaced inside the debounce window never reach the network."""
        backend.add("GET", "/courses", json={"success": True, "data": {"courses": []}})
        coordinator = FetchCoordinator(
            BASE_URL, transport=backend.transport, debounce_seconds=0.05
        )

        def fetch_for(search):
            async def fetch():
                return await coordinator.execute("GET", "/courses", params={"search": search})

            return fetch

        stale = asyncio.create_task(
            coordinator.run_query("courses.list", {"search": "p"}, fetch_for("p"))
        )
        await asyncio.sleep(0)
        latest = await coordinator.run_query("courses.list", {"search": "py"}, fetch_for("py"))

        assert (await stale).cancelled
        assert latest.ok
        calls = backend.calls("GET", "/courses")
        assert [c.url.params["search"] for c in calls] == ["py"]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_apply_runs_for_current_request(self, coordinator):
        """apply receives the data of a request that is still current."""
        applied = []

        async def fetch():
            return {"n": 1}

        result = await coordinator.run_query("q", None, fetch, applied.append)
        assert result.ok
        assert applied == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_cancel_all_resolves_waiters(self, coordinator):
        """Teardown cancels pending queries without raising."""
        started = asyncio.Event()

        async def slow_fetch():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(coordinator.run_query("q", {"a": 1}, slow_fetch))
        await started.wait()

        assert coordinator.cancel_all() == 1
        result = await task
        assert result.cancelled
        await coordinator.close()
