"""Fixtures for session tests (F3)."""

import pytest

from learnsync.api.coordinator import FetchCoordinator
from learnsync.auth.session_manager import SessionManager

BASE_URL = "http://lms.test/api"

USER = {
    "_id": "u1",
    "email": "ada@example.com",
    "role": "student",
    "firstName": "Ada",
    "lastName": "Lovelace",
}


@pytest.fixture
def user_payload():
    """Backend user object."""
    return dict(USER)


@pytest.fixture
def auth_backend(backend, user_payload):
    """Backend answering login, validation and logout successfully."""
    backend.add(
        "POST",
        "/auth/login",
        json={
            "success": True,
            "message": "Welcome back",
            "data": {"user": user_payload, "accessToken": "tok-login"},
        },
    )
    backend.add(
        "GET",
        "/auth/validate-token",
        json={"success": True, "data": {"valid": True, "user": user_payload}},
    )
    backend.add("POST", "/auth/logout", json={"success": True})
    return backend


@pytest.fixture
def make_manager(memory_store):
    """Build a SessionManager wired to a backend like LearningClient does."""

    def make(backend, refresh_interval_seconds=3600.0):
        coordinator = FetchCoordinator(
            BASE_URL, transport=backend.transport, debounce_seconds=0, retry_delay_seconds=0
        )
        manager = SessionManager(
            memory_store,
            coordinator,
            refresh_interval_seconds=refresh_interval_seconds,
        )
        coordinator.set_token_provider(manager.get_token)
        coordinator.set_authentication_error_hook(manager.handle_authentication_error)
        return manager

    return make


@pytest.fixture
def manager(make_manager, auth_backend):
    """SessionManager over the default auth backend."""
    return make_manager(auth_backend)
