"""Fixtures for F6 tests - playback, client and CLI."""

import pytest

from learnsync.client import LearningClient
from learnsync.config.app_config import ApiConfig, ClientConfig, FetchConfig

BASE_URL = "http://lms.test/api"

USER = {
    "_id": "u1",
    "email": "ada@example.com",
    "role": "student",
    "firstName": "Ada",
    "lastName": "Lovelace",
}

COURSE_DETAIL = {
    "success": True,
    "data": {
        "course": {
            "_id": "c1",
            "title": "Python Basics",
            "sections": [
                {
                    "_id": "s1",
                    "title": "Intro",
                    "lessons": [
                        {"_id": "l1", "title": "Hello"},
                        {"_id": "l2", "title": "Types"},
                    ],
                }
            ],
        }
    },
}


@pytest.fixture
def client_config():
    """Config pointing at the fake backend, without debounce or backoff."""
    return ClientConfig(
        api=ApiConfig(base_url=BASE_URL),
        fetch=FetchConfig(debounce_seconds=0, retry_delay_seconds=0),
    )


@pytest.fixture
def lms_backend(backend):
    """Backend with auth, one course and its progress."""
    backend.add(
        "POST",
        "/auth/login",
        json={
            "success": True,
            "message": "Welcome back",
            "data": {"user": USER, "accessToken": "tok-login"},
        },
    )
    backend.add(
        "GET",
        "/auth/validate-token",
        json={"success": True, "data": {"valid": True, "user": USER}},
    )
    backend.add("POST", "/auth/logout", json={"success": True})
    backend.add("GET", "/courses/c1", json=COURSE_DETAIL)
    backend.add(
        "GET",
        "/progress/course/c1",
        json={"success": True, "data": {"progress": {"completedLessons": ["l1"], "totalLessons": 2}}},
    )
    backend.add("PUT", "/progress/course/c1/lesson/l2", json={"success": True})
    backend.add("POST", "/progress/course/c1/reset", json={"success": True})
    return backend


@pytest.fixture
def make_client(client_config, memory_store, lms_backend):
    """Build LearningClients sharing one credential store and backend."""

    def make():
        return LearningClient(client_config, store=memory_store, transport=lms_backend.transport)

    return make
