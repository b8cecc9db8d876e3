"""Backend endpoint paths, relative to the configured API base URL."""

from __future__ import annotations

# Authentication
AUTH_LOGIN = "/auth/login"
AUTH_REGISTER = "/auth/register"
AUTH_VALIDATE_TOKEN = "/auth/validate-token"
AUTH_LOGOUT = "/auth/logout"
AUTH_FORGOT_PASSWORD = "/auth/forgot-password"

# Users
USER_PROFILE = "/users/profile"

# Courses
COURSES = "/courses"
COURSE_CATEGORIES = "/courses/categories"
INSTRUCTOR_COURSES = "/courses/instructor/my-courses"
ENROLLED_COURSES = "/student/enrolled-courses"


def course_detail(course_id: str) -> str:
    return f"/courses/{course_id}"


def course_enroll(course_id: str) -> str:
    return f"/courses/{course_id}/enroll"


# Progress: one canonical family under /progress/course/{id}


def course_progress(course_id: str) -> str:
    return f"/progress/course/{course_id}"


def lesson_progress(course_id: str, lesson_id: str) -> str:
    return f"/progress/course/{course_id}/lesson/{lesson_id}"


def course_progress_reset(course_id: str) -> str:
    return f"/progress/course/{course_id}/reset"
