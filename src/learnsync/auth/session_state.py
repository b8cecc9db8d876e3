"""Session data and the pure session transition function.

A Session is immutable. Every change goes through transition(), which
returns a new Session for (current session, event, payload).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Any

from learnsync.api.schemas import UserPayload


class SessionState(Enum):
    """Authentication state of the client."""

    UNAUTHENTICATED = auto()
    VERIFYING = auto()
    AUTHENTICATED = auto()


class SessionEvent(Enum):
    """Inputs to the session state machine."""

    VERIFY_STARTED = auto()  # payload: token
    VERIFIED = auto()  # payload: user, action
    VERIFY_FAILED = auto()  # payload: error (optional)
    LOGGED_IN = auto()  # payload: user, token, action
    LOGIN_FAILED = auto()  # payload: error, action
    PROFILE_UPDATED = auto()  # payload: user
    ERROR_RAISED = auto()  # payload: error, action
    ERROR_CLEARED = auto()
    LOGGED_OUT = auto()  # payload: action


@dataclass(frozen=True)
class Session:
    """Snapshot of the client session."""

    user_id: str | None = None
    email: str | None = None
    role: str | None = None
    name: str | None = None
    token: str | None = None
    state: SessionState = SessionState.UNAUTHENTICATED
    error: str | None = None
    last_action: str | None = None
    epoch: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def is_verifying(self) -> bool:
        return self.state is SessionState.VERIFYING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display. The token is never included."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "name": self.name,
            "state": self.state.name.lower(),
            "has_token": bool(self.token),
            "error": self.error,
            "last_action": self.last_action,
        }


def _user_fields(user: UserPayload) -> dict[str, Any]:
    return {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "name": user.name,
    }


def transition(session: Session, event: SessionEvent, **payload: Any) -> Session:
    """Compute the next session.

    Args:
        session: Current session
        event: What happened
        **payload: Event data (see SessionEvent comments)

    Returns:
        The new Session (the input is never modified)

    Raises:
        ValueError: If the event is unknown or its payload is incomplete
    """
    if event is SessionEvent.VERIFY_STARTED:
        return replace(
            session,
            token=payload["token"],
            state=SessionState.VERIFYING,
            error=None,
            last_action="verify",
        )

    if event is SessionEvent.VERIFIED:
        return replace(
            session,
            **_user_fields(payload["user"]),
            state=SessionState.AUTHENTICATED,
            error=None,
            last_action=payload.get("action", "verify"),
        )

    if event is SessionEvent.VERIFY_FAILED:
        return Session(
            epoch=session.epoch,
            error=payload.get("error"),
            last_action="verify_failed",
        )

    if event is SessionEvent.LOGGED_IN:
        if not payload.get("token"):
            raise ValueError("LOGGED_IN requires a token")
        return Session(
            **_user_fields(payload["user"]),
            token=payload["token"],
            state=SessionState.AUTHENTICATED,
            last_action=payload.get("action", "login"),
            epoch=session.epoch + 1,
        )

    if event is SessionEvent.LOGIN_FAILED:
        return Session(
            epoch=session.epoch,
            error=payload.get("error"),
            last_action=payload.get("action", "login_failed"),
        )

    if event is SessionEvent.PROFILE_UPDATED:
        return replace(
            session,
            **_user_fields(payload["user"]),
            error=None,
            last_action="profile_updated",
        )

    if event is SessionEvent.ERROR_RAISED:
        return replace(
            session,
            error=payload.get("error"),
            last_action=payload.get("action", session.last_action),
        )

    if event is SessionEvent.ERROR_CLEARED:
        return replace(session, error=None)

    if event is SessionEvent.LOGGED_OUT:
        return Session(
            epoch=session.epoch + 1,
            last_action=payload.get("action", "logout"),
        )

    raise ValueError(f"Unknown session event: {event!r}")
