"""Session lifecycle and credential verification."""

from learnsync.auth.session_manager import AuthResult, SessionManager
from learnsync.auth.session_state import (
    Session,
    SessionEvent,
    SessionState,
    transition,
)

__all__ = [
    "AuthResult",
    "Session",
    "SessionEvent",
    "SessionManager",
    "SessionState",
    "transition",
]
