"""Session lifecycle: verify, login, refresh, logout.

Owns the single live Session and the background refresh loop. Verification
and refresh are fail-closed: any doubt about the stored credential clears
it everywhere. Logout always wins over an in-flight refresh: results are
applied only if the session epoch and token are unchanged since the
request started.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import structlog
from pydantic import ValidationError as SchemaError

from learnsync.api import endpoints
from learnsync.api.coordinator import FetchCoordinator
from learnsync.api.errors import (
    ApiError,
    AuthenticationError,
    GenericHttpError,
    NetworkError,
    ValidationError,
)
from learnsync.api.schemas import (
    AuthPayload,
    TokenValidationPayload,
    UserPayload,
    unwrap_data,
)
from learnsync.auth.session_state import Session, SessionEvent, transition
from learnsync.storage.credential_store import CredentialStore

logger = structlog.get_logger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 600.0

SessionListener = Callable[[Session], None]


@dataclass
class AuthResult:
    """Outcome of an authentication operation."""

    success: bool
    message: str = ""
    user: UserPayload | None = None
    errors: dict[str, str] = field(default_factory=dict)
    requires_verification: bool = False
    is_network_error: bool = False

    @classmethod
    def from_error(cls, error: ApiError) -> AuthResult:
        return cls(
            success=False,
            message=error.message,
            errors=dict(error.field_errors) if isinstance(error, ValidationError) else {},
            is_network_error=isinstance(error, NetworkError),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "success": self.success,
            "message": self.message,
            "user": self.user.model_dump() if self.user else None,
            "errors": self.errors,
            "requires_verification": self.requires_verification,
            "is_network_error": self.is_network_error,
        }


class SessionManager:
    """Manages the authenticated session and its stored credential."""

    def __init__(
        self,
        store: CredentialStore,
        coordinator: FetchCoordinator,
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ):
        """Initialize session manager.

        Args:
            store: Redundant credential storage
            coordinator: Fetch coordinator used for auth calls
            refresh_interval_seconds: Period of the background validation loop
        """
        self._store = store
        self._coordinator = coordinator
        self.refresh_interval_seconds = refresh_interval_seconds
        self._session = Session()
        self._listeners: list[SessionListener] = []
        self._refresh_task: asyncio.Task | None = None
        self._logging_out = False

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def session(self) -> Session:
        """Current session snapshot."""
        return self._session

    def get_token(self) -> str | None:
        """Current bearer token, without I/O."""
        return self._session.token

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a callback for every new session snapshot.

        Returns:
            Function that removes the listener
        """
        self._listeners = [*self._listeners, listener]

        def remove() -> None:
            self._listeners = [other for other in self._listeners if other is not listener]

        return remove

    def _set(self, session: Session) -> None:
        self._session = session
        for listener in self._listeners:
            listener(session)

    def _apply(self, event: SessionEvent, **payload: Any) -> Session:
        self._set(transition(self._session, event, **payload))
        return self._session

    def clear_error(self) -> None:
        if self._session.error is not None:
            self._apply(SessionEvent.ERROR_CLEARED)

    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # =========================================================================
    # VERIFICATION
    # =========================================================================

    async def _validate(self, token: str) -> UserPayload | None:
        """Ask the backend whether token is valid. Never raises ApiError."""
        try:
            body = await self._coordinator.execute(
                "GET", endpoints.AUTH_VALIDATE_TOKEN, token=token
            )
            payload = TokenValidationPayload.model_validate(unwrap_data(body))
        except ApiError as e:
            logger.info("token_validation_failed", kind=e.kind, status=e.status_code)
            return None
        except SchemaError as e:
            logger.warning("token_validation_malformed", errors=e.error_count())
            return None

        if not payload.valid:
            logger.info("token_reported_invalid")
            return None
        return payload.user

    async def initialize(self) -> Session:
        """Restore the session from stored credentials.

        A stored credential is trusted only after the backend confirms it.
        Any failure clears the credential everywhere. Never raises ApiError.

        Returns:
            The resulting session
        """
        token = self._store.read()
        if not token:
            logger.info("session_init_no_credential")
            return self._session

        self._stop_refresh_loop()
        session = self._apply(SessionEvent.VERIFY_STARTED, token=token)
        epoch = session.epoch

        user = await self._validate(token)

        if self._session.epoch != epoch or self._session.token != token:
            logger.info("session_init_result_discarded", epoch=epoch)
            return self._session

        if user is None:
            self._store.clear()
            logger.info("session_init_failed")
            return self._apply(SessionEvent.VERIFY_FAILED)

        self._store.write(token)
        self._apply(SessionEvent.VERIFIED, user=user, action="verify")
        self._start_refresh_loop()
        logger.info("session_restored", user_id=user.id, role=user.role)
        return self._session

    async def refresh(self) -> bool:
        """Re-validate the current credential.

        Failure logs the user out silently. A result that arrives after the
        session changed (logout or new login) is discarded.

        Returns:
            True if the session is still authenticated with the same token
        """
        session = self._session
        if not session.is_authenticated or not session.token:
            return False

        epoch, token = session.epoch, session.token
        user = await self._validate(token)

        if self._session.epoch != epoch or self._session.token != token:
            logger.info("refresh_result_discarded", epoch=epoch)
            return False

        if user is None:
            logger.info("refresh_failed_logging_out", user_id=session.user_id)
            await self.logout(silent=True, skip_server_call=True)
            return False

        self._apply(SessionEvent.VERIFIED, user=user, action="refresh")
        logger.debug("session_refreshed", user_id=user.id)
        return True

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval_seconds)
            if not self._session.is_authenticated:
                return
            if not await self.refresh():
                return

    def _start_refresh_loop(self) -> None:
        self._stop_refresh_loop()
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(), name="session-refresh"
        )
        logger.debug("refresh_loop_started", interval=self.refresh_interval_seconds)

    def _stop_refresh_loop(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        # A refresh that fails logs out from inside the loop task itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("refresh_loop_stopped")

    # =========================================================================
    # LOGIN / REGISTRATION
    # =========================================================================

    def _establish(self, user: UserPayload, token: str, action: str) -> None:
        self._stop_refresh_loop()
        self._store.write(token)
        self._apply(SessionEvent.LOGGED_IN, user=user, token=token, action=action)
        self._start_refresh_loop()

    def _login_failed(self, error: ApiError, action: str) -> AuthResult:
        self._stop_refresh_loop()
        self._apply(SessionEvent.LOGIN_FAILED, error=error.message, action=action)
        logger.info("login_rejected", action=action, kind=error.kind, status=error.status_code)
        return AuthResult.from_error(error)

    async def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        On failure the session becomes unauthenticated with an error, but
        credentials already in storage are left alone.

        Args:
            email: Account email
            password: Account password

        Returns:
            AuthResult with success flag and user-facing message
        """
        try:
            body = await self._coordinator.execute(
                "POST",
                endpoints.AUTH_LOGIN,
                json_body={"email": email, "password": password},
                token="",
            )
            payload = AuthPayload.model_validate(unwrap_data(body))
        except ApiError as e:
            return self._login_failed(e, "login_failed")
        except SchemaError:
            return self._login_failed(
                GenericHttpError("Received malformed login response"), "login_failed"
            )

        if not payload.token or payload.user is None:
            return self._login_failed(
                GenericHttpError("Login response did not include a token"),
                "login_failed",
            )

        self._establish(payload.user, payload.token, action="login")
        logger.info("login_succeeded", user_id=payload.user.id, role=payload.user.role)
        return AuthResult(
            success=True,
            message=body.get("message") or "Login successful",
            user=payload.user,
        )

    async def register(self, registration: Mapping[str, Any]) -> AuthResult:
        """Create an account.

        If the backend returns a token the session is authenticated right
        away; otherwise the account awaits email verification.

        Args:
            registration: Registration fields (firstName, lastName, email,
                password, role, ...)

        Returns:
            AuthResult; requires_verification is set when no token came back
        """
        try:
            body = await self._coordinator.execute(
                "POST",
                endpoints.AUTH_REGISTER,
                json_body=dict(registration),
                token="",
            )
            payload = AuthPayload.model_validate(unwrap_data(body))
        except ApiError as e:
            self._apply(SessionEvent.ERROR_RAISED, error=e.message, action="register_failed")
            logger.info("register_rejected", kind=e.kind, status=e.status_code)
            return AuthResult.from_error(e)
        except SchemaError:
            error = GenericHttpError("Received malformed registration response")
            self._apply(SessionEvent.ERROR_RAISED, error=error.message, action="register_failed")
            return AuthResult.from_error(error)

        message = body.get("message") or ""
        if payload.token and payload.user is not None:
            self._establish(payload.user, payload.token, action="register")
            logger.info("register_succeeded", user_id=payload.user.id)
            return AuthResult(
                success=True,
                message=message or "Registration successful",
                user=payload.user,
            )

        logger.info("register_pending_verification")
        return AuthResult(
            success=True,
            message=message or "Registration successful. Please verify your email.",
            user=payload.user,
            requires_verification=True,
        )

    # =========================================================================
    # LOGOUT
    # =========================================================================

    async def logout(self, silent: bool = False, skip_server_call: bool = False) -> None:
        """End the session.

        The server call is best effort. Local credentials are cleared and
        the session reset no matter what happens to it.

        Args:
            silent: Mark the logout as automatic (expired/rejected credential)
            skip_server_call: Do not call POST /auth/logout
        """
        token = self._session.token
        self._stop_refresh_loop()
        self._logging_out = True
        try:
            if token and not skip_server_call:
                try:
                    await self._coordinator.execute(
                        "POST", endpoints.AUTH_LOGOUT, token=token
                    )
                except ApiError as e:
                    logger.info("logout_server_call_failed", kind=e.kind)
        finally:
            self._logging_out = False
            self._store.clear()
            self._apply(
                SessionEvent.LOGGED_OUT,
                action="silent_logout" if silent else "logout",
            )
            logger.info("logged_out", silent=silent, epoch=self._session.epoch)

    async def handle_authentication_error(
        self, error: AuthenticationError, token: str | None = None
    ) -> None:
        """Drop the session when the backend rejects its credential.

        Args:
            error: The 401 raised by the coordinator
            token: Bearer token the rejected request carried. A rejection
                of a token other than the current one is ignored.
        """
        if self._logging_out or not self._session.is_authenticated:
            return
        if token is not None and token != self._session.token:
            logger.info("stale_credential_rejection_ignored", status=error.status_code)
            return
        logger.warning("credential_rejected", status=error.status_code)
        await self.logout(silent=True, skip_server_call=True)

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    async def update_profile(self, fields: Mapping[str, Any]) -> AuthResult:
        """Update the signed-in user's profile.

        Args:
            fields: Profile fields to send (firstName, lastName, ...)

        Returns:
            AuthResult with the updated user on success
        """
        session = self._session
        if not session.is_authenticated:
            return AuthResult(success=False, message="Not authenticated")

        epoch = session.epoch
        try:
            body = await self._coordinator.execute(
                "PUT", endpoints.USER_PROFILE, json_body=dict(fields)
            )
            user = UserPayload.model_validate(unwrap_data(body, "user"))
        except ApiError as e:
            if self._session.epoch == epoch:
                self._apply(SessionEvent.ERROR_RAISED, error=e.message, action="profile_failed")
            return AuthResult.from_error(e)
        except SchemaError:
            return AuthResult.from_error(
                GenericHttpError("Received malformed profile response")
            )

        if self._session.epoch != epoch:
            logger.info("profile_result_discarded", epoch=epoch)
            return AuthResult(success=False, message="Session changed during update")

        self._apply(SessionEvent.PROFILE_UPDATED, user=user)
        logger.info("profile_updated", user_id=user.id)
        return AuthResult(
            success=True,
            message=body.get("message") or "Profile updated",
            user=user,
        )

    async def forgot_password(self, email: str) -> AuthResult:
        """Request a password reset email. Session state is not touched."""
        try:
            body = await self._coordinator.execute(
                "POST",
                endpoints.AUTH_FORGOT_PASSWORD,
                json_body={"email": email},
                token="",
            )
        except ApiError as e:
            return AuthResult.from_error(e)
        return AuthResult(
            success=True,
            message=body.get("message") or "Password reset instructions sent",
        )

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    async def close(self) -> None:
        """Stop the refresh loop and wait for it to finish."""
        task = self._refresh_task
        self._stop_refresh_loop()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
