"""
Session Lifecycle Manager - the single owner of the current Principal.

State machine:

    UNINITIALIZED -> LOADING -> AUTHENTICATED(principal)
                             -> ANONYMOUS

Every credential change moves the manager back to LOADING and starts a new
resolution. Resolutions are tagged with a generation number; a result is
written only if its generation is still the latest and the manager has not
been closed, so a slow lookup for an earlier session can never overwrite a
newer one.

Readers get immutable SessionSnapshot objects, either by calling current()
or by subscribing. Nothing outside this class writes session state.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from sambright_access.utils.auth_providers import (
    CredentialError,
    CredentialProvider,
    CredentialSession,
)
from sambright_access.utils.identity import IdentityResolver, Principal
from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.audit import log_authentication_event
from sambright_access.utils.rbac.role_enum import Role

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session handed to observers."""

    state: SessionState
    principal: Optional[Principal] = None
    token: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.state in (SessionState.UNINITIALIZED, SessionState.LOADING)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.principal is not None

    @property
    def role(self) -> Optional[Role]:
        return self.principal.role if self.principal else None


class AuthError(Exception):
    """Credential failure surfaced to the UI (e.g. as a toast)."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a credential operation."""

    success: bool
    error: Optional[AuthError] = None

    @classmethod
    def ok(cls) -> 'AuthResult':
        return cls(success=True)

    @classmethod
    def fail(cls, message: str, code: Optional[str] = None) -> 'AuthResult':
        return cls(success=False, error=AuthError(message, code))

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None


SessionObserver = Callable[[SessionSnapshot], None]


class SessionLifecycleManager:
    """
    Establish, refresh and tear down sessions, and publish the Principal.

    Example:
        >>> manager = SessionLifecycleManager(provider, IdentityResolver(store))
        >>> unsubscribe = manager.subscribe(lambda snap: print(snap.state))
        >>> manager.start()
        >>> result = manager.sign_in("a@b.com", "secret")
        >>> manager.current().principal
    """

    def __init__(self, provider: CredentialProvider, resolver: IdentityResolver):
        self._provider = provider
        self._resolver = resolver
        self._lock = threading.RLock()
        self._snapshot = SessionSnapshot(state=SessionState.UNINITIALIZED)
        self._observers: List[SessionObserver] = []
        self._generation = 0
        self._alive = True
        self._provider_unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def current(self) -> SessionSnapshot:
        """Return the current session snapshot ({principal, is_loading})."""
        with self._lock:
            return self._snapshot

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def is_alive(self) -> bool:
        with self._lock:
            return self._alive

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """
        Register an observer called synchronously on every snapshot change.

        Returns:
            Function that removes the observer
        """
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> SessionSnapshot:
        """
        Begin tracking the provider's sessions.

        Subscribes to session changes, then resolves any persisted session
        (the page-load path). Returns the resulting snapshot.
        """
        with self._lock:
            if not self._alive:
                raise RuntimeError("SessionLifecycleManager has been closed")
            if self._provider_unsubscribe is None:
                self._provider_unsubscribe = self._provider.on_session_change(self._handle_session_change)

        self._reload_from_provider("Could not restore persisted session")
        return self.current()

    def close(self) -> None:
        """Tear down: drop the provider subscription and ignore later results."""
        with self._lock:
            self._alive = False
            self._generation += 1
            unsubscribe, self._provider_unsubscribe = self._provider_unsubscribe, None
            self._observers.clear()
        if unsubscribe:
            unsubscribe()
        logger.debug("Session manager closed")

    def refresh(self) -> None:
        """
        Re-read the session from the provider and re-resolve the Principal.

        Picks up role changes made by an admin, and drops to ANONYMOUS when
        the provider no longer has a valid (or refreshable) session.
        """
        self._reload_from_provider("Session refresh failed")

    def _reload_from_provider(self, failure_message: str) -> None:
        with self._lock:
            generation = self._generation

        try:
            session = self._provider.get_session()
        except Exception as exc:
            logger.warning("%s: %s", failure_message, exc)
            session = None

        with self._lock:
            # A newer change (such as a token refresh announced from get_session) already landed
            if generation != self._generation:
                return
        self._handle_session_change(session)

    # ------------------------------------------------------------------
    # Credential operations
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with the credential provider.

        The provider's session-change notification drives the transition to
        AUTHENTICATED; this method only reports success or failure.
        """
        if not email or not password:
            return AuthResult.fail("Email and password are required", code="missing_credentials")

        try:
            self._provider.sign_in(email, password)
        except CredentialError as exc:
            log_authentication_event(email, 'sign_in', False, details=exc.message)
            self._settle_after_failure()
            return AuthResult.fail(exc.message, code=exc.code)
        except Exception as exc:
            logger.error("Unexpected sign-in failure for %s: %s", email, exc)
            log_authentication_event(email, 'sign_in', False, details=UNEXPECTED_ERROR_MESSAGE)
            self._settle_after_failure()
            return AuthResult.fail(UNEXPECTED_ERROR_MESSAGE, code="unexpected")

        log_authentication_event(email, 'sign_in', True)
        return AuthResult.ok()

    def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        role: Role | str = Role.CLIENT,
        confirm_password: Optional[str] = None,
    ) -> AuthResult:
        """
        Create a credential and profile with the given role.

        Does not authenticate; the caller must sign in afterwards.
        """
        error = self._validate_sign_up(email, password, name, role, confirm_password)
        if error is not None:
            return AuthResult(success=False, error=error)

        metadata = {"name": name.strip(), "role": Role(role).value}
        try:
            self._provider.sign_up(email, password, metadata)
        except CredentialError as exc:
            log_authentication_event(email, 'sign_up', False, details=exc.message)
            return AuthResult.fail(exc.message, code=exc.code)
        except Exception as exc:
            logger.error("Unexpected sign-up failure for %s: %s", email, exc)
            log_authentication_event(email, 'sign_up', False, details=UNEXPECTED_ERROR_MESSAGE)
            return AuthResult.fail(UNEXPECTED_ERROR_MESSAGE, code="unexpected")

        log_authentication_event(email, 'sign_up', True, details=f"role={metadata['role']}")
        return AuthResult.ok()

    @staticmethod
    def _validate_sign_up(email, password, name, role, confirm_password) -> Optional[AuthError]:
        if not email or "@" not in email:
            return AuthError("A valid email address is required", code="invalid_email")
        if not name or not name.strip():
            return AuthError("Name is required", code="missing_name")
        if confirm_password is not None and password != confirm_password:
            return AuthError("Passwords do not match", code="password_mismatch")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return AuthError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", code="weak_password"
            )
        try:
            Role(role)
        except ValueError:
            return AuthError(f"Unknown role: {role}", code="invalid_role")
        return None

    def sign_out(self) -> None:
        """Invalidate the session with the provider and become ANONYMOUS."""
        user = self.current().principal
        try:
            self._provider.sign_out()
        except Exception as exc:
            # Local state is cleared regardless; the token will expire on its own
            logger.warning("Provider sign-out failed: %s", exc)

        with self._lock:
            if not self._alive:
                return
            self._generation += 1
            self._publish(SessionSnapshot(state=SessionState.ANONYMOUS))

        log_authentication_event(user.email if user else 'unknown', 'sign_out', True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_session_change(self, session: Optional[CredentialSession]) -> None:
        """
        Process a credential change notification.

        Safe to call from any thread. Notifications are applied in arrival
        order; only the latest one may publish a resolved Principal.
        """
        with self._lock:
            if not self._alive:
                return
            self._generation += 1
            generation = self._generation

            if session is None:
                self._publish(SessionSnapshot(state=SessionState.ANONYMOUS))
                return

            self._publish(SessionSnapshot(state=SessionState.LOADING, token=session.access_token))

        # Profile I/O happens outside the lock
        principal = self._resolver.resolve_profile(session.user.id, session.user)

        with self._lock:
            if not self._alive or generation != self._generation:
                logger.debug(
                    "Discarding stale resolution for %s (generation %d, current %d)",
                    session.user.id, generation, self._generation,
                )
                return
            self._publish(SessionSnapshot(
                state=SessionState.AUTHENTICATED,
                principal=principal,
                token=session.access_token,
            ))

    def _settle_after_failure(self) -> None:
        with self._lock:
            if not self._alive:
                return
            # A LOADING session has a resolution in flight that will settle it
            if self._snapshot.state is SessionState.UNINITIALIZED:
                self._generation += 1
                self._publish(SessionSnapshot(state=SessionState.ANONYMOUS))

    def _publish(self, snapshot: SessionSnapshot) -> None:
        # Caller holds the lock
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        logger.debug("Session state -> %s", snapshot.state.value)
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as exc:
                logger.error("Session observer %r failed: %s", observer, exc)
