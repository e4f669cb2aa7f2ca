"""
Contracts for the external collaborators of the access-control core.

The credential provider owns passwords and session tokens; the profile
store owns the role assigned to each user. Concrete implementations live
in supabase_service.py (REST) and profile_service.py (PostgreSQL).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


class CredentialError(Exception):
    """Raised by credential providers for rejected credentials or provider failures."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class ProfileStoreError(Exception):
    """Raised by profile stores when a query cannot be completed."""
    pass


@dataclass(frozen=True)
class SessionUser:
    """Identity data carried by a credential session (before profile lookup)."""

    id: str
    email: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CredentialSession:
    """An authenticated session issued by the credential provider."""

    access_token: str
    user: SessionUser
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


SessionCallback = Callable[[Optional[CredentialSession]], None]


class CredentialProvider(ABC):
    """
    External authentication/session provider.

    Implementations must call every registered callback with the new
    session (or None) on each sign-in, sign-out and token refresh.
    """

    @abstractmethod
    def sign_in(self, email: str, password: str) -> CredentialSession:
        """Authenticate with email/password. Raises CredentialError."""

    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> None:
        """Create a credential with profile metadata. Raises CredentialError."""

    @abstractmethod
    def sign_out(self) -> None:
        """Invalidate the current session."""

    @abstractmethod
    def get_session(self) -> Optional[CredentialSession]:
        """Return the current (possibly persisted) session, or None."""

    @abstractmethod
    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Register a session-change callback; returns an unsubscribe function."""


class ProfileStore(ABC):
    """External profile store, queryable by user id."""

    @abstractmethod
    def get_profile(self, user_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Fetch the profile row for a user.

        Returns a dict with at least 'id', 'email', 'name', 'role', or None
        when no profile exists. Raises ProfileStoreError on failure.
        """


class SessionChangeNotifier:
    """Listener bookkeeping shared by credential provider implementations."""

    def __init__(self) -> None:
        self._listeners: list = []

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def notify(self, session: Optional[CredentialSession]) -> None:
        for callback in list(self._listeners):
            callback(session)

    def __len__(self) -> int:
        return len(self._listeners)
